"""Read-only audit of the session -> impression link mapping."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select

from database import Database
from database.models import ContentPerformance, PlayerSession
from database.schemas import LinkCountBucket, LinkMappingReport, LinkMismatchOut, SessionSampleOut

DISTRIBUTION_LIMIT = 10
MISMATCH_SAMPLE_LIMIT = 10
TOP_SESSIONS = 3


@dataclass
class _Impression:
    content_id: str
    play_at: datetime
    audience_id: str
    gender: str
    age: str


@dataclass
class _SessionLinks:
    id: int
    content_id: str | None
    start_at: datetime | None
    ids: list[int] = field(default_factory=list)


async def _load(db: Database) -> tuple[list[_SessionLinks], dict[int, _Impression]]:
    async with db.session() as session:
        sessions = [
            _SessionLinks(id=sid, content_id=content_id, start_at=start_at, ids=list(ids or []))
            for sid, content_id, start_at, ids in (
                await session.execute(
                    select(
                        PlayerSession.id,
                        PlayerSession.content_id,
                        PlayerSession.start_at,
                        PlayerSession.content_performance_ids,
                    ).order_by(PlayerSession.id)
                )
            ).all()
        ]
        impressions = {
            iid: _Impression(content_id, play_at, audience_id or "", gender or "", age or "")
            for iid, content_id, play_at, audience_id, gender, age in (
                await session.execute(
                    select(
                        ContentPerformance.id,
                        ContentPerformance.content_id,
                        ContentPerformance.play_at,
                        ContentPerformance.audience_id,
                        ContentPerformance.gender,
                        ContentPerformance.age,
                    )
                )
            ).all()
        }
    return sessions, impressions


def _expected_links(impressions: dict[int, _Impression]) -> dict[tuple, set[int]]:
    index: dict[tuple, set[int]] = defaultdict(set)
    for iid, imp in impressions.items():
        index[(imp.content_id, imp.play_at)].add(iid)
    return index


async def audit_link_mapping(db: Database) -> LinkMappingReport:
    """Recheck every stored link list against an in-memory match of the predicate."""
    sessions, impressions = await _load(db)
    index = _expected_links(impressions)
    report = LinkMappingReport(total_sessions=len(sessions), total_impressions=len(impressions))

    mapped = [s for s in sessions if s.ids]
    report.mapped_sessions = len(mapped)
    report.mapped_impressions = sum(len(s.ids) for s in mapped)
    if report.total_sessions:
        report.session_ratio = report.mapped_sessions / report.total_sessions
    if report.total_impressions:
        report.impression_ratio = report.mapped_impressions / report.total_impressions

    if mapped:
        sizes = [len(s.ids) for s in mapped]
        report.avg_links = round(sum(sizes) / len(sizes), 2)
        report.min_links = min(sizes)
        report.max_links = max(sizes)
        counts = Counter(sizes)
        report.distribution_groups = len(counts)
        report.distribution = [
            LinkCountBucket(link_count=size, sessions=n, ratio=n / len(mapped))
            for size, n in sorted(counts.items())[:DISTRIBUTION_LIMIT]
        ]

    # 링크 정확도 재검증
    for s in sessions:
        stored = set(s.ids)
        expected = index.get((s.content_id, s.start_at), set()) if s.start_at is not None else set()
        mismatched = len(stored - expected)
        missing = len(expected - stored)
        if mismatched or missing:
            report.mismatch_sessions += 1
            if len(report.mismatches) < MISMATCH_SAMPLE_LIMIT:
                report.mismatches.append(
                    LinkMismatchOut(
                        session_id=s.id,
                        matched=len(stored & expected),
                        mismatched=mismatched,
                        missing=missing,
                    )
                )

    for s in sorted(mapped, key=lambda s: (-len(s.ids), s.id))[:TOP_SESSIONS]:
        audiences = []
        for iid in s.ids:
            imp = impressions.get(iid)
            if imp is not None:
                audiences.append(f"{imp.audience_id}({imp.gender},{imp.age})")
        report.top_sessions.append(
            SessionSampleOut(
                session_id=s.id,
                content_id=s.content_id,
                start_at=s.start_at,
                audience_count=len(s.ids),
                audiences=audiences,
            )
        )

    unmatched = [s for s in sessions if not s.ids]
    report.unmatched_no_start_at = sum(1 for s in unmatched if s.start_at is None)
    report.unmatched_no_counterpart = len(unmatched) - report.unmatched_no_start_at
    return report
