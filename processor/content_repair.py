"""Repair filename-like titles using the reconciled session links.

Rule A (impression side): a linked impression titled ``*.mp4`` / ``*.jpg``
takes the owning session's content_id as both title and content_group.

Rule B (session side): a session whose content_title looks like a media
filename copies the title of its lowest-id linked impression.

Each rule runs in one transaction and only writes rows whose value actually
changes, so a second run reports ``fixed == 0``. Rows left matching the
pattern are reported as ``remaining``; they had nothing to repair from.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from loguru import logger
from sqlalchemy import or_, select, update

from database import Database
from database.models import ContentPerformance, PlayerSession
from processor.content_titles import (
    FILENAME_TITLE_SUFFIXES,
    REPAIRABLE_IMPRESSION_SUFFIXES,
    is_filename_title,
    is_repairable_impression_title,
)


@dataclass
class RepairResult:
    rule: str
    fixed: int = 0
    remaining: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _suffix_filter(column, suffixes):
    # coarse SQL prefilter; the exact (case-sensitive) check runs in Python
    return or_(*[column.like(f"%{suffix}") for suffix in suffixes])


async def _impression_candidates(session) -> list[tuple[int, str, str]]:
    rows = await session.execute(
        select(ContentPerformance.id, ContentPerformance.title, ContentPerformance.content_group)
        .where(_suffix_filter(ContentPerformance.title, REPAIRABLE_IMPRESSION_SUFFIXES))
        .order_by(ContentPerformance.id)
    )
    return [row for row in rows.all() if is_repairable_impression_title(row[1])]


async def _session_candidates(session) -> list[tuple[int, str, list]]:
    rows = await session.execute(
        select(PlayerSession.id, PlayerSession.content_title, PlayerSession.content_performance_ids)
        .where(_suffix_filter(PlayerSession.content_title, FILENAME_TITLE_SUFFIXES))
        .order_by(PlayerSession.id)
    )
    return [row for row in rows.all() if is_filename_title(row[1])]


async def repair_impression_titles(db: Database) -> RepairResult:
    """Rule A."""
    result = RepairResult(rule="impression_title")
    async with db.session() as session:
        candidates = await _impression_candidates(session)
        if candidates:
            owner: dict[int, str] = {}
            linked = await session.execute(
                select(PlayerSession.content_id, PlayerSession.content_performance_ids)
                .order_by(PlayerSession.id)
            )
            for content_id, ids in linked.all():
                for impression_id in ids or []:
                    # every owner matched on content_id, so the first one is as good as any
                    owner.setdefault(impression_id, content_id)

            params = []
            for impression_id, title, group in candidates:
                content_id = owner.get(impression_id)
                if not content_id or (title == content_id and group == content_id):
                    continue
                params.append({"id": impression_id, "title": content_id, "content_group": content_id})
            if params:
                await session.execute(update(ContentPerformance), params)
            result.fixed = len(params)

        result.remaining = len(await _impression_candidates(session))
        await session.commit()

    logger.info("[repair] impression titles fixed: {} (remaining: {})", result.fixed, result.remaining)
    return result


async def repair_session_titles(db: Database) -> RepairResult:
    """Rule B."""
    result = RepairResult(rule="session_title")
    async with db.session() as session:
        candidates = await _session_candidates(session)
        first_link = {sid: min(ids) for sid, _, ids in candidates if ids}
        if first_link:
            titles = dict(
                (
                    await session.execute(
                        select(ContentPerformance.id, ContentPerformance.title)
                        .where(ContentPerformance.id.in_(sorted(set(first_link.values()))))
                    )
                ).all()
            )
            params = []
            for session_id, current, _ in candidates:
                impression_id = first_link.get(session_id)
                new_title = titles.get(impression_id) if impression_id is not None else None
                if new_title is None or new_title == current:
                    continue
                params.append({"id": session_id, "content_title": new_title})
            if params:
                await session.execute(update(PlayerSession), params)
            result.fixed = len(params)

        result.remaining = len(await _session_candidates(session))
        await session.commit()

    logger.info("[repair] session titles fixed: {} (remaining: {})", result.fixed, result.remaining)
    return result


async def repair_content_titles(db: Database) -> dict[str, dict]:
    """Run rule A then rule B (B reads the titles A just repaired)."""
    impression = await repair_impression_titles(db)
    session_titles = await repair_session_titles(db)
    if impression.remaining or session_titles.remaining:
        logger.warning(
            "[repair] residual filename titles: impressions={} sessions={}",
            impression.remaining,
            session_titles.remaining,
        )
    return {"impression_title": impression.as_dict(), "session_title": session_titles.as_dict()}
