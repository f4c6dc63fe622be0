"""Build the star schema from the reconciled base tables.

Stage order (each committed before the next):
  1. Campaign           : one row per PLAY_START campaign_id, 3-tier title resolution
  2. Customer           : one row per audience_id, modal gender/age, watch time
  3. Event              : impression x PLAY_START on play_at == iso_time
  4. PerformanceSummary : per-campaign counts, rates, percentile grade
  5. CampaignDetail     : distinct viewers + age/gender histograms

PLAY_START rows come from ``player_history`` when the run archived raw
events and from ``player_history_staging`` after a skip-raw-archival run,
which keeps its PLAY_START rows until the next import. Both modes therefore
see the same rows. A store holding only sessions falls back to each
session's ``start_at``.

캠페인 제목 우선순위
----------------------------------------------------------------------
- tier 1 : PLAY_START content_title 중 파일명이 아닌 가장 작은 값
- tier 2 : iso_time == play_at 인 노출 title 중 파일명이 아닌 가장 작은 값
- tier 3 : PLAY_START content_title 그대로 (확장자 포함, 화면에서 처리)
"""

from __future__ import annotations

import asyncio
from collections import Counter, defaultdict

from loguru import logger
from sqlalchemy import case, delete, func, select

from database import Database
from database.models import (
    Campaign,
    CampaignDetail,
    ContentPerformance,
    Customer,
    Event,
    PerformanceSummary,
    PlayerEvent,
    PlayerEventStaging,
    PlayerSession,
)
from processor.config import GradeThresholds
from processor.content_titles import is_filename_title
from processor.dedup import bulk_insert_ignore
from processor.errors import check_cancelled
from processor.grading import assign_grades

EVENT_BATCH_SIZE = 5_000
_IN_CHUNK = 500
UNKNOWN = "unknown"


def _modal_value(counts: Counter | dict[str, int], default: str = UNKNOWN) -> str:
    """Most frequent value; ties go to the smallest value."""
    if not counts:
        return default
    return min(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0]


def _usable_title(title: str | None) -> bool:
    return bool(title) and not is_filename_title(title)


async def _play_start_source(session):
    """Return (subquery, source table name) of PLAY_START-shaped rows."""
    for model in (PlayerEvent, PlayerEventStaging):
        stmt = select(
            model.campaign_id.label("campaign_id"),
            model.content_id.label("content_id"),
            model.content_title.label("content_title"),
            model.iso_time.label("iso_time"),
        ).where(model.action == "PLAY_START")
        if (await session.execute(stmt.limit(1))).first() is not None:
            return stmt.subquery("play_start"), model.__tablename__

    stmt = select(
        PlayerSession.campaign_id.label("campaign_id"),
        PlayerSession.content_id.label("content_id"),
        PlayerSession.content_title.label("content_title"),
        PlayerSession.start_at.label("iso_time"),
    ).where(PlayerSession.start_at.is_not(None))
    return stmt.subquery("play_start"), PlayerSession.__tablename__


def _has_campaign(ps):
    return ps.c.campaign_id.is_not(None) & (ps.c.campaign_id != "")


async def _clear_derived(db: Database) -> None:
    async with db.session() as session:
        for model in (CampaignDetail, PerformanceSummary, Event, Customer, Campaign):
            await session.execute(delete(model))
        await session.commit()


# ── 1. Campaign ──


async def _build_campaigns(db: Database) -> dict[str, int]:
    async with db.session() as session:
        ps, source = await _play_start_source(session)
        rows = (
            await session.execute(
                select(ps.c.campaign_id, ps.c.content_id, ps.c.content_title)
                .where(_has_campaign(ps))
                .distinct()
            )
        ).all()

        candidates: dict[str, list[tuple[str, str]]] = defaultdict(list)
        for campaign_id, content_id, title in rows:
            candidates[campaign_id].append((title or "", content_id or ""))

        resolved: dict[str, tuple[str, str]] = {}
        for campaign_id, pairs in candidates.items():
            usable = [pair for pair in pairs if _usable_title(pair[0])]
            if usable:
                resolved[campaign_id] = min(usable)
        tier1 = len(resolved)

        missing = sorted(cid for cid in candidates if cid not in resolved)
        for start in range(0, len(missing), _IN_CHUNK):
            chunk = missing[start:start + _IN_CHUNK]
            matched = await session.execute(
                select(ps.c.campaign_id, ps.c.content_id, ContentPerformance.title)
                .join(ContentPerformance, ContentPerformance.play_at == ps.c.iso_time)
                .where(ps.c.campaign_id.in_(chunk))
            )
            by_campaign: dict[str, list[tuple[str, str]]] = defaultdict(list)
            for campaign_id, content_id, title in matched.all():
                if _usable_title(title):
                    by_campaign[campaign_id].append((title, content_id or ""))
            for campaign_id, pairs in by_campaign.items():
                resolved[campaign_id] = min(pairs)
        tier2 = len(resolved) - tier1

        for campaign_id in missing:
            if campaign_id not in resolved:
                resolved[campaign_id] = min(candidates[campaign_id])
        tier3 = len(resolved) - tier1 - tier2

        values = [
            {"campaign_id": cid, "content_title": title, "content_id": content_id}
            for cid, (title, content_id) in sorted(resolved.items())
        ]
        await bulk_insert_ignore(session, Campaign.__table__, values, db.dialect)
        await session.commit()

    logger.info(
        "[star] campaign: {} rows from {} (title tiers: {}/{}/{})",
        len(values), source, tier1, tier2, tier3,
    )
    return {"campaigns": len(values), "tier1": tier1, "tier2": tier2, "tier3": tier3}


# ── 2. Customer ──


async def _build_customers(db: Database) -> int:
    cp = ContentPerformance
    has_audience = cp.audience_id.is_not(None) & (cp.audience_id != "")
    async with db.session() as session:
        watch = dict(
            (
                await session.execute(
                    select(cp.audience_id, func.coalesce(func.sum(cp.attention_sec), 0.0))
                    .where(has_audience)
                    .group_by(cp.audience_id)
                )
            ).all()
        )

        genders: dict[str, Counter] = defaultdict(Counter)
        ages: dict[str, Counter] = defaultdict(Counter)
        for column, target in ((cp.gender, genders), (cp.age, ages)):
            counted = await session.execute(
                select(cp.audience_id, column, func.count())
                .where(has_audience, column.is_not(None), column != "")
                .group_by(cp.audience_id, column)
            )
            for audience_id, value, n in counted.all():
                target[audience_id][value] = n

        values = [
            {
                "customer_id": audience_id,
                "gender": _modal_value(genders.get(audience_id, {})),
                "age": _modal_value(ages.get(audience_id, {})),
                "total_watch_time": float(total or 0.0),
            }
            for audience_id, total in sorted(watch.items())
        ]
        await bulk_insert_ignore(session, Customer.__table__, values, db.dialect)
        await session.commit()

    logger.info("[star] customer: {} rows", len(values))
    return len(values)


# ── 3. Event ──


async def _build_events(db: Database, cancel: asyncio.Event | None) -> dict[str, int]:
    cp = ContentPerformance
    async with db.session() as session:
        ps, _ = await _play_start_source(session)
        rows = (
            await session.execute(
                select(
                    ps.c.campaign_id,
                    cp.audience_id,
                    cp.play_at,
                    cp.is_attention,
                    cp.is_entrance,
                    cp.attention_sec,
                    cp.content_group,
                )
                .select_from(cp)
                .join(ps, cp.play_at == ps.c.iso_time)
                .where(_has_campaign(ps), cp.audience_id.is_not(None), cp.audience_id != "")
                .order_by(cp.id, ps.c.campaign_id)
            )
        ).all()

        seen: set[tuple] = set()
        values: list[dict] = []
        for campaign_id, audience_id, play_at, is_attention, is_entrance, attention_sec, group in rows:
            key = (campaign_id, audience_id, play_at)
            if key in seen:
                continue
            seen.add(key)
            values.append({
                "campaign_id": campaign_id,
                "customer_id": audience_id,
                "play_at": play_at,
                "is_attention": bool(is_attention),
                "is_entrance": bool(is_entrance),
                "attention_sec": attention_sec or 0.0,
                "content_group": group or "",
            })

        for start in range(0, len(values), EVENT_BATCH_SIZE):
            check_cancelled(cancel, "event batch")
            await bulk_insert_ignore(
                session, Event.__table__, values[start:start + EVENT_BATCH_SIZE], db.dialect
            )
            logger.debug("[star] event: {}/{}", min(start + EVENT_BATCH_SIZE, len(values)), len(values))
        await session.commit()

    skipped = len(rows) - len(values)
    logger.info("[star] event: {} rows (duplicate triples skipped: {})", len(values), skipped)
    return {"events": len(values), "duplicates_skipped": skipped}


# ── 4. PerformanceSummary ──


def _event_counts():
    return (
        func.count(Event.id).label("impressions"),
        func.sum(case((Event.is_attention.is_(True), 1), else_=0)).label("attention_count"),
        func.sum(case((Event.is_entrance.is_(True), 1), else_=0)).label("entrance_count"),
    )


async def _build_performance_summary(db: Database, thresholds: GradeThresholds) -> int:
    async with db.session() as session:
        aggregated = (
            await session.execute(
                select(Campaign.campaign_id, Campaign.content_id, Campaign.content_title, *_event_counts())
                .join(Event, Event.campaign_id == Campaign.campaign_id)
                .group_by(Campaign.campaign_id, Campaign.content_id, Campaign.content_title)
                .order_by(Campaign.campaign_id)
            )
        ).all()

        groups: dict[str, Counter] = defaultdict(Counter)
        group_rows = await session.execute(
            select(Event.campaign_id, Event.content_group, func.count())
            .where(Event.content_group.is_not(None), Event.content_group != "")
            .group_by(Event.campaign_id, Event.content_group)
        )
        for campaign_id, group, n in group_rows.all():
            groups[campaign_id][group] = n

        items: dict[str, dict] = {}
        for campaign_id, content_id, title, impressions, attention, entrance in aggregated:
            impressions = int(impressions or 0)
            items[campaign_id] = {
                "campaign_id": campaign_id,
                "content_id": content_id or "",
                "title": title or "",
                "content_group": _modal_value(groups.get(campaign_id, {}), default=""),
                "impressions": impressions,
                "attention_rate": int(attention or 0) / impressions if impressions else 0.0,
                "entrance_rate": int(entrance or 0) / impressions if impressions else 0.0,
            }

        grades = assign_grades({cid: item["entrance_rate"] for cid, item in items.items()}, thresholds)
        for campaign_id, item in items.items():
            item["grade"] = grades[campaign_id]

        await bulk_insert_ignore(session, PerformanceSummary.__table__, list(items.values()), db.dialect)
        await session.commit()

    logger.info("[star] performance_summary: {} rows ({})", len(items), dict(Counter(grades.values())))
    return len(items)


# ── 5. CampaignDetail ──


async def _histogram(session, column) -> dict[str, list[dict]]:
    rows = await session.execute(
        select(Event.campaign_id, column, func.count(func.distinct(Event.customer_id)))
        .join(Customer, Customer.customer_id == Event.customer_id)
        .group_by(Event.campaign_id, column)
        .order_by(Event.campaign_id, column)
    )
    buckets: dict[str, list[dict]] = defaultdict(list)
    for campaign_id, bucket, n in rows.all():
        buckets[campaign_id].append({"bucket": bucket, "count": int(n)})
    return buckets


async def _build_campaign_details(db: Database) -> int:
    async with db.session() as session:
        details = (
            await session.execute(
                select(
                    Event.campaign_id,
                    func.count(func.distinct(Event.customer_id)),
                    *_event_counts()[1:],
                    func.coalesce(func.sum(Event.attention_sec), 0.0),
                )
                .group_by(Event.campaign_id)
                .order_by(Event.campaign_id)
            )
        ).all()
        ages = await _histogram(session, Customer.age)
        genders = await _histogram(session, Customer.gender)

        values = [
            {
                "campaign_id": campaign_id,
                "total_viewers": int(viewers or 0),
                "attention_count": int(attention or 0),
                "entrance_count": int(entrance or 0),
                "total_watch_time": float(watch or 0.0),
                "age_distribution": ages.get(campaign_id, []),
                "gender_distribution": genders.get(campaign_id, []),
            }
            for campaign_id, viewers, attention, entrance, watch in details
        ]
        await bulk_insert_ignore(session, CampaignDetail.__table__, values, db.dialect)
        await session.commit()

    logger.info("[star] campaign_detail: {} rows", len(values))
    return len(values)


async def rebuild_star_schema(
    db: Database,
    thresholds: GradeThresholds | None = None,
    cancel: asyncio.Event | None = None,
) -> dict[str, int]:
    """Delete and rebuild every derived table. Returns execution stats."""
    thresholds = thresholds or GradeThresholds()
    await _clear_derived(db)

    check_cancelled(cancel, "star: campaign")
    campaign_stats = await _build_campaigns(db)
    check_cancelled(cancel, "star: customer")
    customers = await _build_customers(db)
    check_cancelled(cancel, "star: event")
    event_stats = await _build_events(db, cancel)
    check_cancelled(cancel, "star: performance_summary")
    summaries = await _build_performance_summary(db, thresholds)
    check_cancelled(cancel, "star: campaign_detail")
    details = await _build_campaign_details(db)

    return {
        "campaigns": campaign_stats["campaigns"],
        "campaign_title_tier1": campaign_stats["tier1"],
        "campaign_title_tier2": campaign_stats["tier2"],
        "campaign_title_tier3": campaign_stats["tier3"],
        "customers": customers,
        "events": event_stats["events"],
        "event_duplicates_skipped": event_stats["duplicates_skipped"],
        "performance_summaries": summaries,
        "campaign_details": details,
    }
