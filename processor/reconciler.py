"""Session <-> impression time matching (1:N).

Predicate: ``session.content_id == impression.content_id`` and
``session.start_at == impression.play_at`` (exact, no window).

Every session ends up with an ordered id list; unmatched sessions keep ``[]``.
The bulk strategy reads all pairs with one join and writes one executemany
UPDATE keyed by primary key. ``per_session`` issues one point query per
session and only exists as a fallback for stores that choke on the join.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import asdict, dataclass

from loguru import logger
from sqlalchemy import and_, func, select, update

from database import Database
from database.models import ContentPerformance, PlayerSession
from processor.errors import ConfigError, check_cancelled

STRATEGIES = ("bulk", "per_session")
UPDATE_CHUNK = 5_000


@dataclass
class ReconcileStats:
    total_sessions: int = 0
    matched_sessions: int = 0
    total_linked: int = 0
    match_rate: float = 0.0
    avg_per_matched: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


def _summarize(total_sessions: int, links: dict[int, list[int]]) -> ReconcileStats:
    matched = sum(1 for ids in links.values() if ids)
    linked = sum(len(ids) for ids in links.values())
    return ReconcileStats(
        total_sessions=total_sessions,
        matched_sessions=matched,
        total_linked=linked,
        match_rate=round(matched / total_sessions, 4) if total_sessions else 0.0,
        avg_per_matched=round(linked / matched, 2) if matched else 0.0,
    )


async def _bulk_links(session) -> dict[int, list[int]]:
    rows = await session.execute(
        select(PlayerSession.id, ContentPerformance.id)
        .join(
            ContentPerformance,
            and_(
                ContentPerformance.content_id == PlayerSession.content_id,
                ContentPerformance.play_at == PlayerSession.start_at,
            ),
        )
        .where(PlayerSession.start_at.is_not(None))
        .order_by(PlayerSession.id, ContentPerformance.id)
    )
    links: dict[int, list[int]] = defaultdict(list)
    for session_id, impression_id in rows.all():
        links[session_id].append(impression_id)
    return links


async def _per_session_links(session, cancel: asyncio.Event | None) -> dict[int, list[int]]:
    sessions = (
        await session.execute(
            select(PlayerSession.id, PlayerSession.content_id, PlayerSession.start_at)
            .where(PlayerSession.start_at.is_not(None))
            .order_by(PlayerSession.id)
        )
    ).all()

    links: dict[int, list[int]] = {}
    for i, (session_id, content_id, start_at) in enumerate(sessions, 1):
        ids = (
            await session.execute(
                select(ContentPerformance.id)
                .where(
                    ContentPerformance.content_id == content_id,
                    ContentPerformance.play_at == start_at,
                )
                .order_by(ContentPerformance.id)
            )
        ).scalars().all()
        if ids:
            links[session_id] = list(ids)
        if i % 1000 == 0:
            check_cancelled(cancel, "reconcile")
            logger.debug("[reconcile] {}/{} sessions scanned", i, len(sessions))
    return links


async def reconcile_sessions(
    db: Database,
    strategy: str = "bulk",
    cancel: asyncio.Event | None = None,
) -> ReconcileStats:
    """Recompute ``content_performance_ids`` for every session."""
    if strategy not in STRATEGIES:
        raise ConfigError(f"unknown reconcile strategy: {strategy!r}")

    async with db.session() as session:
        total_sessions = int(
            (await session.execute(select(func.count(PlayerSession.id)))).scalar_one() or 0
        )

        # full recompute: stale links from a previous run must not survive
        await session.execute(update(PlayerSession).values(content_performance_ids=[]))

        if strategy == "bulk":
            links = await _bulk_links(session)
        else:
            links = await _per_session_links(session, cancel)

        params = [{"id": sid, "content_performance_ids": ids} for sid, ids in links.items()]
        for start in range(0, len(params), UPDATE_CHUNK):
            check_cancelled(cancel, "reconcile update")
            await session.execute(update(PlayerSession), params[start:start + UPDATE_CHUNK])
        await session.commit()

    stats = _summarize(total_sessions, links)
    logger.info(
        "[reconcile] {} sessions, {} matched ({:.1%}), {} impressions linked, {:.2f} per matched",
        stats.total_sessions,
        stats.matched_sessions,
        stats.match_rate,
        stats.total_linked,
        stats.avg_per_matched,
    )
    return stats
