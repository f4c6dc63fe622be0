"""Collapse per-action player rows into one row per campaign session.

Grouping key: campaign_session_id (empty ids are dropped).
  - start_at      : earliest PLAY_START iso_time
  - end_at, duration_second, elapsed_second
                  : taken together from the latest PLAY_END row
                    (ties on iso_time -> highest row id)
  - metadata      : MAX() per column (lexicographic; not "most recent")
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import case, delete, func, select

from database import Database
from database.models import PlayerSession
from processor.dedup import bulk_insert_ignore
from processor.ingestion import player_table

_METADATA_COLUMNS = (
    "campaign_id",
    "content_id",
    "content_session_id",
    "content_title",
    "device_id",
    "inventory_id",
    "player_version",
    "pricing_rule",
    "content_duration",
    "content_selection",
    "content_version",
    "playlist_created_time",
    "sequence_id",
    "advertiser_id",
)


@dataclass
class CollapseStats:
    source_rows: int = 0
    dropped_rows: int = 0
    sessions: int = 0
    inserted: int = 0


async def collapse_sessions(db: Database, mode: str = "full") -> CollapseStats:
    """Group the player feed into raw_player_history.

    In skip-raw-archival mode the staging rows are deleted once collapsed,
    except PLAY_START rows: the star-schema builder still joins on them.
    """
    source = player_table(mode)
    c = source.c
    has_session_id = (c.campaign_session_id.is_not(None)) & (c.campaign_session_id != "")
    stats = CollapseStats()

    async with db.session() as session:
        stats.source_rows = int(
            (await session.execute(select(func.count()).select_from(source))).scalar_one() or 0
        )
        stats.dropped_rows = int(
            (
                await session.execute(
                    select(func.count()).select_from(source).where(~has_session_id)
                )
            ).scalar_one()
            or 0
        )

        grouped = (
            await session.execute(
                select(
                    c.campaign_session_id,
                    func.min(case((c.action == "PLAY_START", c.iso_time))).label("start_at"),
                    *[func.max(c[name]).label(name) for name in _METADATA_COLUMNS],
                )
                .where(has_session_id)
                .group_by(c.campaign_session_id)
                .order_by(c.campaign_session_id)
            )
        ).mappings().all()

        # Ascending scan: the last row seen per session is the chosen PLAY_END
        play_end: dict[str, tuple] = {}
        end_rows = await session.execute(
            select(c.campaign_session_id, c.iso_time, c.duration_second, c.elapsed_second)
            .where(has_session_id, c.action == "PLAY_END")
            .order_by(c.campaign_session_id, c.iso_time, c.id)
        )
        for session_id, iso_time, duration, elapsed in end_rows.all():
            play_end[session_id] = (iso_time, duration, elapsed)

        values: list[dict] = []
        for row in grouped:
            session_id = row["campaign_session_id"]
            end_at, duration, elapsed = play_end.get(session_id, (None, None, None))
            item = {name: row[name] for name in _METADATA_COLUMNS}
            item.update(
                campaign_session_id=session_id,
                start_at=row["start_at"],
                end_at=end_at,
                duration_second=duration,
                elapsed_second=elapsed,
                content_performance_ids=[],
            )
            values.append(item)

        stats.sessions = len(values)
        stats.inserted = await bulk_insert_ignore(session, PlayerSession.__table__, values, db.dialect)

        if mode != "full":
            await session.execute(delete(source).where(c.action != "PLAY_START"))
        await session.commit()

    logger.info(
        "[collapse] {} source rows -> {} sessions (dropped without session id: {})",
        stats.source_rows,
        stats.sessions,
        stats.dropped_rows,
    )
    return stats
