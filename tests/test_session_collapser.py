from datetime import datetime
from pathlib import Path
import sys

import pytest
from sqlalchemy import func, select

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import player_row
from database.models import PlayerEventStaging, PlayerSession
from processor.ingestion import import_player_history
from processor.session_collapser import collapse_sessions


async def _sessions(db) -> dict[str, PlayerSession]:
    async with db.session() as session:
        rows = (await session.execute(select(PlayerSession))).scalars().all()
    return {row.campaign_session_id: row for row in rows}


@pytest.mark.asyncio
async def test_one_session_per_distinct_non_empty_id(db, write_player_csv):
    path = write_player_csv([
        player_row("S1", "PLAY_START", "2024-01-01T10:00:05"),
        player_row("S1", "PLAY_START", "2024-01-01T10:00:00", sequence_id="2"),
        player_row("S1", "PLAY_END", "2024-01-01T10:00:15"),
        player_row("S2", "PLAY_START", "2024-01-01T11:00:00"),
        player_row("", "PLAY_START", "2024-01-01T12:00:00"),
    ])
    await import_player_history(db, path, "full")

    stats = await collapse_sessions(db, "full")

    assert stats.source_rows == 5
    assert stats.dropped_rows == 1
    assert stats.sessions == 2
    sessions = await _sessions(db)
    assert set(sessions) == {"S1", "S2"}
    assert sessions["S1"].start_at == datetime(2024, 1, 1, 10, 0, 0)
    assert sessions["S1"].end_at == datetime(2024, 1, 1, 10, 0, 15)
    assert sessions["S2"].end_at is None
    assert sessions["S1"].content_performance_ids == []


@pytest.mark.asyncio
async def test_latest_play_end_supplies_all_end_fields_together(db, write_player_csv):
    path = write_player_csv([
        player_row("S1", "PLAY_START", "2024-01-01T10:00:00"),
        player_row("S1", "PLAY_END", "2024-01-01T10:00:30",
                   duration_second="30", elapsed_second="5", sequence_id="2"),
        player_row("S1", "PLAY_END", "2024-01-01T10:00:20",
                   duration_second="99", elapsed_second="20", sequence_id="3"),
    ])
    await import_player_history(db, path, "full")

    await collapse_sessions(db, "full")

    s1 = (await _sessions(db))["S1"]
    assert s1.end_at == datetime(2024, 1, 1, 10, 0, 30)
    assert (s1.duration_second, s1.elapsed_second) == (30.0, 5.0)


@pytest.mark.asyncio
async def test_session_without_play_start_has_null_start(db, write_player_csv):
    path = write_player_csv([player_row("S9", "PLAY_END", "2024-01-01T10:00:30")])
    await import_player_history(db, path, "full")

    await collapse_sessions(db, "full")

    assert (await _sessions(db))["S9"].start_at is None


@pytest.mark.asyncio
async def test_metadata_uses_lexicographic_max(db, write_player_csv):
    path = write_player_csv([
        player_row("S1", "PLAY_START", "2024-01-01T10:00:00", device_id="dev-a"),
        player_row("S1", "PLAY_END", "2024-01-01T10:00:15", device_id="dev-b"),
    ])
    await import_player_history(db, path, "full")

    await collapse_sessions(db, "full")

    assert (await _sessions(db))["S1"].device_id == "dev-b"


@pytest.mark.asyncio
async def test_collapse_rerun_is_a_no_op(db, write_player_csv):
    path = write_player_csv([player_row("S1", "PLAY_START", "2024-01-01T10:00:00")])
    await import_player_history(db, path, "full")

    await collapse_sessions(db, "full")
    await collapse_sessions(db, "full")

    async with db.session() as session:
        assert (await session.execute(select(func.count(PlayerSession.id)))).scalar_one() == 1


@pytest.mark.asyncio
async def test_skip_raw_mode_keeps_only_play_start_rows_in_staging(db, write_player_csv):
    path = write_player_csv([
        player_row("S1", "PLAY_START", "2024-01-01T10:00:00", date="", part_date=""),
        player_row("S1", "PLAY_END", "2024-01-01T10:00:15", date="", part_date=""),
    ])
    await import_player_history(db, path, "skip-raw-archival")

    stats = await collapse_sessions(db, "skip-raw-archival")

    assert stats.sessions == 1
    async with db.session() as session:
        staged = (await session.execute(select(PlayerEventStaging.action))).scalars().all()
    assert staged == ["PLAY_START"]
