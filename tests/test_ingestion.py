import asyncio
from pathlib import Path
import sys

import pytest
from sqlalchemy import func, select

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import impression_row, player_row
from database.models import ContentPerformance, PlayerEvent, PlayerEventStaging
from processor.errors import ConfigError, PipelineCancelled, SourceFileError
from processor.ingestion import (
    IngestOptions,
    clear_base_tables,
    import_content_performance,
    import_player_history,
    player_table,
)


async def _count(db, model):
    async with db.session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_malformed_play_at_is_skipped_sampled_and_never_inserted(db, write_impression_csv):
    path = write_impression_csv([
        impression_row("C100", "U1", "2024-01-01T10:00:00"),
        impression_row("C100", "U2", "not-a-date"),
        impression_row("C100", "U3", "2024-01-01T10:00:00"),
    ])

    stats = await import_content_performance(db, path)

    assert stats.total == 3
    assert stats.valid == 2
    assert stats.skipped == 1
    assert stats.issue_counts == {"invalidDate": 1}
    assert stats.invalid_samples[0].line_number == 3
    assert "U2" in stats.invalid_samples[0].data
    async with db.session() as session:
        audiences = (await session.execute(select(ContentPerformance.audience_id))).scalars().all()
    assert sorted(audiences) == ["U1", "U3"]


@pytest.mark.asyncio
async def test_duplicate_keys_are_skipped_silently(db, write_impression_csv):
    path = write_impression_csv([
        impression_row("C100", "U1", "2024-01-01T10:00:00"),
        impression_row("C100", "U1", "2024-01-01T10:00:00", title="again"),
    ])

    stats = await import_content_performance(db, path)

    assert stats.valid == 2
    assert stats.skipped == 0
    assert await _count(db, ContentPerformance) == 1


@pytest.mark.asyncio
async def test_strict_import_rejects_forbidden_extensions(db, write_impression_csv):
    path = write_impression_csv([
        impression_row("C100", "U1", "2024-01-01T10:00:00"),
        impression_row("C100", "U2", "2024-01-01T10:00:00", title="ad1.mp4"),
    ])

    stats = await import_content_performance(db, path, IngestOptions(strict=True))

    assert stats.skipped == 1
    assert stats.issue_counts == {"forbiddenExtension": 1}
    assert await _count(db, ContentPerformance) == 1


@pytest.mark.asyncio
async def test_invalid_samples_are_capped(db, write_impression_csv):
    rows = [impression_row("C100", f"U{i}", "bad") for i in range(15)]
    path = write_impression_csv(rows)

    stats = await import_content_performance(db, path, IngestOptions(sample_limit=4))

    assert stats.skipped == 15
    assert len(stats.invalid_samples) == 4


@pytest.mark.asyncio
async def test_small_batches_flush_every_row(db, write_player_csv):
    rows = [player_row(f"S{i}", "PLAY_START", f"2024-01-01T10:00:{i:02d}") for i in range(7)]
    path = write_player_csv(rows)

    stats = await import_player_history(db, path, "full", IngestOptions(batch_size=2, queue_depth=1))

    assert stats.valid == 7
    assert stats.batches == 4
    assert stats.flushed == 7
    assert await _count(db, PlayerEvent) == 7


@pytest.mark.asyncio
async def test_modes_target_different_tables(db, write_player_csv):
    row = player_row("S1", "PLAY_START", "2024-01-01T10:00:00", part_date="")
    path = write_player_csv([row])

    full = await import_player_history(db, path, "full")
    skip = await import_player_history(db, path, "skip-raw-archival")

    assert full.skipped == 1
    assert skip.valid == 1
    assert await _count(db, PlayerEvent) == 0
    assert await _count(db, PlayerEventStaging) == 1


@pytest.mark.asyncio
async def test_rerun_after_clear_gives_identical_counts(db, write_player_csv, write_impression_csv):
    player = write_player_csv([
        player_row("S1", "PLAY_START", "2024-01-01T10:00:00"),
        player_row("S1", "PLAY_END", "2024-01-01T10:00:15"),
    ])
    impressions = write_impression_csv([impression_row("C100", "U1", "2024-01-01T10:00:00")])

    counts = []
    for _ in range(2):
        await clear_base_tables(db)
        await import_player_history(db, player, "full")
        await import_content_performance(db, impressions)
        counts.append((await _count(db, PlayerEvent), await _count(db, ContentPerformance)))

    assert counts == [(2, 1), (2, 1)]


@pytest.mark.asyncio
async def test_missing_file_raises_source_error(db, tmp_path):
    with pytest.raises(SourceFileError):
        await import_content_performance(db, tmp_path / "missing.csv")


@pytest.mark.asyncio
async def test_cancel_signal_stops_ingestion(db, write_player_csv):
    rows = [player_row(f"S{i}", "PLAY_START", f"2024-01-01T10:00:{i:02d}") for i in range(10)]
    path = write_player_csv(rows)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(PipelineCancelled):
        await import_player_history(db, path, "full", IngestOptions(batch_size=2, cancel=cancel))


def test_player_table_rejects_unknown_mode():
    with pytest.raises(ConfigError):
        player_table("turbo")
