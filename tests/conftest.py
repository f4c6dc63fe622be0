import csv
import sys
from pathlib import Path

import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from database import Database

PLAYER_COLUMNS = [
    "campaign_id", "date", "action", "campaign_session_id", "content_id",
    "content_session_id", "content_title", "device_id", "duration_second",
    "inventory_id", "iso_local_time", "iso_time", "player_version", "pricing_rule",
    "content_duration", "content_selection", "content_version", "elapsed_second",
    "playlist_created_time", "sequence_id", "advertiser_id", "iso_time_date", "part_date",
]

IMPRESSION_COLUMNS = [
    "content_id", "title", "audience_id", "age", "gender", "play_at",
    "attention_sec", "is_attention", "is_entrance", "content_group",
]


def player_row(session_id, action, iso_time, campaign_id="CMP1", content_id="C100", **extra):
    row = {
        "campaign_id": campaign_id,
        "date": iso_time[:10],
        "action": action,
        "campaign_session_id": session_id,
        "content_id": content_id,
        "content_session_id": f"cs-{session_id}",
        "content_title": "Summer Sale",
        "device_id": "dev-1",
        "duration_second": "15",
        "inventory_id": "inv-1",
        "iso_local_time": iso_time,
        "iso_time": iso_time,
        "player_version": "1.0.0",
        "pricing_rule": "cpm",
        "content_duration": "15",
        "content_selection": "auto",
        "content_version": "1",
        "elapsed_second": "15",
        "playlist_created_time": "2024-01-01T00:00:00",
        "sequence_id": "1",
        "advertiser_id": "",
        "iso_time_date": iso_time[:10],
        "part_date": iso_time[:10],
    }
    row.update(extra)
    return row


def impression_row(content_id, audience_id, play_at, **extra):
    row = {
        "content_id": content_id,
        "title": "Summer Sale",
        "audience_id": audience_id,
        "age": "20-29",
        "gender": "F",
        "play_at": play_at,
        "attention_sec": "3.5",
        "is_attention": "true",
        "is_entrance": "false",
        "content_group": "fashion",
    }
    row.update(extra)
    return row


def write_csv(path: Path, columns: list[str], rows: list[dict]) -> Path:
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns)
        writer.writeheader()
        writer.writerows(rows)
    return path


@pytest.fixture
def write_player_csv(tmp_path):
    def _write(rows, name="player_history.csv"):
        return write_csv(tmp_path / name, PLAYER_COLUMNS, rows)

    return _write


@pytest.fixture
def write_impression_csv(tmp_path):
    def _write(rows, name="content_performance.csv"):
        return write_csv(tmp_path / name, IMPRESSION_COLUMNS, rows)

    return _write


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await database.init()
    try:
        yield database
    finally:
        await database.dispose()
