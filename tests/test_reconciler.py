from datetime import datetime, timedelta
from pathlib import Path
import random
import sys

import pytest
from sqlalchemy import select

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from database.models import ContentPerformance, PlayerSession
from processor.errors import ConfigError
from processor.reconciler import reconcile_sessions

T0 = datetime(2024, 1, 1, 10, 0, 0)


async def _seed(db, sessions, impressions):
    async with db.session() as session:
        session.add_all(PlayerSession(**s) for s in sessions)
        session.add_all(ContentPerformance(**i) for i in impressions)
        await session.commit()


async def _links(db) -> dict[str, list[int]]:
    async with db.session() as session:
        rows = await session.execute(
            select(PlayerSession.campaign_session_id, PlayerSession.content_performance_ids)
        )
        return dict(rows.all())


def _impression(content_id, audience_id, play_at):
    return {"content_id": content_id, "audience_id": audience_id, "play_at": play_at, "title": "t"}


@pytest.mark.asyncio
async def test_basic_scenario_links_only_exact_matches(db):
    await _seed(
        db,
        [
            {"campaign_session_id": "A", "content_id": "C100", "start_at": T0},
            {"campaign_session_id": "B", "content_id": "C200", "start_at": T0 + timedelta(minutes=1)},
            {"campaign_session_id": "C", "content_id": "C300", "start_at": None},
        ],
        [
            _impression("C100", "U1", T0),
            _impression("C100", "U2", T0),
            _impression("C100", "U3", T0 + timedelta(seconds=1)),
            _impression("C999", "U4", T0 + timedelta(minutes=1)),
        ],
    )

    stats = await reconcile_sessions(db)

    links = await _links(db)
    assert len(links["A"]) == 2
    assert links["B"] == []
    assert links["C"] == []
    assert stats.total_sessions == 3
    assert stats.matched_sessions == 1
    assert stats.total_linked == 2
    assert stats.match_rate == round(1 / 3, 4)
    assert stats.avg_per_matched == 2.0


@pytest.mark.asyncio
async def test_rerun_replaces_stale_links(db):
    await _seed(
        db,
        [{"campaign_session_id": "A", "content_id": "C100", "start_at": T0, "content_performance_ids": [999]}],
        [],
    )

    stats = await reconcile_sessions(db)

    assert (await _links(db))["A"] == []
    assert stats.matched_sessions == 0


@pytest.mark.parametrize("strategy", ["bulk", "per_session"])
@pytest.mark.asyncio
async def test_links_match_brute_force(db, strategy):
    rng = random.Random(7)
    contents = ["C1", "C2", "C3"]
    times = [T0 + timedelta(seconds=15 * i) for i in range(6)]
    sessions = [
        {"campaign_session_id": f"S{i}", "content_id": rng.choice(contents), "start_at": rng.choice(times + [None])}
        for i in range(25)
    ]
    impressions = []
    for i in range(80):
        imp = _impression(rng.choice(contents), f"U{i}", rng.choice(times))
        impressions.append(imp)
    await _seed(db, sessions, impressions)

    await reconcile_sessions(db, strategy=strategy)

    async with db.session() as session:
        stored = {
            sid: (cid, start, ids)
            for sid, cid, start, ids in (
                await session.execute(
                    select(
                        PlayerSession.campaign_session_id,
                        PlayerSession.content_id,
                        PlayerSession.start_at,
                        PlayerSession.content_performance_ids,
                    )
                )
            ).all()
        }
        all_impressions = (
            await session.execute(select(ContentPerformance.id, ContentPerformance.content_id, ContentPerformance.play_at))
        ).all()

    for sid, (content_id, start_at, ids) in stored.items():
        expected = sorted(
            iid for iid, cid, play_at in all_impressions
            if start_at is not None and cid == content_id and play_at == start_at
        )
        assert sorted(ids) == expected, sid


@pytest.mark.asyncio
async def test_unknown_strategy_is_rejected(db):
    with pytest.raises(ConfigError):
        await reconcile_sessions(db, strategy="magic")
