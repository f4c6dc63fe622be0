from datetime import datetime, timedelta
from pathlib import Path
import sys

import pytest
from sqlalchemy import update

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from database.models import ContentPerformance, PlayerSession
from processor.quality_auditor import audit_link_mapping
from processor.reconciler import reconcile_sessions

T0 = datetime(2024, 1, 1, 10, 0, 0)


async def _seed(db):
    async with db.session() as session:
        session.add_all([
            PlayerSession(campaign_session_id="A", content_id="C1", start_at=T0),
            PlayerSession(campaign_session_id="B", content_id="C2", start_at=T0 + timedelta(minutes=1)),
            PlayerSession(campaign_session_id="C", content_id="C3", start_at=None),
        ])
        session.add_all([
            ContentPerformance(content_id="C1", audience_id="U1", play_at=T0, gender="F", age="20-29"),
            ContentPerformance(content_id="C1", audience_id="U2", play_at=T0, gender="M", age="30-39"),
            ContentPerformance(content_id="C2", audience_id="U3", play_at=T0),
        ])
        await session.commit()
    await reconcile_sessions(db)


@pytest.mark.asyncio
async def test_audit_reports_totals_and_unmatched_causes(db):
    await _seed(db)

    report = await audit_link_mapping(db)

    assert report.total_sessions == 3
    assert report.total_impressions == 3
    assert report.mapped_sessions == 1
    assert report.mapped_impressions == 2
    assert report.session_ratio == pytest.approx(1 / 3)
    assert (report.min_links, report.max_links, report.avg_links) == (2, 2, 2.0)
    assert [(b.link_count, b.sessions) for b in report.distribution] == [(2, 1)]
    assert report.unmatched_no_start_at == 1
    assert report.unmatched_no_counterpart == 1
    assert report.top_sessions[0].audiences == ["U1(F,20-29)", "U2(M,30-39)"]
    assert report.passed


@pytest.mark.asyncio
async def test_audit_flags_wrong_and_missing_links(db):
    await _seed(db)
    async with db.session() as session:
        await session.execute(
            update(PlayerSession)
            .where(PlayerSession.campaign_session_id == "A")
            .values(content_performance_ids=[1, 3])
        )
        await session.commit()

    report = await audit_link_mapping(db)

    assert not report.passed
    assert report.mismatch_sessions == 1
    mismatch = report.mismatches[0]
    assert (mismatch.matched, mismatch.mismatched, mismatch.missing) == (1, 1, 1)


@pytest.mark.asyncio
async def test_audit_on_empty_store(db):
    report = await audit_link_mapping(db)

    assert report.total_sessions == 0
    assert report.session_ratio == 0.0
    assert report.distribution == []
    assert report.passed
