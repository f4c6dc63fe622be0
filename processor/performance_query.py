"""Read API: per-content performance with group rollups and summary.

With no active filter the pre-aggregated ``performance_summary`` rows are
served (with their ``campaign_detail``). Any filter switches to an on-the-fly
aggregate of ``raw_content_performance`` per content_id, graded with the same
percentile rule as the star schema.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time

from sqlalchemy import and_, case, func, or_, select

from database import Database
from database.models import CampaignDetail, ContentPerformance, PerformanceSummary
from database.schemas import (
    CampaignDetailOut,
    FilterOptionsOut,
    GroupStatOut,
    PerformanceReportOut,
    PerformanceRowOut,
    SummaryOut,
)
from processor.config import GradeThresholds
from processor.content_titles import display_title
from processor.errors import ConfigError
from processor.grading import percentile_grades

# [start, end) hours; night wraps midnight
TIME_SLOTS: dict[str, tuple[int, int]] = {
    "morning": (6, 11),
    "lunch": (11, 14),
    "dinner": (17, 21),
    "night": (21, 6),
}
ALL = "all"


@dataclass
class PerformanceFilter:
    date_from: date | None = None
    date_to: date | None = None
    time_slot: str = ALL
    content_groups: list[str] = field(default_factory=list)
    age_groups: list[str] = field(default_factory=list)
    gender: str = ALL

    def conditions(self) -> list:
        cp = ContentPerformance
        out = []
        if self.date_from:
            out.append(cp.play_at >= datetime.combine(self.date_from, time.min))
        if self.date_to:
            out.append(cp.play_at <= datetime.combine(self.date_to, time(23, 59, 59)))
        if self.time_slot and self.time_slot != ALL:
            if self.time_slot not in TIME_SLOTS:
                raise ConfigError(f"unknown time slot: {self.time_slot!r}")
            start, end = TIME_SLOTS[self.time_slot]
            hour = func.extract("hour", cp.play_at)
            if start > end:
                out.append(or_(hour >= start, hour < end))
            else:
                out.append(and_(hour >= start, hour < end))
        if self.content_groups:
            out.append(cp.content_group.in_(self.content_groups))
        if self.age_groups:
            out.append(cp.age.in_(self.age_groups))
        if self.gender and self.gender != ALL:
            out.append(cp.gender == self.gender)
        return out


def _group_rollup(rows: list[PerformanceRowOut]) -> list[GroupStatOut]:
    totals: dict[str, list[float]] = {}
    for row in rows:
        acc = totals.setdefault(row.content_group, [0, 0.0, 0])
        acc[0] += row.impressions
        acc[1] += row.impressions * row.entrance_rate
        acc[2] += 1
    groups = [
        GroupStatOut(
            content_group=group,
            total_impressions=int(impressions),
            avg_entrance_rate=entrance / impressions if impressions else 0.0,
            content_count=count,
        )
        for group, (impressions, entrance, count) in totals.items()
    ]
    return sorted(groups, key=lambda g: (-g.avg_entrance_rate, g.content_group))


def _summary(rows: list[PerformanceRowOut]) -> SummaryOut:
    if not rows:
        return SummaryOut()
    return SummaryOut(
        total_impressions=sum(r.impressions for r in rows),
        avg_attention_rate=sum(r.attention_rate for r in rows) / len(rows),
        avg_entrance_rate=sum(r.entrance_rate for r in rows) / len(rows),
        content_count=len(rows),
    )


async def _filter_options(session) -> FilterOptionsOut:
    cp = ContentPerformance
    groups = await session.execute(
        select(cp.content_group).where(cp.content_group.is_not(None)).distinct().order_by(cp.content_group)
    )
    ages = await session.execute(
        select(cp.age).where(cp.age.is_not(None), cp.age != "").distinct().order_by(cp.age)
    )
    return FilterOptionsOut(content_groups=list(groups.scalars()), age_groups=list(ages.scalars()))


async def _from_summary(session) -> list[PerformanceRowOut]:
    result = await session.execute(
        select(PerformanceSummary, CampaignDetail)
        .outerjoin(CampaignDetail, CampaignDetail.campaign_id == PerformanceSummary.campaign_id)
        .order_by(PerformanceSummary.entrance_rate.desc(), PerformanceSummary.campaign_id)
    )
    rows = []
    for summary, detail in result.all():
        rows.append(
            PerformanceRowOut(
                campaign_id=summary.campaign_id,
                content_id=summary.content_id or "",
                title=summary.title or "",
                display_title=display_title(summary.title),
                content_group=summary.content_group or "",
                impressions=summary.impressions,
                attention_rate=summary.attention_rate,
                entrance_rate=summary.entrance_rate,
                grade=summary.grade,
                detail=CampaignDetailOut.model_validate(detail) if detail is not None else None,
            )
        )
    return rows


async def _from_raw(session, conditions: list, thresholds: GradeThresholds) -> list[PerformanceRowOut]:
    cp = ContentPerformance
    result = await session.execute(
        select(
            cp.content_id,
            func.max(cp.title),
            func.max(cp.content_group),
            func.count(cp.id),
            func.sum(case((cp.is_attention.is_(True), 1), else_=0)),
            func.sum(case((cp.is_entrance.is_(True), 1), else_=0)),
        )
        .where(*conditions)
        .group_by(cp.content_id)
        .order_by(cp.content_id)
    )
    items = []
    for content_id, title, group, impressions, attention, entrance in result.all():
        impressions = int(impressions or 0)
        items.append({
            "content_id": content_id or "",
            "title": title or "",
            "content_group": group or "",
            "impressions": impressions,
            "attention_rate": int(attention or 0) / impressions if impressions else 0.0,
            "entrance_rate": int(entrance or 0) / impressions if impressions else 0.0,
        })

    graded = percentile_grades(
        items, rate=lambda i: i["entrance_rate"], key=lambda i: i["content_id"], thresholds=thresholds
    )
    return [
        PerformanceRowOut(display_title=display_title(item["title"]), grade=grade, **item)
        for item, _, grade in graded
    ]


async def query_performance(
    db: Database,
    filt: PerformanceFilter | None = None,
    thresholds: GradeThresholds | None = None,
) -> PerformanceReportOut:
    filt = filt or PerformanceFilter()
    thresholds = thresholds or GradeThresholds()
    conditions = filt.conditions()

    async with db.session() as session:
        if conditions:
            rows = await _from_raw(session, conditions, thresholds)
            source = "raw"
        else:
            rows = await _from_summary(session)
            source = "summary"
        options = await _filter_options(session)

    return PerformanceReportOut(
        source=source,
        data=rows,
        group_data=_group_rollup(rows),
        summary=_summary(rows),
        filter_options=options,
    )
