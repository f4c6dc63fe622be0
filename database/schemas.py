"""Pydantic 스키마 -- 읽기 API 응답 / 품질 리포트 직렬화.

비율 필드 규칙:
  - attention_rate / entrance_rate : 0..1 (impressions 대비 비율)
  - avg_entrance_rate (그룹)      : 그룹 entrance 합 / 그룹 impressions 합
  - *_ratio (매핑 감사)           : 0..1
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ── Campaign detail ──
class DistributionBucket(BaseModel):
    bucket: str | None
    count: int


class CampaignDetailOut(BaseModel):
    total_viewers: int = 0
    attention_count: int = 0
    entrance_count: int = 0
    total_watch_time: float = 0.0
    age_distribution: list[DistributionBucket] = []
    gender_distribution: list[DistributionBucket] = []
    model_config = ConfigDict(from_attributes=True)


# ── Performance rows ──
class PerformanceRowOut(BaseModel):
    campaign_id: str | None = None
    content_id: str
    title: str
    display_title: str
    content_group: str
    impressions: int
    attention_rate: float
    entrance_rate: float
    grade: str
    detail: CampaignDetailOut | None = None
    model_config = ConfigDict(from_attributes=True)


class GroupStatOut(BaseModel):
    content_group: str
    total_impressions: int
    avg_entrance_rate: float = Field(description="group entrance / group impressions")
    content_count: int


class SummaryOut(BaseModel):
    total_impressions: int = 0
    avg_attention_rate: float = 0.0
    avg_entrance_rate: float = 0.0
    content_count: int = 0


class FilterOptionsOut(BaseModel):
    content_groups: list[str] = []
    age_groups: list[str] = []


class PerformanceReportOut(BaseModel):
    source: str = Field(description="'summary' (pre-aggregated) or 'raw' (filtered)")
    data: list[PerformanceRowOut]
    group_data: list[GroupStatOut]
    summary: SummaryOut
    filter_options: FilterOptionsOut


# ── Link mapping audit ──
class LinkCountBucket(BaseModel):
    link_count: int
    sessions: int
    ratio: float


class LinkMismatchOut(BaseModel):
    session_id: int
    matched: int = 0
    mismatched: int = 0
    missing: int = 0


class SessionSampleOut(BaseModel):
    session_id: int
    content_id: str | None
    start_at: datetime | None
    audience_count: int
    audiences: list[str] = []


class LinkMappingReport(BaseModel):
    total_sessions: int = 0
    total_impressions: int = 0
    mapped_sessions: int = 0
    mapped_impressions: int = 0
    session_ratio: float = 0.0
    impression_ratio: float = 0.0
    avg_links: float = 0.0
    min_links: int = 0
    max_links: int = 0
    distribution: list[LinkCountBucket] = []
    distribution_groups: int = 0
    mismatches: list[LinkMismatchOut] = []
    mismatch_sessions: int = 0
    top_sessions: list[SessionSampleOut] = []
    unmatched_no_start_at: int = 0
    unmatched_no_counterpart: int = 0

    @property
    def passed(self) -> bool:
        return self.mismatch_sessions == 0


# ── CSV quality check ──
class IssueSampleOut(BaseModel):
    line_number: int
    issue: str
    message: str


class CsvQualityReport(BaseModel):
    source: str
    total_rows: int = 0
    valid_rows: int = 0
    issue_counts: dict[str, int] = {}
    samples: list[IssueSampleOut] = []
    log_path: str | None = None

    @property
    def passed(self) -> bool:
        return not any(self.issue_counts.values())
