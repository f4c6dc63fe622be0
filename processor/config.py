"""Pipeline-wide settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings

from processor.errors import ConfigError

IMPORT_MODES = ("full", "skip-raw-archival")


@dataclass(frozen=True)
class GradeThresholds:
    """Percentile cut-offs (exclusive upper bounds) for S/A/B/C; anything above is D."""

    s: float = 10.0
    a: float = 30.0
    b: float = 50.0
    c: float = 70.0

    def __post_init__(self):
        bounds = (self.s, self.a, self.b, self.c)
        if any(b < 0 or b > 100 for b in bounds):
            raise ConfigError(f"grade thresholds must be within 0..100: {bounds}")
        if list(bounds) != sorted(bounds):
            raise ConfigError(f"grade thresholds must be non-decreasing: {bounds}")

    def grade_for(self, percentile: float) -> str:
        if percentile < self.s:
            return "S"
        if percentile < self.a:
            return "A"
        if percentile < self.b:
            return "B"
        if percentile < self.c:
            return "C"
        return "D"


def parse_grade_thresholds(raw: str | None) -> GradeThresholds:
    """Parse 's,a,b,c' (e.g. '10,30,50,70'). Empty input gives the defaults."""
    if raw is None or not raw.strip():
        return GradeThresholds()
    parts = [chunk.strip() for chunk in raw.split(",") if chunk.strip()]
    if len(parts) != 4:
        raise ConfigError(f"expected 4 grade thresholds, got {len(parts)}: {raw!r}")
    try:
        s, a, b, c = (float(p) for p in parts)
    except ValueError as exc:
        raise ConfigError(f"invalid grade thresholds: {raw!r}") from exc
    return GradeThresholds(s=s, a=a, b=b, c=c)


class PipelineSettings(BaseSettings):
    # DB
    database_url: str = "sqlite+aiosqlite:///signage.db"

    # 입력 CSV
    csv_dir: str = ".csv"
    player_history_file: str = "player_history.csv"
    content_performance_file: str = "content_performance.csv"

    # 배치
    batch_size: int = 5_000
    queue_depth: int = 2
    invalid_sample_limit: int = 10
    quality_sample_limit: int = 5

    # 등급 (S,A,B,C 백분위 상한)
    grade_thresholds: str = "10,30,50,70"

    # 로그
    log_dir: str = "logs"
    log_level: str = "INFO"

    model_config = {"env_prefix": "SIGNAGE_"}

    @property
    def player_history_path(self) -> Path:
        return Path(self.csv_dir) / self.player_history_file

    @property
    def content_performance_path(self) -> Path:
        return Path(self.csv_dir) / self.content_performance_file

    @property
    def thresholds(self) -> GradeThresholds:
        return parse_grade_thresholds(self.grade_thresholds)

    def validate_runtime(self) -> None:
        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive: {self.batch_size}")
        if self.queue_depth <= 0:
            raise ConfigError(f"queue_depth must be positive: {self.queue_depth}")
        if self.invalid_sample_limit < 0:
            raise ConfigError(f"invalid_sample_limit must be >= 0: {self.invalid_sample_limit}")
        parse_grade_thresholds(self.grade_thresholds)
