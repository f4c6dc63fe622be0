"""Strict, read-only quality check of the impression CSV.

Runs the strict row validator over every row without touching the store,
counts issues per type, keeps a few samples and writes every failing row to
``<log_dir>/quality-check-<run id>.log``.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from database.schemas import CsvQualityReport, IssueSampleOut
from processor.csv_reader import read_csv_rows
from processor.row_validation import IssueType, validate_impression_row

SAMPLE_LIMIT = 5
MESSAGE_WIDTH = 200


def _run_id(now: datetime) -> str:
    return now.strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def check_impression_csv(
    path: str | Path,
    sample_limit: int = SAMPLE_LIMIT,
    log_dir: str | Path = "logs",
) -> CsvQualityReport:
    path = Path(path)
    now = datetime.now(timezone.utc)
    log_root = Path(log_dir)
    log_root.mkdir(parents=True, exist_ok=True)
    log_path = log_root / f"quality-check-{_run_id(now)}.log"

    counts: Counter = Counter({issue.value: 0 for issue in IssueType})
    samples: list[IssueSampleOut] = []
    seen_keys: set[str] = set()
    total = valid = 0

    with log_path.open("w", encoding="utf-8") as detail:
        detail.write(f"Quality check run at {now.isoformat()}\nSource: {path}\n\n")
        for line_number, record in read_csv_rows(path):
            total += 1
            issues = validate_impression_row(record, strict=True, seen_keys=seen_keys)
            if not issues:
                valid += 1
                continue

            raw = ",".join(record.values())
            for issue in dict.fromkeys(issues):
                counts[issue.value] += 1
                if len(samples) < sample_limit:
                    samples.append(
                        IssueSampleOut(line_number=line_number, issue=issue.value, message=raw[:MESSAGE_WIDTH])
                    )
            detail.write(
                f"[line {line_number}] {raw}\nIssues: {', '.join(i.value for i in dict.fromkeys(issues))}\n\n"
            )

    report = CsvQualityReport(
        source=str(path),
        total_rows=total,
        valid_rows=valid,
        issue_counts=dict(counts),
        samples=samples,
        log_path=str(log_path),
    )
    logger.info("[quality] {}: {} rows, {} valid", path, total, valid)
    for issue, n in counts.items():
        if n:
            logger.warning("[quality]  - {}: {}", issue, n)
    return report
