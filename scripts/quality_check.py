"""Strict quality check of content_performance.csv (no DB writes)."""

import argparse
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_root))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(_root / ".env")

from loguru import logger  # noqa: E402

from processor.config import PipelineSettings  # noqa: E402
from processor.csv_quality import check_impression_csv  # noqa: E402
from processor.errors import PipelineError  # noqa: E402
from processor.log_config import setup_logging  # noqa: E402


def _parse_args(settings: PipelineSettings):
    parser = argparse.ArgumentParser(description="Impression CSV quality check")
    parser.add_argument("--file", default=str(settings.content_performance_path))
    parser.add_argument("--samples", type=int, default=settings.quality_sample_limit)
    parser.add_argument("--fail-on-issues", action="store_true", help="Exit 2 when any issue is found")
    return parser.parse_args()


def main():
    settings = PipelineSettings()
    args = _parse_args(settings)
    setup_logging(settings.log_dir, settings.log_level, name="quality_check")

    report = check_impression_csv(args.file, sample_limit=args.samples, log_dir=settings.log_dir)

    logger.info("=== CSV Quality Check Summary ===")
    logger.info("File: {}", report.source)
    logger.info("Total rows: {}", report.total_rows)
    logger.info("Valid rows: {}", report.valid_rows)
    if report.passed:
        logger.info("No issues detected.")
        return

    for sample in report.samples:
        logger.warning(" [{}] line {}: {}", sample.issue, sample.line_number, sample.message)
    logger.info("Detailed log saved to {}", report.log_path)
    if args.fail_on_issues:
        raise SystemExit(2)


if __name__ == "__main__":
    try:
        main()
    except PipelineError as exc:
        logger.error("Quality check failed: {}", exc)
        raise SystemExit(1)
