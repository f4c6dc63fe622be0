"""Dump the read-API performance report as JSON.

Usage:
    python scripts/performance_report.py
    python scripts/performance_report.py --from 2024-01-01 --to 2024-01-31 --time-slot lunch --gender F
"""

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_root))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(_root / ".env")

from loguru import logger  # noqa: E402

from database import open_database  # noqa: E402
from processor.config import PipelineSettings  # noqa: E402
from processor.errors import PipelineError  # noqa: E402
from processor.log_config import setup_logging  # noqa: E402
from processor.performance_query import TIME_SLOTS, PerformanceFilter, query_performance  # noqa: E402


def _csv_list(raw: str) -> list[str]:
    return [chunk.strip() for chunk in raw.split(",") if chunk.strip()]


def _parse_args():
    parser = argparse.ArgumentParser(description="Content performance report")
    parser.add_argument("--from", dest="date_from", type=date.fromisoformat, default=None)
    parser.add_argument("--to", dest="date_to", type=date.fromisoformat, default=None)
    parser.add_argument("--time-slot", choices=["all", *TIME_SLOTS], default="all")
    parser.add_argument("--content-groups", type=_csv_list, default=[])
    parser.add_argument("--age-groups", type=_csv_list, default=[])
    parser.add_argument("--gender", default="all")
    parser.add_argument("--output", default=None, help="Write JSON here instead of stdout")
    return parser.parse_args()


async def main():
    args = _parse_args()
    settings = PipelineSettings()
    setup_logging(settings.log_dir, settings.log_level, name="performance_report")

    filt = PerformanceFilter(
        date_from=args.date_from,
        date_to=args.date_to,
        time_slot=args.time_slot,
        content_groups=args.content_groups,
        age_groups=args.age_groups,
        gender=args.gender,
    )
    async with open_database(settings.database_url) as db:
        report = await query_performance(db, filt, settings.thresholds)

    payload = report.model_dump_json(indent=2)
    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        logger.info("Report written to {}", args.output)
    else:
        print(payload)
    logger.info(
        "[report] source={} contents={} impressions={} avg entrance={:.2%}",
        report.source,
        report.summary.content_count,
        report.summary.total_impressions,
        report.summary.avg_entrance_rate,
    )


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except PipelineError as exc:
        logger.error("[report] failed: {}", exc)
        raise SystemExit(1)
