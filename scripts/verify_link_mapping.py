"""Session -> impression link mapping audit (read-only)."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_root))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(_root / ".env")

from loguru import logger  # noqa: E402

from database import open_database  # noqa: E402
from processor.config import PipelineSettings  # noqa: E402
from processor.log_config import setup_logging  # noqa: E402
from processor.quality_auditor import audit_link_mapping  # noqa: E402


def _parse_args():
    parser = argparse.ArgumentParser(description="1:N link mapping audit")
    parser.add_argument("--json", action="store_true", help="Print the full report as JSON")
    parser.add_argument(
        "--no-fail",
        action="store_true",
        help="Always return success even when mismatches are found",
    )
    return parser.parse_args()


async def main():
    args = _parse_args()
    settings = PipelineSettings()
    setup_logging(settings.log_dir, settings.log_level, name="verify_link_mapping")

    async with open_database(settings.database_url) as db:
        report = await audit_link_mapping(db)

    if args.json:
        print(report.model_dump_json(indent=2))

    logger.info(
        "[audit] sessions mapped {}/{} ({:.2%}), impressions mapped {}/{} ({:.2%})",
        report.mapped_sessions,
        report.total_sessions,
        report.session_ratio,
        report.mapped_impressions,
        report.total_impressions,
        report.impression_ratio,
    )
    logger.info("[audit] links per matched session avg={} min={} max={}",
                report.avg_links, report.min_links, report.max_links)
    for bucket in report.distribution:
        logger.info("[audit]   {} links: {} sessions ({:.2%})", bucket.link_count, bucket.sessions, bucket.ratio)
    if report.distribution_groups > len(report.distribution):
        logger.info("[audit]   ... ({} groups total)", report.distribution_groups)
    for sample in report.top_sessions:
        logger.info("[audit] top session #{} content_id={} start_at={} audiences={}",
                    sample.session_id, sample.content_id, sample.start_at, sample.audience_count)
    logger.info("[audit] unmatched: start_at NULL={} no counterpart={}",
                report.unmatched_no_start_at, report.unmatched_no_counterpart)

    if not report.passed:
        logger.error("[audit] {} sessions disagree with the match predicate", report.mismatch_sessions)
        for row in report.mismatches:
            logger.error("[audit]   session #{} matched={} mismatched={} missing={}",
                         row.session_id, row.matched, row.mismatched, row.missing)
        if not args.no_fail:
            raise SystemExit(2)

    logger.info("[audit] pass")


if __name__ == "__main__":
    asyncio.run(main())
