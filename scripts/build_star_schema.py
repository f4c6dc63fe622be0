"""Rebuild campaign/customer/event/performance_summary/campaign_detail from base tables."""

import asyncio
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_root))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(_root / ".env")

from loguru import logger  # noqa: E402

from database import open_database  # noqa: E402
from processor.campaign_builder import rebuild_star_schema  # noqa: E402
from processor.config import PipelineSettings  # noqa: E402
from processor.errors import PipelineError  # noqa: E402
from processor.log_config import setup_logging  # noqa: E402


async def main():
    settings = PipelineSettings()
    setup_logging(settings.log_dir, settings.log_level, name="star_schema")
    settings.validate_runtime()
    logger.info("Grade thresholds: {}", settings.thresholds)

    async with open_database(settings.database_url) as db:
        stats = await rebuild_star_schema(db, settings.thresholds)

    logger.info(
        "Done: campaigns={} (tiers {}/{}/{}) customers={} events={} (dup skipped {}) "
        "summaries={} details={}",
        stats["campaigns"],
        stats["campaign_title_tier1"],
        stats["campaign_title_tier2"],
        stats["campaign_title_tier3"],
        stats["customers"],
        stats["events"],
        stats["event_duplicates_skipped"],
        stats["performance_summaries"],
        stats["campaign_details"],
    )


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except PipelineError as exc:
        logger.error("[star] failed: {}", exc)
        raise SystemExit(1)
