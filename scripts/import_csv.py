"""Import both CSV feeds, collapse sessions, reconcile and repair titles.

Usage:
    python scripts/import_csv.py --mode full
    python scripts/import_csv.py --mode skip-raw-archival --strict

Environment variables (.env supported):
    SIGNAGE_DATABASE_URL, SIGNAGE_CSV_DIR, SIGNAGE_BATCH_SIZE, ...
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_root))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(_root / ".env")

from loguru import logger  # noqa: E402

from database import open_database  # noqa: E402
from processor.config import IMPORT_MODES, PipelineSettings  # noqa: E402
from processor.errors import PipelineError  # noqa: E402
from processor.log_config import setup_logging  # noqa: E402
from processor.pipeline import run_import  # noqa: E402
from processor.reconciler import STRATEGIES  # noqa: E402


def _parse_args():
    parser = argparse.ArgumentParser(description="CSV -> base tables import")
    parser.add_argument(
        "--mode",
        choices=IMPORT_MODES,
        default=os.getenv("SIGNAGE_IMPORT_MODE", "full"),
        help="full: archive every player row; skip-raw-archival: stage, collapse, discard",
    )
    parser.add_argument("--strict", action="store_true", help="Apply the strict impression validator")
    parser.add_argument(
        "--reconcile-strategy",
        choices=STRATEGIES,
        default="bulk",
        help="per_session is a slow fallback",
    )
    return parser.parse_args()


async def main():
    args = _parse_args()
    settings = PipelineSettings()
    setup_logging(settings.log_dir, settings.log_level, name="import")

    async with open_database(settings.database_url) as db:
        stats = await run_import(
            db,
            settings,
            mode=args.mode,
            strict=args.strict,
            reconcile_strategy=args.reconcile_strategy,
        )

    logger.info(
        "Done: player rows={} (skipped {}), impressions={} (skipped {}), sessions={}, "
        "matched={}/{}, repaired impressions={} sessions={}",
        stats["player_history"]["valid"],
        stats["player_history"]["skipped"],
        stats["content_performance"]["valid"],
        stats["content_performance"]["skipped"],
        stats["sessions"],
        stats["reconcile"]["matched_sessions"],
        stats["reconcile"]["total_sessions"],
        stats["repair"]["impression_title"]["fixed"],
        stats["repair"]["session_title"]["fixed"],
    )
    logger.debug(json.dumps(stats, ensure_ascii=False, default=str))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except PipelineError as exc:
        logger.error("[import] failed: {}", exc)
        raise SystemExit(1)
