"""Signage pipeline runner -- import + star schema in one go.

Usage:
    python scripts/run_pipeline.py [--mode full|skip-raw-archival] [--strict]

Ctrl+C or SIGTERM stops the run at the next batch/stage boundary.
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_root))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(_root / ".env")

from loguru import logger  # noqa: E402

from database import open_database  # noqa: E402
from processor.config import IMPORT_MODES, PipelineSettings  # noqa: E402
from processor.errors import PipelineCancelled, PipelineError  # noqa: E402
from processor.log_config import setup_logging  # noqa: E402
from processor.pipeline import run_full_pipeline  # noqa: E402

_cancel_event: asyncio.Event | None = None


def _handle_signal(sig, _frame):
    """Request cancellation on SIGINT / SIGTERM."""
    logger.info("Received {}, stopping after the current batch...", signal.Signals(sig).name)
    if _cancel_event is not None:
        _cancel_event.set()


def _parse_args():
    parser = argparse.ArgumentParser(description="Signage reconciliation pipeline")
    parser.add_argument("--mode", choices=IMPORT_MODES, default=os.getenv("SIGNAGE_IMPORT_MODE", "full"))
    parser.add_argument("--strict", action="store_true")
    return parser.parse_args()


async def main():
    global _cancel_event

    args = _parse_args()
    settings = PipelineSettings()
    setup_logging(settings.log_dir, settings.log_level, name="pipeline")

    _cancel_event = asyncio.Event()
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    async with open_database(settings.database_url) as db:
        result = await run_full_pipeline(db, settings, mode=args.mode, strict=args.strict, cancel=_cancel_event)

    star = result["star_schema"]
    logger.info("=" * 60)
    logger.info("Pipeline done in {}s (mode={})", result["elapsed_sec"], result["mode"])
    logger.info("  sessions={} matched={:.1%}", result["sessions"], result["reconcile"]["match_rate"])
    logger.info("  campaigns={} customers={} events={}", star["campaigns"], star["customers"], star["events"])
    logger.info("  performance_summary={} campaign_detail={}", star["performance_summaries"], star["campaign_details"])
    logger.debug(json.dumps(result, ensure_ascii=False, default=str))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except PipelineCancelled as exc:
        logger.warning("Pipeline cancelled: {}", exc)
        raise SystemExit(130)
    except PipelineError as exc:
        logger.error("Pipeline failed: {}", exc)
        raise SystemExit(1)
