"""CSV 적재 -> 세션 집계 -> 시간 매칭 -> 제목 복구 -> 스타 스키마 파이프라인.

Stages run strictly in order and each commits before the next starts.
The pipeline assumes exclusive ownership of its tables: two runs against the
same store at once are unsupported.
"""

from __future__ import annotations

import asyncio
import time

from loguru import logger

from database import Database
from processor.campaign_builder import rebuild_star_schema
from processor.config import IMPORT_MODES, PipelineSettings
from processor.content_repair import repair_content_titles
from processor.errors import ConfigError, check_cancelled
from processor.ingestion import (
    IngestOptions,
    clear_base_tables,
    import_content_performance,
    import_player_history,
)
from processor.reconciler import reconcile_sessions
from processor.session_collapser import collapse_sessions


def _ingest_options(settings: PipelineSettings, strict: bool, cancel: asyncio.Event | None) -> IngestOptions:
    return IngestOptions(
        batch_size=settings.batch_size,
        queue_depth=settings.queue_depth,
        sample_limit=settings.invalid_sample_limit,
        strict=strict,
        cancel=cancel,
    )


async def run_import(
    db: Database,
    settings: PipelineSettings,
    mode: str = "full",
    strict: bool = False,
    reconcile_strategy: str = "bulk",
    cancel: asyncio.Event | None = None,
) -> dict:
    """Base-table refresh: ingest both feeds, collapse, reconcile, repair."""
    if mode not in IMPORT_MODES:
        raise ConfigError(f"unknown import mode: {mode!r}")
    settings.validate_runtime()
    options = _ingest_options(settings, strict, cancel)
    started = time.monotonic()

    logger.info("[pipeline] import start (mode={}, strict={})", mode, strict)
    await clear_base_tables(db)

    check_cancelled(cancel, "ingest player feed")
    player = await import_player_history(db, settings.player_history_path, mode=mode, options=options)
    check_cancelled(cancel, "ingest impression feed")
    impressions = await import_content_performance(db, settings.content_performance_path, options=options)

    check_cancelled(cancel, "collapse")
    collapse = await collapse_sessions(db, mode)
    check_cancelled(cancel, "reconcile")
    reconcile = await reconcile_sessions(db, strategy=reconcile_strategy, cancel=cancel)
    check_cancelled(cancel, "repair")
    repair = await repair_content_titles(db)

    elapsed = round(time.monotonic() - started, 2)
    logger.info("[pipeline] import done in {}s", elapsed)
    return {
        "mode": mode,
        "player_history": player.as_dict(),
        "content_performance": impressions.as_dict(),
        "sessions": collapse.sessions,
        "reconcile": reconcile.as_dict(),
        "repair": repair,
        "elapsed_sec": elapsed,
    }


async def run_full_pipeline(
    db: Database,
    settings: PipelineSettings,
    mode: str = "full",
    strict: bool = False,
    reconcile_strategy: str = "bulk",
    cancel: asyncio.Event | None = None,
) -> dict:
    """Import stages followed by the star-schema rebuild."""
    result = await run_import(
        db, settings, mode=mode, strict=strict, reconcile_strategy=reconcile_strategy, cancel=cancel
    )
    check_cancelled(cancel, "star schema")
    result["star_schema"] = await rebuild_star_schema(db, settings.thresholds, cancel=cancel)
    return result
