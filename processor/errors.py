"""Pipeline exception hierarchy.

Row-level data problems are never raised; they are counted and sampled by the
stage that finds them. These exceptions cover failures that abort a run.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all pipeline failures."""


class ConfigError(PipelineError):
    """Raised for invalid runtime configuration."""


class SourceFileError(PipelineError):
    """Raised when an input CSV cannot be opened or decoded."""


class PipelineCancelled(PipelineError):
    """Raised when the caller's cancellation signal is set between batches or stages."""


def check_cancelled(cancel, where: str) -> None:
    """Raise ``PipelineCancelled`` if the caller's ``asyncio.Event`` is set."""
    if cancel is not None and cancel.is_set():
        raise PipelineCancelled(f"cancelled at {where}")
