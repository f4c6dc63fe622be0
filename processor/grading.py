"""Percentile letter grades by entrance rate.

Rank: entrance_rate descending, ties broken by key ascending (stable).
Percentile of the item at zero-based ``index`` is ``index / total * 100``,
then mapped through ``GradeThresholds``. With the defaults on ten items the
second one sits exactly at 10 and gets ``A`` (the S bound is exclusive).
"""

from __future__ import annotations

from typing import Callable, Iterable, TypeVar

from processor.config import GradeThresholds

T = TypeVar("T")


def rank_by_entrance(
    items: Iterable[T],
    rate: Callable[[T], float],
    key: Callable[[T], str],
) -> list[T]:
    ordered = sorted(items, key=key)
    # sorted() is stable, so equal rates keep key order
    return sorted(ordered, key=rate, reverse=True)


def percentile_grades(
    items: Iterable[T],
    rate: Callable[[T], float],
    key: Callable[[T], str],
    thresholds: GradeThresholds | None = None,
) -> list[tuple[T, float, str]]:
    """Return ``(item, percentile, grade)`` in rank order."""
    thresholds = thresholds or GradeThresholds()
    ranked = rank_by_entrance(items, rate, key)
    total = len(ranked)
    graded = []
    for index, item in enumerate(ranked):
        percentile = index / total * 100
        graded.append((item, percentile, thresholds.grade_for(percentile)))
    return graded


def assign_grades(rates: dict[str, float], thresholds: GradeThresholds | None = None) -> dict[str, str]:
    """``{campaign_id: entrance_rate}`` -> ``{campaign_id: grade}``."""
    graded = percentile_grades(rates.items(), rate=lambda kv: kv[1], key=lambda kv: kv[0], thresholds=thresholds)
    return {kv[0]: grade for kv, _, grade in graded}
