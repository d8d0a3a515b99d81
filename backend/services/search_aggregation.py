"""
Dimensional aggregation of Search Console rows.

Reduces raw search analytics rows into overall totals plus bounded
per-dimension breakdowns (top queries, pages, countries, devices).
A separate daily series (rows fetched with the ``date`` dimension) feeds the
time-series charts.

Notes on semantics:
- Totals are summed over every valid row, including rows whose dimension
  values were not admitted into a capped breakdown.
- A breakdown admits new keys only while it is below its cap. Keys already
  admitted keep accumulating after the cap is reached.
- Per-key ``position`` is last-write-wins: the most recently seen row for a
  key decides it. Upstream returns rows in a stable order, so this matches
  what the dashboard has always shown. The totals' ``average_position`` is the
  impression-weighted mean across all valid rows.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from core.domain.analytics import (
    DEFAULT_DIMENSIONS,
    AggregatedResult,
    DailyPoint,
    DimensionEntry,
    Totals,
)

logger = logging.getLogger(__name__)

# None means unbounded
DEFAULT_CAPS: dict[str, Optional[int]] = {
    "query": 50,
    "page": 50,
    "country": 20,
    "device": None,
}


def safe_ctr(clicks: float, impressions: float) -> float:
    """Click-through rate, 0.0 when there are no impressions."""
    if not impressions:
        return 0.0
    return clicks / impressions


def _metric(row: Mapping[str, Any], name: str) -> Optional[float]:
    value = row.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value:  # NaN
        return None
    return value


def aggregate(
    rows: Iterable[Mapping[str, Any]],
    dimensions: Iterable[str] = DEFAULT_DIMENSIONS,
    caps: Optional[Mapping[str, Optional[int]]] = None,
    truncated: bool = False,
) -> AggregatedResult:
    """
    Aggregate search analytics rows into totals and capped breakdowns.

    Args:
        rows: Mappings keyed by dimension name plus ``clicks``,
            ``impressions`` and (optionally) ``position``
        dimensions: Dimensions to break down; unknown names are ignored
        caps: Per-dimension breakdown caps (defaults to DEFAULT_CAPS)
        truncated: Whether upstream hit its row cap for this window

    Returns:
        AggregatedResult with breakdowns sorted by clicks descending
    """
    effective_caps = dict(DEFAULT_CAPS)
    if caps:
        effective_caps.update(caps)

    wanted = [d for d in dimensions if d in DEFAULT_CAPS]
    buckets: dict[str, dict[str, DimensionEntry]] = {d: {} for d in wanted}

    result = AggregatedResult(truncated=truncated)
    totals = Totals()
    weighted_position = 0.0

    for row in rows:
        clicks = _metric(row, "clicks")
        impressions = _metric(row, "impressions")
        if clicks is None or impressions is None:
            result.skipped_rows += 1
            continue

        result.row_count += 1
        totals.clicks += clicks
        totals.impressions += impressions

        position = _metric(row, "position")
        if position is not None:
            weighted_position += position * impressions

        for dimension in wanted:
            key = row.get(dimension)
            if key is None or key == "":
                continue
            key = str(key)
            bucket = buckets[dimension]
            entry = bucket.get(key)
            if entry is None:
                cap = effective_caps.get(dimension)
                if cap is not None and len(bucket) >= cap:
                    continue
                entry = DimensionEntry(value=key)
                bucket[key] = entry
            entry.clicks += clicks
            entry.impressions += impressions
            if position is not None:
                entry.position = position

    totals.ctr = safe_ctr(totals.clicks, totals.impressions)
    totals.average_position = (
        weighted_position / totals.impressions if totals.impressions else 0.0
    )
    result.totals = totals

    for dimension, bucket in buckets.items():
        entries = list(bucket.values())
        for entry in entries:
            entry.ctr = safe_ctr(entry.clicks, entry.impressions)
        # sorted() is stable, so ties keep insertion order
        entries = sorted(entries, key=lambda e: e.clicks, reverse=True)
        result.breakdown(dimension).extend(entries)

    if result.skipped_rows:
        logger.warning(
            "Skipped %d malformed search analytics rows", result.skipped_rows
        )

    return result


def aggregate_daily(rows: Iterable[Mapping[str, Any]]) -> list[DailyPoint]:
    """
    Fold ``date``-dimension rows into one point per day, oldest first.

    Position is the impression-weighted mean of the day's rows. Malformed rows
    and rows without a date are skipped.
    """
    points: dict[str, DailyPoint] = {}
    weighted: dict[str, float] = {}
    skipped = 0

    for row in rows:
        day = row.get("date")
        clicks = _metric(row, "clicks")
        impressions = _metric(row, "impressions")
        if not day or clicks is None or impressions is None:
            skipped += 1
            continue

        day = str(day)
        point = points.get(day)
        if point is None:
            point = points[day] = DailyPoint(date=day)
            weighted[day] = 0.0
        point.clicks += clicks
        point.impressions += impressions

        position = _metric(row, "position")
        if position is not None:
            weighted[day] += position * impressions

    for day, point in points.items():
        point.ctr = safe_ctr(point.clicks, point.impressions)
        point.position = weighted[day] / point.impressions if point.impressions else 0.0

    if skipped:
        logger.warning("Skipped %d malformed daily rows", skipped)

    # ISO dates sort chronologically
    return [points[day] for day in sorted(points)]
