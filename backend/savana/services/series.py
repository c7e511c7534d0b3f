"""
Chart Series
============

Shapes stored readings for the dashboard charts.

WHAT THIS DOES:
--------------
1. Groups readings by time bucket (hourly by default), so both nodes line up
   on the same x-axis point
2. Labels each bucket in the display timezone ("10/07 15:00" for
   2025-07-10T08:00:00 UTC in Asia/Jakarta)
3. Drops sentinel values (moisture -99) to None so charts show a gap
4. Remembers the last good result per selection; when a read fails the
   dashboard keeps showing that instead of going blank

THE OUTPUT:
----------
    {
        "timezone": "Asia/Jakarta",
        "nodes": ["N1", "N2"],
        "range": "7d",
        "metrics": {
            "temperature": [
                {"timestamp": 1752134400000, "time": "10/07 15:00", "N1": 22.5, "N2": null},
                ...
            ],
            "humidity": [...], "pressure": [...], "moisture": [...], "rain": [...]
        },
        "points": 24,
        "stale": false,
        "notice": null,
        "last_ingest": "2025-07-10T08:00:04.512000+00:00"
    }
"""

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from savana.errors import QueryError
from savana.models import MEASUREMENT_FIELDS, CycleResult, ReadingQuery, StoredReading, is_sentinel
from savana.services.store import ReadingStore
from savana.utils.validation import parse_waktu

logger = logging.getLogger(__name__)


LABEL_FORMAT = "%d/%m %H:%M"

READ_FAILURE_NOTICE = "Unable to load new data. Showing the last available readings."

# Selections whose last good series is kept for the read-failure fallback
MAX_SNAPSHOTS = 32


def _bucket_start(moment: datetime, bucket_minutes: int) -> datetime:
    minutes = moment.hour * 60 + moment.minute
    floored = minutes - (minutes % bucket_minutes) if bucket_minutes < 1440 else 0
    return moment.replace(hour=floored // 60, minute=floored % 60, second=0, microsecond=0)


def clean_value(field: str, value: Optional[float]) -> Optional[float]:
    """The value as a chart should see it: None for missing or sentinel."""
    if value is None or is_sentinel(field, value):
        return None
    return value


def build_series(
    readings: Iterable[StoredReading],
    display_timezone: str = "Asia/Jakarta",
    bucket_minutes: int = 60
) -> dict:
    """
    Group readings into per-metric chart series.

    Args:
        readings: Stored readings in any order
        display_timezone: IANA zone used for the `time` labels only
        bucket_minutes: Bucket width; readings in the same bucket share a point

    Returns:
        {"timezone", "nodes", "metrics": {field: [points...]}, "points"}

    Within one bucket the newest reading of a node wins. Readings with an
    unparseable timestamp are skipped with a warning.
    """
    zone = ZoneInfo(display_timezone)
    buckets: dict[datetime, dict[str, StoredReading]] = {}
    observed: dict[tuple[datetime, str], datetime] = {}
    nodes: list[str] = []

    for reading in readings:
        try:
            moment = parse_waktu(reading.observed_at)
        except ValueError:
            logger.warning(f"[{reading.node_id}] Skipping reading with bad timestamp: {reading.observed_at!r}")
            continue

        if reading.node_id not in nodes:
            nodes.append(reading.node_id)

        bucket = _bucket_start(moment, bucket_minutes)
        previous = observed.get((bucket, reading.node_id))
        if previous is None or moment >= previous:
            buckets.setdefault(bucket, {})[reading.node_id] = reading
            observed[(bucket, reading.node_id)] = moment

    nodes.sort()
    metrics: dict[str, list[dict]] = {field: [] for field in MEASUREMENT_FIELDS}
    for bucket in sorted(buckets):
        by_node = buckets[bucket]
        label = bucket.astimezone(zone).strftime(LABEL_FORMAT)
        timestamp_ms = int(bucket.timestamp() * 1000)
        for field in MEASUREMENT_FIELDS:
            point = {"timestamp": timestamp_ms, "time": label}
            for node_id in nodes:
                reading = by_node.get(node_id)
                point[node_id] = clean_value(field, getattr(reading, field)) if reading else None
            metrics[field].append(point)

    return {
        "timezone": display_timezone,
        "nodes": nodes,
        "metrics": metrics,
        "points": len(buckets),
    }


class SeriesService:
    """
    Loads chart series for a dashboard selection, with last-snapshot fallback.

    The fallback is kept per selection (nodes + range), so switching the
    date range never shows another range's stale data. Only the most
    recently used `max_snapshots` selections are kept.

    `note_cycle` is the pipeline's cycle-complete hook: every response
    carries `last_ingest`, the time of the last cycle that stored anything,
    so the dashboard can tell when to re-fetch.
    """

    def __init__(
        self,
        store: ReadingStore,
        display_timezone: str = "Asia/Jakarta",
        bucket_minutes: int = 60,
        max_snapshots: int = MAX_SNAPSHOTS
    ):
        self.store = store
        self.display_timezone = display_timezone
        self.bucket_minutes = bucket_minutes
        self.max_snapshots = max_snapshots
        self.last_ingest_at: Optional[datetime] = None
        self._snapshots: OrderedDict[tuple, dict] = OrderedDict()

    @staticmethod
    def _selection_key(query: ReadingQuery) -> tuple:
        since = query.since.isoformat() if query.since else None
        return (tuple(sorted(set(query.node_ids))), query.range.value, since)

    def _remember(self, key: tuple, series: dict):
        self._snapshots[key] = series
        self._snapshots.move_to_end(key)
        while len(self._snapshots) > self.max_snapshots:
            self._snapshots.popitem(last=False)

    def note_cycle(self, result: CycleResult):
        """Record a finished poll cycle; only cycles that stored something count."""
        if result.succeeded > 0:
            self.last_ingest_at = result.finished_at

    def _response(self, series: dict, stale: bool) -> dict:
        return {
            **series,
            "stale": stale,
            "notice": READ_FAILURE_NOTICE if stale else None,
            "last_ingest": self.last_ingest_at.isoformat() if self.last_ingest_at else None,
        }

    async def load(self, query: ReadingQuery, now: Optional[datetime] = None) -> dict:
        """
        Query the store and build series for one selection.

        Never raises on a read failure: returns the last snapshot for the
        same selection (or an empty series) with stale=True and a notice.
        """
        now = now or datetime.now(timezone.utc)
        key = self._selection_key(query)

        try:
            readings = await self.store.query(query.node_ids, since=query.resolve_since(now))
        except QueryError as e:
            logger.error(f"Reading query failed, serving last snapshot: {e}")
            snapshot = self._snapshots.get(key)
            if snapshot is None:
                snapshot = build_series([], self.display_timezone, self.bucket_minutes)
                snapshot["range"] = query.range.value
            else:
                self._snapshots.move_to_end(key)
            return self._response(snapshot, stale=True)

        series = build_series(readings, self.display_timezone, self.bucket_minutes)
        series["range"] = query.range.value
        self._remember(key, series)
        return self._response(series, stale=False)
