"""
Reading Models
==============
Pydantic models for sensor readings, poll results and read queries.

This module defines the data structures that flow through the system:
- Reading: one canonical observation from one node (write path)
- StoredReading: a Reading as it comes back from the store (read path)
- NodeResult / CycleResult: what a poll cycle reports
- DateRange / ReadingQuery: the caller-owned selection passed to every read

FIELD NAMES:
-----------
The upstream API and the store use Indonesian column names (`waktu` = time).
The models keep those names on the wire and expose English names in code:

    Upstream (data_node)   Store column    Model attribute
    --------------------   ------------    ---------------
    id_node                id_node         node_id
    waktu                  waktu           observed_at
    temp                   temperature     temperature
    rh                     humidity        humidity
    press                  pressure        pressure
    mous                   moisture        moisture
    rain                   rain            rain
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime, timedelta
from enum import Enum


# =============================================================================
# FIELD CONSTANTS
# =============================================================================

# Canonical measurement columns, in store order
MEASUREMENT_FIELDS = ("temperature", "humidity", "pressure", "moisture", "rain")

# Upstream `data_node` key for each canonical measurement
UPSTREAM_FIELD_MAP = {
    "temperature": "temp",
    "humidity": "rh",
    "pressure": "press",
    "moisture": "mous",
    "rain": "rain",
}

# Values the sensor firmware reports when a probe has no valid reading.
# Only the soil moisture probe is known to do this; other fields may have
# undocumented sentinels of their own.
MOISTURE_SENTINEL = -99.0

FIELD_SENTINELS: dict[str, float] = {
    "moisture": MOISTURE_SENTINEL,
}


def is_sentinel(field: str, value: Optional[float]) -> bool:
    """True when `value` is the known "no data" marker for `field`."""
    if value is None:
        return False
    sentinel = FIELD_SENTINELS.get(field)
    return sentinel is not None and float(value) == sentinel


# =============================================================================
# READINGS
# =============================================================================

class Reading(BaseModel):
    """
    One observation from one node at one instant.

    (node_id, observed_at) is the natural key. A missing measurement is None,
    never omitted and never zero.

    `observed_at` is kept exactly as the upstream sent it. It carries no
    offset and is understood to be UTC.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    node_id: str = Field(..., alias="id_node", min_length=1, description="Sensor node identifier")
    observed_at: str = Field(..., alias="waktu", min_length=1, description="Observation time (naive, UTC)")
    temperature: Optional[float] = Field(None, description="Air temperature in °C")
    humidity: Optional[float] = Field(None, description="Relative humidity %")
    pressure: Optional[float] = Field(None, description="Air pressure in hPa")
    moisture: Optional[float] = Field(None, description="Soil moisture %")
    rain: Optional[float] = Field(None, description="Rainfall in mm")

    @property
    def key(self) -> tuple[str, str]:
        return (self.node_id, self.observed_at)

    def to_row(self) -> dict:
        """Store row using the column names (`id_node`, `waktu`, ...)."""
        return self.model_dump(by_alias=True, include={"node_id", "observed_at", *MEASUREMENT_FIELDS})


class StoredReading(Reading):
    """A Reading plus the bookkeeping timestamps the store assigns."""
    created_at: Optional[datetime] = Field(None, description="First insert time")
    updated_at: Optional[datetime] = Field(None, description="Last overwrite time")


# =============================================================================
# POLL RESULTS
# =============================================================================

class NodeResult(BaseModel):
    """Outcome of one node's fetch -> normalize -> write pipeline."""
    node_id: str
    status: str = Field(..., description="'success' or 'error'")
    stage: Optional[str] = Field(None, description="Stage that failed (fetch, normalize, store)")
    error_type: Optional[str] = Field(None, description="Short machine-readable error kind")
    error_message: Optional[str] = None
    reading: Optional[Reading] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class CycleResult(BaseModel):
    """
    Outcome of one poll cycle across every configured node.

    Partial success is a normal outcome: `status` is 'success' when every
    node made it, 'partial' when some did and 'error' when none did.
    """
    started_at: datetime
    finished_at: datetime
    nodes: list[NodeResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.nodes)

    @property
    def succeeded(self) -> int:
        return sum(1 for n in self.nodes if n.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def status(self) -> str:
        if self.total and self.succeeded == self.total:
            return "success"
        if self.succeeded > 0:
            return "partial"
        return "error"

    def summary(self) -> dict:
        return {
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "nodes": [n.model_dump(mode="json", by_alias=True) for n in self.nodes],
        }


# =============================================================================
# READ QUERIES
# =============================================================================

class DateRange(str, Enum):
    """
    Date-range presets offered by the dashboard.

    Each preset resolves to a lower bound relative to a caller-supplied "now".
    ALL means no lower bound (full retained history).
    """
    DAY = "1d"
    WEEK = "7d"
    MONTH = "30d"
    ALL = "all"

    def lower_bound(self, now: datetime) -> Optional[datetime]:
        if self is DateRange.ALL:
            return None
        days = {DateRange.DAY: 1, DateRange.WEEK: 7, DateRange.MONTH: 30}[self]
        return now - timedelta(days=days)


class ReadingQuery(BaseModel):
    """The dashboard's selection state, passed in on every read."""
    node_ids: list[str] = Field(default_factory=list, description="Enabled nodes")
    range: DateRange = Field(default=DateRange.ALL, description="Date-range preset")
    since: Optional[datetime] = Field(None, description="Explicit lower bound, overrides range")

    def resolve_since(self, now: datetime) -> Optional[datetime]:
        if self.since is not None:
            return self.since
        return self.range.lower_bound(now)


class ReadingListResponse(BaseModel):
    readings: list[StoredReading]
    total: int
