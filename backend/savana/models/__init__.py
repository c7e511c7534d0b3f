"""
Models Package
==============

This is where all our data models live.
Import from here instead of the individual files.

Example:
    from savana.models import Reading, CycleResult
"""

from .reading import (
    # Field constants
    MEASUREMENT_FIELDS,
    UPSTREAM_FIELD_MAP,
    MOISTURE_SENTINEL,
    FIELD_SENTINELS,
    is_sentinel,

    # Readings
    Reading,
    StoredReading,

    # What a poll cycle reports
    NodeResult,
    CycleResult,

    # What the dashboard asks for
    DateRange,
    ReadingQuery,
    ReadingListResponse,
)

__all__ = [
    "MEASUREMENT_FIELDS",
    "UPSTREAM_FIELD_MAP",
    "MOISTURE_SENTINEL",
    "FIELD_SENTINELS",
    "is_sentinel",
    "Reading",
    "StoredReading",
    "NodeResult",
    "CycleResult",
    "DateRange",
    "ReadingQuery",
    "ReadingListResponse",
]
