"""
Readings API Router
===================

The read side of the dashboard.

ALL ENDPOINTS:
-------------
GET  /api/readings          - Stored readings, oldest first
GET  /api/readings/latest   - Newest reading per node
GET  /api/readings/series   - Chart-ready series grouped by timestamp
POST /api/poll/run-now      - Run one poll cycle right now
GET  /api/poll/last-cycle   - Result of the most recent cycle

SELECTING DATA:
--------------
Every read takes the dashboard's current selection as query params:
- node:  repeat for each enabled node (?node=N1&node=N2). Leave it out to
         get every configured node.
- range: 1d, 7d, 30d or all (default: all)
- since: explicit ISO lower bound, overrides range
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from savana.errors import ConfigurationError, QueryError
from savana.models import DateRange, ReadingListResponse, ReadingQuery

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/readings", tags=["readings"])
poll_router = APIRouter(prefix="/api/poll", tags=["poll"])


# =============================================================================
# DEPENDENCY INJECTION
# =============================================================================

_collector = None  # This gets set when the app starts


def set_collector(collector):
    """Called when the app starts to hand the routers the Collector."""
    global _collector
    _collector = collector


def get_collector():
    """Get the Collector for use in endpoints."""
    if _collector is None:
        raise HTTPException(status_code=503, detail="Server not fully started yet")
    return _collector


def _build_query(collector, node: Optional[list[str]], range: DateRange, since: Optional[datetime]) -> ReadingQuery:
    return ReadingQuery(node_ids=collector.selected_nodes(node), range=range, since=since)


# =============================================================================
# READ ENDPOINTS
# =============================================================================

@router.get("", response_model=ReadingListResponse, response_model_by_alias=True)
async def list_readings(
    node: Optional[list[str]] = Query(None, description="Node id; repeat for several"),
    range: DateRange = Query(DateRange.ALL, description="Date-range preset"),
    since: Optional[datetime] = Query(None, description="Explicit lower bound (ISO 8601)"),
    collector=Depends(get_collector)
):
    """
    Get stored readings for the selected nodes, oldest first.

    An empty node selection returns no readings.
    """
    query = _build_query(collector, node, range, since)
    try:
        readings = await collector.readings(query)
    except QueryError as e:
        logger.error(f"Reading query failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to read from store: {e}")
    return ReadingListResponse(readings=readings, total=len(readings))


@router.get("/latest", response_model=ReadingListResponse, response_model_by_alias=True)
async def latest_readings(
    node: Optional[list[str]] = Query(None, description="Node id; repeat for several"),
    collector=Depends(get_collector)
):
    """Get the newest stored reading for each selected node."""
    try:
        readings = await collector.latest(collector.selected_nodes(node))
    except QueryError as e:
        logger.error(f"Latest reading query failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to read from store: {e}")
    return ReadingListResponse(readings=readings, total=len(readings))


@router.get("/series")
async def reading_series(
    node: Optional[list[str]] = Query(None, description="Node id; repeat for several"),
    range: DateRange = Query(DateRange.ALL, description="Date-range preset"),
    since: Optional[datetime] = Query(None, description="Explicit lower bound (ISO 8601)"),
    collector=Depends(get_collector)
):
    """
    Get chart series for the selected nodes and range.

    If the store can't be read, the last good series for the same selection
    comes back with `stale: true` and a `notice` for the dashboard to show.
    """
    query = _build_query(collector, node, range, since)
    return await collector.chart_series(query)


# =============================================================================
# POLL ENDPOINTS
# =============================================================================

@poll_router.post("/run-now")
async def run_poll_now(collector=Depends(get_collector)):
    """
    Poll every configured node right now.

    Returns the cycle summary: per-node outcome plus succeeded/failed counts.
    """
    try:
        result = await collector.run_now()
    except ConfigurationError as e:
        raise HTTPException(status_code=409, detail=f"Polling is not configured: {e}")
    return result.summary()


@poll_router.get("/last-cycle")
async def last_cycle(collector=Depends(get_collector)):
    """Get the result of the most recent poll cycle."""
    result = collector.last_cycle
    if result is None:
        raise HTTPException(status_code=404, detail="No poll cycle has run yet")
    return result.summary()
