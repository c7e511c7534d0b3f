"""
Collector
=========

Wires the services together and owns their lifecycle.

WHAT IT DOES:
------------
1. Builds the fetcher, store, pipeline, scheduler and series service from Settings
2. Starts interval polling (optionally with an immediate first cycle)
3. Exposes the read contract and a manual "poll now" for the API, and tells
   the chart service when a cycle has stored new readings
4. Closes HTTP clients and stops the scheduler on shutdown

The read path only needs the store, so the API keeps serving stored data even
when ingest is not configured (no API_URL/API_KEY/nodes); polling is simply
disabled in that case.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from savana.config import Settings
from savana.errors import ConfigurationError
from savana.models import CycleResult, ReadingQuery, StoredReading
from savana.services.fetcher import ReadingFetcher
from savana.services.pipeline import IngestionPipeline
from savana.services.scheduler import PollScheduler
from savana.services.series import SeriesService
from savana.services.store import ReadingStore, create_store

logger = logging.getLogger(__name__)


class Collector:
    """The central object the API and CLI talk to."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[ReadingStore] = None,
        fetcher: Optional[ReadingFetcher] = None
    ):
        self.settings = settings
        self.store = store or create_store(settings)
        self.series = SeriesService(self.store, display_timezone=settings.display_timezone)

        self.ingest_error: Optional[str] = None
        self.fetcher: Optional[ReadingFetcher] = None
        self.pipeline: Optional[IngestionPipeline] = None
        self.scheduler: Optional[PollScheduler] = None

        try:
            settings.require_ingest()
        except ConfigurationError as e:
            self.ingest_error = str(e)
            logger.warning(f"Polling disabled: {e}")
            return

        self.fetcher = fetcher or ReadingFetcher(
            api_url=settings.api_url,
            api_key=settings.api_key,
            request_timeout=settings.request_timeout,
        )
        self.pipeline = IngestionPipeline(
            self.fetcher,
            self.store,
            node_ids=settings.node_ids,
            cycle_timeout=settings.cycle_timeout,
            on_cycle_complete=self.series.note_cycle,
        )
        self.scheduler = PollScheduler(self.pipeline, interval_seconds=settings.polling_interval)

    @property
    def polling_enabled(self) -> bool:
        return self.pipeline is not None

    @property
    def last_cycle(self) -> Optional[CycleResult]:
        return self.pipeline.last_result if self.pipeline else None

    async def start(self, schedule: bool = True):
        """Prepare the store and, if configured, start interval polling."""
        await self.store.initialize()
        if schedule and self.scheduler is not None:
            self.scheduler.start(run_immediately=self.settings.poll_on_startup)

    async def run_now(self) -> CycleResult:
        """
        Run one cycle right away (cron mode and the "poll now" endpoint).

        Raises:
            ConfigurationError: if ingest is not configured
        """
        if self.pipeline is None:
            raise ConfigurationError(self.ingest_error or "Polling is not configured")
        return await self.pipeline.run_cycle()

    def selected_nodes(self, node_ids: Optional[Iterable[str]]) -> list[str]:
        """The caller's node selection, or every configured node when none is given."""
        if node_ids is None:
            return list(self.settings.node_ids)
        return [n for n in node_ids if n]

    async def readings(self, query: ReadingQuery, now: Optional[datetime] = None) -> list[StoredReading]:
        now = now or datetime.now(timezone.utc)
        return await self.store.query(query.node_ids, since=query.resolve_since(now))

    async def latest(self, node_ids: Iterable[str]) -> list[StoredReading]:
        return await self.store.latest(node_ids)

    async def chart_series(self, query: ReadingQuery, now: Optional[datetime] = None) -> dict:
        return await self.series.load(query, now=now)

    def status(self) -> dict:
        next_run = self.scheduler.next_run_time if self.scheduler else None
        last = self.last_cycle
        return {
            "store_backend": self.store.backend,
            "nodes": list(self.settings.node_ids),
            "polling_enabled": self.polling_enabled,
            "polling_interval": self.settings.polling_interval,
            "polling_disabled_reason": self.ingest_error,
            "scheduler_running": bool(self.scheduler and self.scheduler.running),
            "cycle_running": bool(self.pipeline and self.pipeline.cycle_running),
            "next_poll": next_run.isoformat() if next_run else None,
            "last_cycle_status": last.status if last else None,
            "last_ingest": self.series.last_ingest_at.isoformat() if self.series.last_ingest_at else None,
        }

    async def shutdown(self):
        """Stop polling and close every HTTP client."""
        if self.scheduler is not None:
            try:
                self.scheduler.stop()
            except Exception as e:
                logger.error(f"Error shutting down scheduler: {e}", exc_info=True)
        if self.fetcher is not None:
            await self.fetcher.close()
        await self.store.close()
