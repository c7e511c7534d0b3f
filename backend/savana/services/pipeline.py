"""
Ingestion Pipeline
==================

One poll cycle, end to end.

THE DATA FLOW (per node):
------------------------
    Upstream sensor API
            |
            | GET ?id_node=..&api_key=..       (ReadingFetcher)
            v
    [raw `data` object]
            |
            | field mapping, null/sentinel -> None   (normalize)
            v
    [canonical Reading]
            |
            | upsert on (id_node, waktu)       (ReadingStore)
            v
    sensor_data table

Nodes run concurrently; inside one node the three steps run in order. A
failure stops only that node's pipeline and is recorded in its NodeResult.
The cycle always finishes with a CycleResult counting successes and failures.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from savana.errors import SavanaError
from savana.models import CycleResult, NodeResult, Reading
from savana.services.fetcher import ReadingFetcher
from savana.services.normalizer import normalize
from savana.services.store import ReadingStore

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """
    Runs fetch -> normalize -> write for every configured node.

    HOW TO USE:
    ----------
    pipeline = IngestionPipeline(fetcher, store, node_ids=["N1", "N2"])
    result = await pipeline.run_cycle()
    print(result.succeeded, "of", result.total)

    `on_cycle_complete` (optional) is called with each CycleResult, which is
    how the read side learns it should re-query.
    """

    def __init__(
        self,
        fetcher: ReadingFetcher,
        store: ReadingStore,
        node_ids: Iterable[str],
        cycle_timeout: Optional[float] = None,
        on_cycle_complete: Optional[Callable[[CycleResult], None]] = None
    ):
        self.fetcher = fetcher
        self.store = store
        self.node_ids = list(dict.fromkeys(node_ids))
        self.cycle_timeout = cycle_timeout
        self.on_cycle_complete = on_cycle_complete
        self.last_result: Optional[CycleResult] = None
        # scheduled and manual cycles share this; one cycle at a time
        self._cycle_lock = asyncio.Lock()

    @property
    def cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    async def process_node(self, node_id: str) -> NodeResult:
        """
        Run one node's pipeline and report how it went.

        Never raises for pipeline failures: each one is logged with the node
        and stage and turned into an error NodeResult.
        """
        logger.info(f"[{node_id}] Processing node")
        try:
            data = await self.fetcher.fetch(node_id)
            reading: Reading = normalize(data, node_hint=node_id)
            if reading.node_id != node_id:
                logger.warning(f"[{node_id}] API answered for node {reading.node_id}")
            await self.store.upsert(reading)

        except SavanaError as e:
            logger.error(f"[{node_id}] {e.stage} failed: {e}")
            return NodeResult(
                node_id=node_id,
                status="error",
                stage=e.stage,
                error_type=e.error_type,
                error_message=str(e),
            )
        except Exception as e:
            logger.error(f"[{node_id}] Unexpected error: {e}", exc_info=True)
            return NodeResult(
                node_id=node_id,
                status="error",
                stage="unknown",
                error_type="unknown_error",
                error_message=str(e),
            )

        logger.info(f"[{node_id}] Successfully processed node")
        return NodeResult(node_id=node_id, status="success", reading=reading)

    async def _run_all(self, results: dict[str, NodeResult]) -> None:
        async def run(node_id: str):
            results[node_id] = await self.process_node(node_id)

        await asyncio.gather(*(run(node_id) for node_id in self.node_ids))

    async def run_cycle(self) -> CycleResult:
        """
        Poll every node once.

        A call made while another cycle is running waits for it to finish,
        so `last_result` always holds the cycle that finished last.

        With a cycle_timeout, nodes still running when it expires are
        cancelled and reported as failed; finished nodes keep their results.
        """
        if self._cycle_lock.locked():
            logger.info("Another cycle is running, waiting for it to finish")
        async with self._cycle_lock:
            return await self._run_cycle_locked()

    async def _run_cycle_locked(self) -> CycleResult:
        started_at = datetime.now(timezone.utc)
        total = len(self.node_ids)
        logger.info(f"Starting sensor data fetch for {total} node(s)")

        results: dict[str, NodeResult] = {}
        try:
            if self.cycle_timeout:
                await asyncio.wait_for(self._run_all(results), timeout=self.cycle_timeout)
            else:
                await self._run_all(results)
        except asyncio.TimeoutError:
            logger.error(f"Cycle timed out after {self.cycle_timeout}s")

        nodes = []
        for node_id in self.node_ids:
            node_result = results.get(node_id)
            if node_result is None:
                node_result = NodeResult(
                    node_id=node_id,
                    status="error",
                    stage="cycle",
                    error_type="timeout",
                    error_message=f"Cycle timed out after {self.cycle_timeout}s",
                )
            nodes.append(node_result)

        result = CycleResult(
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            nodes=nodes,
        )
        self._log_summary(result)
        self.last_result = result

        if self.on_cycle_complete is not None:
            try:
                self.on_cycle_complete(result)
            except Exception as e:
                logger.error(f"Cycle completion callback failed: {e}", exc_info=True)

        return result

    @staticmethod
    def _log_summary(result: CycleResult):
        if result.total == 0:
            logger.warning("No nodes configured, nothing to fetch")
        elif result.status == "success":
            logger.info(f"All {result.total} nodes processed successfully")
        elif result.status == "partial":
            logger.warning(f"Partial success: {result.succeeded}/{result.total} nodes processed successfully")
        else:
            logger.error("No nodes were processed successfully")
