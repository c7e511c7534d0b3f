"""
Tests for whole poll cycles: fetch -> normalize -> store for several nodes.
"""
import asyncio

import httpx

from conftest import upstream_body
from savana.errors import PersistenceError
from savana.models import Reading
from savana.services.pipeline import IngestionPipeline


def _cycle(pipeline):
    async def run():
        try:
            return await pipeline.run_cycle()
        finally:
            await pipeline.fetcher.close()
    return asyncio.run(run())


def _stored(store, nodes=("N1", "N2")):
    return asyncio.run(store.query(list(nodes)))


class TestSuccessfulCycle:

    def test_scenario_success_with_moisture_sentinel(self, make_fetcher, sqlite_store):
        fetcher = make_fetcher({
            "N1": (200, upstream_body("N1", "2025-07-10T08:00:00",
                                      temp=22.5, rh=80, press=1013.2, mous=-99, rain=0)),
        })
        result = _cycle(IngestionPipeline(fetcher, sqlite_store, ["N1"]))

        assert result.status == "success"
        assert result.succeeded == 1
        rows = _stored(sqlite_store, ["N1"])
        assert len(rows) == 1
        row = rows[0]
        assert (row.node_id, row.observed_at) == ("N1", "2025-07-10T08:00:00")
        assert row.moisture is None
        assert row.temperature == 22.5
        assert row.humidity == 80.0
        assert row.pressure == 1013.2
        assert row.rain == 0.0

    def test_scenario_duplicate_suppression(self, make_fetcher, sqlite_store):
        routes = {"N1": (200, upstream_body("N1"))}
        _cycle(IngestionPipeline(make_fetcher(routes), sqlite_store, ["N1"]))
        _cycle(IngestionPipeline(make_fetcher(routes), sqlite_store, ["N1"]))
        assert len(_stored(sqlite_store, ["N1"])) == 1

    def test_node_result_carries_reading(self, make_fetcher, sqlite_store):
        fetcher = make_fetcher({"N1": (200, upstream_body("N1"))})
        result = _cycle(IngestionPipeline(fetcher, sqlite_store, ["N1"]))
        assert result.nodes[0].ok
        assert result.nodes[0].reading.node_id == "N1"

    def test_duplicate_node_ids_polled_once(self, make_fetcher, sqlite_store):
        fetcher = make_fetcher({"N1": (200, upstream_body("N1"))})
        result = _cycle(IngestionPipeline(fetcher, sqlite_store, ["N1", "N1"]))
        assert result.total == 1
        assert len(fetcher.upstream.requests) == 1


class TestPartialFailure:
    """A failure for one node never stops the others."""

    def test_scenario_partial_outage(self, make_fetcher, sqlite_store):
        fetcher = make_fetcher({
            "A": (500, "internal error"),
            "B": (200, upstream_body("B", temp=24.0)),
        })
        result = _cycle(IngestionPipeline(fetcher, sqlite_store, ["A", "B"]))

        assert result.status == "partial"
        assert result.succeeded == 1
        assert result.failed == 1
        by_node = {n.node_id: n for n in result.nodes}
        assert by_node["A"].error_type == "http_error"
        assert by_node["A"].stage == "fetch"
        assert by_node["B"].ok

        rows = _stored(sqlite_store, ["A", "B"])
        assert [r.node_id for r in rows] == ["B"]
        assert rows[0].temperature == 24.0

    def test_transport_failure_isolated(self, make_fetcher, sqlite_store):
        fetcher = make_fetcher({
            "A": httpx.ConnectError("unreachable"),
            "B": (200, upstream_body("B")),
        })
        result = _cycle(IngestionPipeline(fetcher, sqlite_store, ["A", "B"]))
        assert result.succeeded == 1
        assert {n.node_id: n.error_type for n in result.nodes}["A"] == "transport_error"

    def test_missing_required_field_discards_reading(self, make_fetcher, sqlite_store):
        body = upstream_body("A")
        body["data"]["waktu"] = None
        fetcher = make_fetcher({"A": (200, body), "B": (200, upstream_body("B"))})
        result = _cycle(IngestionPipeline(fetcher, sqlite_store, ["A", "B"]))

        failed = [n for n in result.nodes if not n.ok]
        assert [(n.node_id, n.stage, n.error_type) for n in failed] == [("A", "normalize", "missing_field")]
        assert [r.node_id for r in _stored(sqlite_store, ["A", "B"])] == ["B"]

    def test_every_node_failing_is_error(self, make_fetcher, sqlite_store):
        fetcher = make_fetcher({
            "A": (200, upstream_body("A", status="Invalid API key")),
            "B": (200, "not json"),
        })
        result = _cycle(IngestionPipeline(fetcher, sqlite_store, ["A", "B"]))
        assert result.status == "error"
        assert {n.error_type for n in result.nodes} == {"upstream_status", "malformed_response"}

    def test_store_failure_is_reported_per_node(self, make_fetcher, sqlite_store):
        class FlakyStore:
            backend = "flaky"

            def __init__(self, inner):
                self.inner = inner

            async def upsert(self, reading: Reading):
                if reading.node_id == "A":
                    raise PersistenceError("write rejected", node_id="A")
                await self.inner.upsert(reading)

        fetcher = make_fetcher({"A": (200, upstream_body("A")), "B": (200, upstream_body("B"))})
        result = _cycle(IngestionPipeline(fetcher, FlakyStore(sqlite_store), ["A", "B"]))

        by_node = {n.node_id: n for n in result.nodes}
        assert by_node["A"].stage == "store"
        assert by_node["A"].error_type == "persistence_error"
        assert by_node["B"].ok
        assert [r.node_id for r in _stored(sqlite_store, ["A", "B"])] == ["B"]

    def test_unexpected_error_is_contained(self, make_fetcher, sqlite_store):
        class BrokenStore:
            backend = "broken"

            async def upsert(self, reading):
                raise RuntimeError("disk on fire")

        fetcher = make_fetcher({"A": (200, upstream_body("A"))})
        result = _cycle(IngestionPipeline(fetcher, BrokenStore(), ["A"]))
        assert result.nodes[0].error_type == "unknown_error"
        assert result.status == "error"


class TestCycleBookkeeping:

    def test_timeout_marks_unfinished_nodes(self, make_fetcher, sqlite_store):
        class SlowStore:
            backend = "slow"

            async def upsert(self, reading):
                if reading.node_id == "SLOW":
                    await asyncio.sleep(5)
                await sqlite_store.upsert(reading)

        fetcher = make_fetcher({"FAST": (200, upstream_body("FAST")), "SLOW": (200, upstream_body("SLOW"))})
        pipeline = IngestionPipeline(fetcher, SlowStore(), ["FAST", "SLOW"], cycle_timeout=0.5)
        result = _cycle(pipeline)

        by_node = {n.node_id: n for n in result.nodes}
        assert by_node["FAST"].ok
        assert by_node["SLOW"].error_type == "timeout"
        assert result.status == "partial"

    def test_last_result_and_callback(self, make_fetcher, sqlite_store):
        seen = []
        fetcher = make_fetcher({"N1": (200, upstream_body("N1"))})
        pipeline = IngestionPipeline(fetcher, sqlite_store, ["N1"], on_cycle_complete=seen.append)
        result = _cycle(pipeline)
        assert pipeline.last_result is result
        assert seen == [result]

    def test_summary_counts(self, make_fetcher, sqlite_store):
        fetcher = make_fetcher({"A": (500, "x"), "B": (200, upstream_body("B"))})
        summary = _cycle(IngestionPipeline(fetcher, sqlite_store, ["A", "B"])).summary()
        assert summary["status"] == "partial"
        assert (summary["total"], summary["succeeded"], summary["failed"]) == (2, 1, 1)
        assert summary["nodes"][1]["reading"]["id_node"] == "B"

    def test_no_nodes(self, make_fetcher, sqlite_store):
        result = _cycle(IngestionPipeline(make_fetcher({}), sqlite_store, []))
        assert result.total == 0
        assert result.status == "error"


class TestCycleSerialization:
    """Manual and scheduled cycles never run at the same time."""

    def test_concurrent_cycles_run_one_after_another(self, make_fetcher, sqlite_store):
        class TrackingStore:
            backend = "tracking"

            def __init__(self):
                self.active = 0
                self.max_active = 0

            async def upsert(self, reading):
                self.active += 1
                self.max_active = max(self.max_active, self.active)
                await asyncio.sleep(0.05)
                self.active -= 1

        store = TrackingStore()
        fetcher = make_fetcher({"N1": (200, upstream_body("N1"))})
        pipeline = IngestionPipeline(fetcher, store, ["N1"])

        async def run():
            try:
                first = asyncio.ensure_future(pipeline.run_cycle())
                await asyncio.sleep(0)
                assert pipeline.cycle_running
                second = await pipeline.run_cycle()
                return await first, second
            finally:
                await fetcher.close()

        first, second = asyncio.run(run())
        assert store.max_active == 1
        assert first.finished_at <= second.started_at
        assert pipeline.last_result is second
        assert not pipeline.cycle_running
