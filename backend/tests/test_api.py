"""
Tests for the HTTP API, run in-process with FastAPI's TestClient.

The Collector is built with a mock upstream and a temp SQLite store, and
interval polling is left off so every cycle is triggered explicitly.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import upstream_body
from savana.main import create_app
from savana.models import Reading
from savana.services import Collector
from savana.services.series import MAX_SNAPSHOTS


def _seed(store, rows):
    async def run():
        await store.initialize()
        for node, waktu, temperature in rows:
            await store.upsert(Reading(node_id=node, observed_at=waktu, temperature=temperature,
                                       humidity=70.0, pressure=1010.0, moisture=-99.0, rain=0.0))
    asyncio.run(run())


@pytest.fixture
def collector(settings, make_fetcher):
    fetcher = make_fetcher({
        "N1": (200, upstream_body("N1", "2025-07-10T08:00:00", mous=-99)),
        "N2": (500, "upstream down"),
    })
    return Collector(settings, fetcher=fetcher)


@pytest.fixture
def client(collector):
    app = create_app(collector=collector, schedule=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seeded_client(collector):
    _seed(collector.store, [
        ("N1", "2025-07-10T08:00:00", 22.0),
        ("N1", "2025-07-10T09:00:00", 23.0),
        ("N2", "2025-07-10T08:30:00", 25.0),
    ])
    app = create_app(collector=collector, schedule=False)
    with TestClient(app) as test_client:
        yield test_client


class TestRootEndpoints:

    def test_root_lists_endpoints(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "readings" in response.json()["endpoints"]

    def test_health_reports_collector_state(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["store_backend"] == "sqlite"
        assert body["nodes"] == ["N1", "N2"]
        assert body["polling_enabled"] is True
        assert body["scheduler_running"] is False
        assert body["last_cycle_status"] is None


class TestReadingEndpoints:

    def test_list_all_configured_nodes(self, seeded_client):
        body = seeded_client.get("/api/readings").json()
        assert body["total"] == 3
        assert [(r["id_node"], r["waktu"]) for r in body["readings"]] == [
            ("N1", "2025-07-10T08:00:00"),
            ("N2", "2025-07-10T08:30:00"),
            ("N1", "2025-07-10T09:00:00"),
        ]

    def test_filter_by_node(self, seeded_client):
        body = seeded_client.get("/api/readings", params={"node": "N2"}).json()
        assert [r["id_node"] for r in body["readings"]] == ["N2"]

    def test_several_nodes(self, seeded_client):
        body = seeded_client.get("/api/readings", params=[("node", "N1"), ("node", "N2")]).json()
        assert body["total"] == 3

    def test_empty_selection_returns_nothing(self, seeded_client):
        body = seeded_client.get("/api/readings", params={"node": ""}).json()
        assert body == {"readings": [], "total": 0}

    def test_since_bound(self, seeded_client):
        body = seeded_client.get("/api/readings", params={"since": "2025-07-10T08:30:00"}).json()
        assert [r["waktu"] for r in body["readings"]] == ["2025-07-10T08:30:00", "2025-07-10T09:00:00"]

    def test_invalid_range_rejected(self, seeded_client):
        assert seeded_client.get("/api/readings", params={"range": "2w"}).status_code == 422

    def test_latest(self, seeded_client):
        body = seeded_client.get("/api/readings/latest").json()
        assert [(r["id_node"], r["waktu"]) for r in body["readings"]] == [
            ("N1", "2025-07-10T09:00:00"),
            ("N2", "2025-07-10T08:30:00"),
        ]

    def test_series(self, seeded_client):
        body = seeded_client.get("/api/readings/series").json()
        assert body["stale"] is False
        assert body["nodes"] == ["N1", "N2"]
        temperature = body["metrics"]["temperature"]
        assert [p["time"] for p in temperature] == ["10/07 15:00", "10/07 16:00"]
        assert (temperature[0]["N1"], temperature[0]["N2"]) == (22.0, 25.0)
        assert body["metrics"]["moisture"][0]["N1"] is None

    def test_series_snapshots_stay_bounded(self, seeded_client, collector):
        for i in range(MAX_SNAPSHOTS + 40):
            assert seeded_client.get("/api/readings/series", params={"node": f"X{i}"}).status_code == 200
        assert len(collector.series._snapshots) == MAX_SNAPSHOTS


class TestPollEndpoints:

    def test_last_cycle_before_any_poll(self, client):
        assert client.get("/api/poll/last-cycle").status_code == 404

    def test_run_now_reports_partial_success(self, client):
        response = client.post("/api/poll/run-now")
        assert response.status_code == 200
        summary = response.json()
        assert summary["status"] == "partial"
        assert (summary["succeeded"], summary["failed"]) == (1, 1)

        last = client.get("/api/poll/last-cycle").json()
        assert last["status"] == "partial"
        assert client.get("/health").json()["last_cycle_status"] == "partial"

        readings = client.get("/api/readings").json()["readings"]
        assert [(r["id_node"], r["moisture"]) for r in readings] == [("N1", None)]

    def test_run_now_marks_last_ingest(self, client):
        assert client.get("/api/readings/series").json()["last_ingest"] is None
        client.post("/api/poll/run-now")
        assert client.get("/api/readings/series").json()["last_ingest"] is not None
        assert client.get("/health").json()["last_ingest"] is not None

    def test_run_now_without_ingest_config(self, settings):
        settings = settings.model_copy(update={"api_key": None})
        app = create_app(collector=Collector(settings), schedule=False)
        with TestClient(app) as test_client:
            assert test_client.post("/api/poll/run-now").status_code == 409
            health = test_client.get("/health").json()
            assert health["polling_enabled"] is False
            assert "API_KEY" in health["polling_disabled_reason"]
            # reads still work
            assert test_client.get("/api/readings").status_code == 200
