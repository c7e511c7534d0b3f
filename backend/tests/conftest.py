"""
Shared fixtures: a temporary SQLite store and a fake upstream sensor API.
"""
import asyncio
import json
from typing import Callable, Dict, Union

import httpx
import pytest

from savana.config import Settings
from savana.services.fetcher import ReadingFetcher
from savana.services.store import SqliteReadingStore


API_URL = "https://sensors.example.test/api/node"
API_KEY = "test-api-key"


def upstream_body(node_id="N1", waktu="2025-07-10T08:00:00", status="Ok", **data_node) -> dict:
    """Build an upstream response body like the real API returns."""
    values = {"temp": 22.5, "rh": 80, "press": 1013.2, "mous": 41.0, "rain": 0}
    values.update(data_node)
    return {
        "status": status,
        "data": {"id_node": node_id, "waktu": waktu, "data_node": values},
    }


# A route is either (status_code, json_body), (status_code, raw_text) or an
# exception instance to raise from the transport.
Route = Union[tuple, Exception]


class FakeUpstream:
    """
    httpx.MockTransport handler keyed by the `id_node` query param.

    Records every request so tests can check query params and headers.
    """

    def __init__(self, routes: Dict[str, Route]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        node_id = request.url.params.get("id_node")
        route = self.routes.get(node_id)
        if route is None:
            return httpx.Response(404, json={"status": "Not Found"})
        if isinstance(route, Exception):
            raise route
        status_code, body = route
        if isinstance(body, (dict, list)):
            return httpx.Response(status_code, content=json.dumps(body).encode(),
                                  headers={"Content-Type": "application/json"})
        return httpx.Response(status_code, text=body)


@pytest.fixture
def make_fetcher() -> Callable[[Dict[str, Route]], ReadingFetcher]:
    """Factory: make_fetcher({"N1": (200, upstream_body("N1"))})."""
    def factory(routes: Dict[str, Route]) -> ReadingFetcher:
        upstream = FakeUpstream(routes)
        client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        fetcher = ReadingFetcher(API_URL, API_KEY, http_client=client)
        fetcher.upstream = upstream
        return fetcher
    return factory


@pytest.fixture
def sqlite_store(tmp_path) -> SqliteReadingStore:
    """An initialized SQLite store in a temp directory."""
    store = SqliteReadingStore(str(tmp_path / "readings.db"))
    asyncio.run(store.initialize())
    return store


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        api_url=API_URL,
        api_key=API_KEY,
        node_ids=["N1", "N2"],
        store_backend="sqlite",
        sqlite_path=str(tmp_path / "readings.db"),
        polling_interval=3600,
        cycle_timeout=60,
        poll_on_startup=False,
    )
