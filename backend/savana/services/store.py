"""
Reading Store
=============

Where readings live once they have been fetched.

Two backends share one contract:

    SupabaseReadingStore   the hosted `sensor_data` table, through the
                           Supabase (PostgREST) REST API
    SqliteReadingStore     a local SQLite file with the same schema

THE CONTRACT:
------------
upsert(reading)
    Insert, or replace in place when (id_node, waktu) already exists.
    Always a full-record replace: a None measurement clears the old value.
    Writing the same reading twice leaves the same row behind.

query(node_ids, since=None)
    Rows for the given nodes with waktu >= since, oldest first.
    No nodes means no rows (not "all nodes"). No bound means full history.

latest(node_ids)
    The newest row per node.

Write failures raise PersistenceError, read failures raise QueryError.

THE TABLE:
---------
    sensor_data(
        id_node TEXT, waktu TEXT,
        temperature, humidity, pressure, moisture, rain,
        created_at, updated_at,
        PRIMARY KEY (id_node, waktu)
    )

`waktu` is compared as text. Bounds are rendered in the same
"YYYY-MM-DDTHH:MM:SS" form as the upstream timestamps.
"""

import asyncio
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Union

import httpx
from pydantic import ValidationError

from savana.errors import ConfigurationError, PersistenceError, QueryError
from savana.models import MEASUREMENT_FIELDS, Reading, StoredReading
from savana.utils.validation import format_bound

logger = logging.getLogger(__name__)

Bound = Union[datetime, str, None]

COLUMNS = ("id_node", "waktu", *MEASUREMENT_FIELDS, "created_at", "updated_at")


def _dedupe(node_ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(n for n in node_ids if n))


def _to_stored(rows: list[dict]) -> list[StoredReading]:
    try:
        return [StoredReading.model_validate(row) for row in rows]
    except ValidationError as e:
        raise QueryError(f"Malformed row in store: {e.errors()[0].get('msg', e)}")


# =============================================================================
# CONTRACT
# =============================================================================

class ReadingStore(ABC):
    """Base class for the reading store backends."""

    backend = "abstract"

    async def initialize(self) -> None:
        """Prepare the backend (create tables, etc.). No-op by default."""

    @abstractmethod
    async def upsert(self, reading: Reading) -> None:
        ...

    @abstractmethod
    async def query(self, node_ids: Iterable[str], since: Bound = None) -> list[StoredReading]:
        ...

    @abstractmethod
    async def latest(self, node_ids: Iterable[str]) -> list[StoredReading]:
        ...

    async def close(self) -> None:
        """Release connections. No-op by default."""


# =============================================================================
# SQLITE BACKEND
# =============================================================================

class SqliteReadingStore(ReadingStore):
    """
    Readings in a local SQLite file.

    Each call opens its own connection in a worker thread, so the event loop
    never blocks on disk I/O and no connection is shared across threads.
    """

    backend = "sqlite"

    def __init__(self, path: str, table: str = "sensor_data"):
        self.path = path
        self.table = table

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections.

        Commits on success, rolls back on error, always closes.
        """
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _create_schema(self) -> None:
        with self._connection() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id_node TEXT NOT NULL,
                    waktu TEXT NOT NULL,
                    temperature REAL,
                    humidity REAL,
                    pressure REAL,
                    moisture REAL,
                    rain REAL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (id_node, waktu)
                )
                """
            )
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{self.table}_waktu ON {self.table}(waktu)")
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{self.table}_created_at ON {self.table}(created_at)")

    async def initialize(self) -> None:
        try:
            await asyncio.to_thread(self._create_schema)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Failed to initialize SQLite store at {self.path}: {e}")
        logger.info(f"SQLite store ready at {self.path}")

    # ---- write -------------------------------------------------------------

    def _upsert_sync(self, reading: Reading) -> None:
        row = reading.to_row()
        now = datetime.now(timezone.utc).isoformat()
        measurement_cols = ", ".join(MEASUREMENT_FIELDS)
        placeholders = ", ".join("?" for _ in range(len(MEASUREMENT_FIELDS) + 4))
        updates = ", ".join(f"{col} = excluded.{col}" for col in MEASUREMENT_FIELDS)
        with self._connection() as conn:
            conn.execute(
                f"""
                INSERT INTO {self.table} (id_node, waktu, {measurement_cols}, created_at, updated_at)
                VALUES ({placeholders})
                ON CONFLICT (id_node, waktu) DO UPDATE SET
                    {updates},
                    updated_at = excluded.updated_at
                """,
                (
                    row["id_node"],
                    row["waktu"],
                    *(row[col] for col in MEASUREMENT_FIELDS),
                    now,
                    now,
                ),
            )

    async def upsert(self, reading: Reading) -> None:
        try:
            await asyncio.to_thread(self._upsert_sync, reading)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"SQLite rejected write: {e}", node_id=reading.node_id)
        logger.info(f"[{reading.node_id}] Stored reading {reading.observed_at}")

    # ---- read --------------------------------------------------------------

    def _select(self, sql: str, params: list) -> list[dict]:
        with self._connection() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]

    async def query(self, node_ids: Iterable[str], since: Bound = None) -> list[StoredReading]:
        nodes = _dedupe(node_ids)
        if not nodes:
            return []
        try:
            bound = format_bound(since)
        except ValueError as e:
            raise QueryError(f"Invalid lower bound {since!r}: {e}")

        marks = ", ".join("?" for _ in nodes)
        sql = f"SELECT {', '.join(COLUMNS)} FROM {self.table} WHERE id_node IN ({marks})"
        params: list = list(nodes)
        if bound is not None:
            sql += " AND waktu >= ?"
            params.append(bound)
        sql += " ORDER BY waktu ASC, id_node ASC"

        try:
            rows = await asyncio.to_thread(self._select, sql, params)
        except (sqlite3.Error, OSError) as e:
            raise QueryError(f"SQLite rejected read: {e}")
        return _to_stored(rows)

    async def latest(self, node_ids: Iterable[str]) -> list[StoredReading]:
        nodes = _dedupe(node_ids)
        if not nodes:
            return []
        marks = ", ".join("?" for _ in nodes)
        sql = (
            f"SELECT {', '.join('s.' + c for c in COLUMNS)} FROM {self.table} s "
            f"WHERE s.id_node IN ({marks}) "
            f"AND s.waktu = (SELECT MAX(t.waktu) FROM {self.table} t WHERE t.id_node = s.id_node) "
            f"ORDER BY s.id_node ASC"
        )
        try:
            rows = await asyncio.to_thread(self._select, sql, nodes)
        except (sqlite3.Error, OSError) as e:
            raise QueryError(f"SQLite rejected read: {e}")
        return _to_stored(rows)


# =============================================================================
# SUPABASE BACKEND
# =============================================================================

def _postgrest_list(values: list[str]) -> str:
    """Render values for a PostgREST `in.(...)` filter, quoting each one."""
    quoted = []
    for value in values:
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{escaped}"')
    return f"in.({','.join(quoted)})"


class SupabaseReadingStore(ReadingStore):
    """
    Readings in the hosted Supabase table, through its REST API.

    Writes use PostgREST's merge-duplicates resolution on the primary key,
    which is the upsert the dashboard has always relied on.
    """

    backend = "supabase"

    # Accepted status codes for a write (201 insert, 200/204 merge)
    WRITE_OK = (200, 201, 204)

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = "sensor_data",
        latest_view: str = "latest_sensor_data",
        request_timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.table = table
        self.latest_view = latest_view
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self.http_client = http_client or httpx.AsyncClient(timeout=request_timeout)

    async def upsert(self, reading: Reading) -> None:
        headers = {**self.headers, "Prefer": "resolution=merge-duplicates,return=minimal"}
        try:
            response = await self.http_client.post(
                f"{self.base_url}/{self.table}",
                params={"on_conflict": "id_node,waktu"},
                headers=headers,
                json=[reading.to_row()],
            )
        except httpx.HTTPError as e:
            raise PersistenceError(
                f"Failed to reach Supabase: {e.__class__.__name__}: {e}",
                node_id=reading.node_id,
            )

        if response.status_code not in self.WRITE_OK:
            raise PersistenceError(
                f"Supabase returned HTTP {response.status_code}: {response.text[:500]}",
                node_id=reading.node_id,
            )
        logger.info(f"[{reading.node_id}] Stored reading {reading.observed_at}")

    async def _get_rows(self, resource: str, params: list[tuple[str, str]]) -> list[dict]:
        try:
            response = await self.http_client.get(
                f"{self.base_url}/{resource}",
                params=params,
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            raise QueryError(f"Failed to reach Supabase: {e.__class__.__name__}: {e}")

        if response.status_code != 200:
            raise QueryError(f"Supabase returned HTTP {response.status_code}: {response.text[:500]}")
        try:
            rows = response.json()
        except ValueError:
            raise QueryError("Supabase returned a non-JSON body")
        if not isinstance(rows, list):
            raise QueryError("Supabase returned a non-list body")
        return rows

    async def query(self, node_ids: Iterable[str], since: Bound = None) -> list[StoredReading]:
        nodes = _dedupe(node_ids)
        if not nodes:
            return []
        try:
            bound = format_bound(since)
        except ValueError as e:
            raise QueryError(f"Invalid lower bound {since!r}: {e}")

        params = [("select", "*"), ("id_node", _postgrest_list(nodes))]
        if bound is not None:
            params.append(("waktu", f"gte.{bound}"))
        params.append(("order", "waktu.asc,id_node.asc"))

        return _to_stored(await self._get_rows(self.table, params))

    async def latest(self, node_ids: Iterable[str]) -> list[StoredReading]:
        nodes = _dedupe(node_ids)
        if not nodes:
            return []
        params = [
            ("select", "*"),
            ("id_node", _postgrest_list(nodes)),
            ("order", "id_node.asc"),
        ]
        return _to_stored(await self._get_rows(self.latest_view, params))

    async def close(self) -> None:
        await self.http_client.aclose()


# =============================================================================
# FACTORY
# =============================================================================

def create_store(settings, http_client: Optional[httpx.AsyncClient] = None) -> ReadingStore:
    """
    Build the store the settings ask for.

    Raises:
        ConfigurationError: unknown backend or missing Supabase credentials
    """
    settings.require_store()
    if settings.store_backend == "supabase":
        return SupabaseReadingStore(
            url=settings.supabase_url,
            api_key=settings.supabase_key,
            table=settings.supabase_table,
            request_timeout=settings.request_timeout,
            http_client=http_client,
        )
    if settings.store_backend == "sqlite":
        return SqliteReadingStore(settings.sqlite_path)
    raise ConfigurationError(f"Unknown store backend: {settings.store_backend}")
