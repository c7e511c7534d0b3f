"""
Configuration
=============

Application settings loaded from environment variables (and a `.env` file,
if present).

Environment Variables:
    API_URL:            Upstream sensor API endpoint
    API_KEY:            Upstream API key (sent as the `api_key` query param)
    NODE_IDS:           Comma separated node ids to poll
    NODE_ID_1/NODE_ID_2: Legacy single-node variables, merged into NODE_IDS
    STORE_BACKEND:      "sqlite" (default) or "supabase"
    SQLITE_PATH:        SQLite file for the sqlite backend
    SUPABASE_URL:       Supabase project URL for the supabase backend
    SUPABASE_ANON_KEY:  Supabase API key
    SUPABASE_TABLE:     Table name (default: sensor_data)
    POLLING_INTERVAL:   Seconds between poll cycles (default: 3600)
    CYCLE_TIMEOUT:      Max seconds a cycle may run (default: 300)
    REQUEST_TIMEOUT:    Per-request HTTP timeout in seconds (default: 30)
    POLL_ON_STARTUP:    Run one cycle when the server starts (default: true)
    DISPLAY_TIMEZONE:   Timezone for chart labels (default: Asia/Jakarta)
    FRONTEND_URL:       Dashboard origin for CORS
    LOG_LEVEL:          Logging level (default: INFO)
"""

import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from savana.errors import ConfigurationError
from savana.utils.validation import is_placeholder, parse_node_ids, validate_polling_interval

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("sqlite", "supabase")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


class Settings(BaseModel):
    """
    Everything the collector needs to know about its environment.

    Build it with `Settings.from_env()` in the app and CLI; tests construct
    it directly.
    """
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    node_ids: list[str] = Field(default_factory=list)

    store_backend: str = "sqlite"
    sqlite_path: str = "sensor_data.db"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_table: str = "sensor_data"

    polling_interval: int = 3600
    cycle_timeout: float = 300.0
    request_timeout: float = 30.0
    poll_on_startup: bool = True

    display_timezone: str = "Asia/Jakarta"
    frontend_url: str = "http://localhost:5173"
    log_level: str = "INFO"

    @property
    def cors_origins(self) -> list[str]:
        origins = [
            self.frontend_url,
            "http://localhost:5173",    # Vite dev server
            "http://127.0.0.1:5173",
        ]
        return list(dict.fromkeys(origins))

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Read settings from the environment.

        Empty and placeholder node ids (e.g. "<NODE_ID_1>") are skipped with
        a warning rather than polled.

        Raises:
            ConfigurationError: if a numeric variable does not parse
        """
        if dotenv:
            load_dotenv()

        raw_ids = parse_node_ids(os.getenv("NODE_IDS"))
        for legacy in ("NODE_ID_1", "NODE_ID_2"):
            value = os.getenv(legacy)
            if value and value.strip():
                raw_ids.append(value.strip())

        node_ids = []
        for node_id in raw_ids:
            if is_placeholder(node_id):
                logger.warning(f"Skipping placeholder node id: {node_id}")
                continue
            if node_id not in node_ids:
                node_ids.append(node_id)

        return cls(
            api_url=os.getenv("API_URL") or None,
            api_key=os.getenv("API_KEY") or None,
            node_ids=node_ids,
            store_backend=(os.getenv("STORE_BACKEND") or "sqlite").strip().lower(),
            sqlite_path=os.getenv("SQLITE_PATH") or "sensor_data.db",
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_ANON_KEY") or None,
            supabase_table=os.getenv("SUPABASE_TABLE") or "sensor_data",
            polling_interval=_env_int("POLLING_INTERVAL", 3600),
            cycle_timeout=_env_float("CYCLE_TIMEOUT", 300.0),
            request_timeout=_env_float("REQUEST_TIMEOUT", 30.0),
            poll_on_startup=_env_bool("POLL_ON_STARTUP", True),
            display_timezone=os.getenv("DISPLAY_TIMEZONE") or "Asia/Jakarta",
            frontend_url=os.getenv("FRONTEND_URL") or "http://localhost:5173",
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

    def require_store(self) -> None:
        """
        Check the store settings. Needed by both the read and write paths.

        Raises:
            ConfigurationError: listing every missing setting
        """
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigurationError(
                f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got {self.store_backend!r}"
            )
        if self.store_backend == "supabase":
            missing = [
                name for name, value in (
                    ("SUPABASE_URL", self.supabase_url),
                    ("SUPABASE_ANON_KEY", self.supabase_key),
                ) if not value
            ]
            if missing:
                raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    def require_ingest(self) -> None:
        """
        Check everything the write path needs before the first cycle runs.

        Raises:
            ConfigurationError: listing every missing setting
        """
        self.require_store()
        missing = []
        if not self.api_url:
            missing.append("API_URL")
        if not self.api_key:
            missing.append("API_KEY")
        if not self.node_ids:
            missing.append("NODE_IDS")
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
        if not validate_polling_interval(self.polling_interval):
            raise ConfigurationError(
                f"POLLING_INTERVAL must be between 60 and 86400 seconds, got {self.polling_interval}"
            )
        if self.cycle_timeout >= self.polling_interval:
            raise ConfigurationError(
                f"CYCLE_TIMEOUT ({self.cycle_timeout}s) must be shorter than "
                f"POLLING_INTERVAL ({self.polling_interval}s)"
            )


def configure_logging(level: str = "INFO") -> None:
    """Timestamped log lines to stderr, tagged with the logger name."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='[%(asctime)s] %(levelname)s %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[logging.StreamHandler(sys.stderr)]
    )
    # httpx logs full request URLs at INFO, api_key included
    logging.getLogger("httpx").setLevel(logging.WARNING)
