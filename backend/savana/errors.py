"""
Error Types
===========

Every failure the pipeline can hit has its own exception so callers can tell
them apart without parsing messages.

    SavanaError
    ├── ConfigurationError      startup: required settings missing (fatal)
    ├── TransportError          fetch: network unreachable, timeout
    ├── UpstreamHTTPError       fetch: non-200 HTTP status
    ├── MalformedResponseError  fetch: body is not the expected JSON shape
    ├── UpstreamStatusError     fetch: payload status is not "Ok"
    ├── MissingFieldError       normalize: id_node or waktu missing/null
    ├── NormalizationError      normalize: a measurement is not numeric
    ├── PersistenceError        store: write rejected
    └── QueryError              query: read rejected

Each error carries the node (when there is one) and the pipeline stage, so
the log line and the NodeResult can say exactly where a cycle stopped.
"""

from typing import Optional


class SavanaError(Exception):
    """Base class for every error raised by this package."""

    stage = "unknown"
    error_type = "error"

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id

    def __str__(self) -> str:
        return self.message


class ConfigurationError(SavanaError):
    stage = "config"
    error_type = "configuration_error"


class TransportError(SavanaError):
    stage = "fetch"
    error_type = "transport_error"


class UpstreamHTTPError(SavanaError):
    stage = "fetch"
    error_type = "http_error"

    def __init__(self, message: str, status_code: int, body: str = "", node_id: Optional[str] = None):
        super().__init__(message, node_id=node_id)
        self.status_code = status_code
        self.body = body


class MalformedResponseError(SavanaError):
    stage = "fetch"
    error_type = "malformed_response"


class UpstreamStatusError(SavanaError):
    stage = "fetch"
    error_type = "upstream_status"

    def __init__(self, message: str, upstream_status: Optional[str] = None, node_id: Optional[str] = None):
        super().__init__(message, node_id=node_id)
        self.upstream_status = upstream_status


class MissingFieldError(SavanaError):
    stage = "normalize"
    error_type = "missing_field"

    def __init__(self, message: str, field: str, node_id: Optional[str] = None):
        super().__init__(message, node_id=node_id)
        self.field = field


class NormalizationError(SavanaError):
    stage = "normalize"
    error_type = "invalid_value"


class PersistenceError(SavanaError):
    stage = "store"
    error_type = "persistence_error"


class QueryError(SavanaError):
    stage = "query"
    error_type = "query_error"
