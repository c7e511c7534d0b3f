"""
Input Validation Utilities
===========================

Common validation and conversion helpers for node ids, poll settings and
timestamps.

TIMESTAMPS:
----------
The upstream `waktu` is a naive ISO string ("2025-07-10T08:00:00") that is
understood to be UTC. The store keeps it as text, so lower bounds for reads
have to be rendered in the same canonical form to compare correctly.
"""

import re
from datetime import datetime, timezone
from typing import Optional, Union


# Placeholder values left in an unedited .env / cron script, e.g. "<NODE_ID_1>"
_PLACEHOLDER_PATTERN = re.compile(r'^<.*>$')

WAKTU_FORMAT = "%Y-%m-%dT%H:%M:%S"


def validate_node_id(node_id: Optional[str]) -> bool:
    """
    Validate a node identifier.

    Node ids are opaque and assigned by the upstream, so the only rules are:
    not empty, not whitespace, not a template placeholder.

    Args:
        node_id: Node identifier string

    Returns:
        True if usable, False otherwise
    """
    if not node_id or not node_id.strip():
        return False
    return not is_placeholder(node_id.strip())


def is_placeholder(value: str) -> bool:
    """True for template values like "<REDACTED_NODE_ID_1>"."""
    return bool(_PLACEHOLDER_PATTERN.match(value))


def validate_polling_interval(seconds: int) -> bool:
    """
    Validate polling interval (must be positive and reasonable).

    Args:
        seconds: Polling interval in seconds

    Returns:
        True if valid, False otherwise
    """
    return 60 <= seconds <= 86400  # 1 minute to 24 hours


def parse_node_ids(raw: Optional[str]) -> list[str]:
    """Split a comma separated NODE_IDS value, dropping blanks."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_waktu(value: str) -> datetime:
    """
    Parse a stored/upstream timestamp into an aware UTC datetime.

    Accepts "2025-07-10T08:00:00", "2025-07-10 08:00:00", fractional seconds
    and an explicit offset or trailing "Z".

    Raises:
        ValueError: if the string is not an ISO timestamp
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_bound(since: Union[datetime, str, None]) -> Optional[str]:
    """
    Render a lower bound in the canonical `waktu` text form.

    Args:
        since: datetime (aware or naive UTC), ISO string, or None

    Returns:
        "YYYY-MM-DDTHH:MM:SS", with ".ffffff" appended when the bound has a
        fractional second, or None when there is no bound. A whole-second
        stored `waktu` sorts before a fractional bound in the same second,
        so text comparison still excludes it.

    Raises:
        ValueError: if a string bound is not an ISO timestamp
    """
    if since is None:
        return None
    if isinstance(since, str):
        since = parse_waktu(since)
    since = to_utc_naive(since)
    if since.microsecond:
        return since.isoformat(timespec="microseconds")
    return since.strftime(WAKTU_FORMAT)
