"""
Utility modules for the sensor collector backend.
"""

from savana.utils.validation import (
    validate_node_id,
    validate_polling_interval,
    is_placeholder,
    parse_node_ids,
    parse_waktu,
    format_bound,
    to_utc_naive,
    WAKTU_FORMAT,
)

__all__ = [
    "validate_node_id",
    "validate_polling_interval",
    "is_placeholder",
    "parse_node_ids",
    "parse_waktu",
    "format_bound",
    "to_utc_naive",
    "WAKTU_FORMAT",
]
