"""
Reading Normalizer
==================

Turns the upstream `data` object into a canonical Reading.

Rules:
- `id_node` and `waktu` are required. Missing, null or empty means the whole
  reading is discarded (MissingFieldError). Nothing is partially stored.
- Each measurement is copied through when present and not null, otherwise it
  becomes None. Numeric strings ("22.5") are accepted.
- A value equal to the field's sentinel (moisture -99) becomes None.
- No interpolation, clamping or unit conversion.
"""

import logging
import math
from typing import Any, Optional

from savana.errors import MissingFieldError, NormalizationError
from savana.models import MEASUREMENT_FIELDS, UPSTREAM_FIELD_MAP, Reading, is_sentinel

logger = logging.getLogger(__name__)


def _required(data: dict, field: str, node_hint: Optional[str]) -> str:
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingFieldError(
            f"Missing required field: {field}",
            field=field,
            node_id=node_hint,
        )
    return str(value).strip()


def _measurement(field: str, value: Any, node_id: str) -> Optional[float]:
    if value is None:
        return None
    # bool is an int subclass; reject it rather than store 1.0/0.0
    if isinstance(value, bool):
        raise NormalizationError(f"{field} is not numeric: {value!r}", node_id=node_id)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise NormalizationError(f"{field} is not numeric: {value!r}", node_id=node_id)
    if math.isnan(number) or math.isinf(number):
        raise NormalizationError(f"{field} is not a finite number: {value!r}", node_id=node_id)
    if is_sentinel(field, number):
        logger.debug(f"[{node_id}] {field}={value} is the no-data sentinel")
        return None
    return number


def normalize(data: dict, node_hint: Optional[str] = None) -> Reading:
    """
    Build a canonical Reading from one upstream `data` object.

    Args:
        data: The `data` object returned by ReadingFetcher.fetch()
        node_hint: Node that was queried, used for error context only

    Returns:
        The canonical Reading

    Raises:
        MissingFieldError: id_node or waktu missing/null/empty
        NormalizationError: a measurement is present but not a finite number
    """
    if not isinstance(data, dict):
        raise NormalizationError("Reading payload is not an object", node_id=node_hint)

    node_id = _required(data, "id_node", node_hint)
    observed_at = _required(data, "waktu", node_hint or node_id)

    data_node = data.get("data_node") or {}
    if not isinstance(data_node, dict):
        raise NormalizationError("data_node is not an object", node_id=node_id)

    values = {
        field: _measurement(field, data_node.get(UPSTREAM_FIELD_MAP[field]), node_id)
        for field in MEASUREMENT_FIELDS
    }

    return Reading(node_id=node_id, observed_at=observed_at, **values)
