"""Conversions between interpreter-side values and host values"""

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import numpy as np

NDARRAY_TAG = "__ndarray__"
FLOAT_TAG = "__float__"

_SPECIAL_FLOATS = {"nan": float("nan"), "inf": float("inf"), "-inf": float("-inf")}


def decode_value(value: Any) -> Any:
    """
    Coerce a decoded JSON value into host representations.

    Tagged numeric arrays become ``numpy.ndarray`` with their original dtype
    and shape, tagged special floats become ``float`` values. Any other shape
    is passed through as nested dicts and lists.
    """
    if isinstance(value, dict):
        if NDARRAY_TAG in value:
            return _decode_array(value)
        if FLOAT_TAG in value and len(value) == 1:
            return _SPECIAL_FLOATS.get(str(value[FLOAT_TAG]).lower(), float("nan"))
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def _decode_array(value: dict) -> Any:
    items = decode_value(value[NDARRAY_TAG])
    try:
        array = np.asarray(items, dtype=value.get("dtype") or None)
        shape = value.get("shape")
        if shape is not None:
            array = array.reshape(shape)
        return array
    except (TypeError, ValueError):
        # Unknown dtype or ragged data: keep the plain nested lists
        return items


def to_builtin(value: Any) -> Any:
    """Convert host values to JSON-safe builtins; non-finite floats become None."""
    if isinstance(value, np.ndarray):
        return to_builtin(value.tolist())
    if isinstance(value, np.generic):
        return to_builtin(value.item())
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {str(key): to_builtin(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_builtin(item) for item in value]
    return value


def json_default(value: Any) -> Any:
    """``default`` hook for writing host rows with :func:`json.dump`."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return list(value)
    return str(value)
