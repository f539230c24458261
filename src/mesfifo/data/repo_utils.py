"""Shared utilities for repository implementations.

Values reach the scheduler from route handlers and from JSON columns, so
quantities show up as ints, floats, numeric strings (sometimes with ','
decimals) or NaN. These helpers normalize them in one place.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Mapping

import pandas as pd

logger = logging.getLogger(__name__)


def coerce_float(value) -> float | None:
    """Coerce common numeric representations to float.

    Returns None when value is empty/NaN.
    Accepts numbers and strings (handles ',' as decimal separator).
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass

    if isinstance(value, (int, float)):
        return float(value)

    s = str(value).strip()
    if not s or s.lower() == "nan":
        return None

    # 1.234,56 -> 1234.56
    if "," in s and "." in s:
        s = s.replace(".", "").replace(",", ".")
    elif "," in s:
        s = s.replace(",", ".")

    try:
        return float(s)
    except ValueError:
        return None


def qty(value) -> float:
    """Like coerce_float but empty values count as zero."""
    v = coerce_float(value)
    return 0.0 if v is None else v


_DIGITS_RE = re.compile(r"^-?\d+$")


def parse_int_strict(value, *, field: str) -> int:
    """Parse an integer identifier.

    Accepts ints, floats like 123.0, and digit-only strings.
    Raises ValueError otherwise.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"{field} empty")

    if isinstance(value, int):
        return int(value)

    if isinstance(value, float):
        if pd.isna(value):
            raise ValueError(f"{field} empty")
        if float(value).is_integer():
            return int(value)
        raise ValueError(f"{field} invalid (not an integer): {value!r}")

    s = str(value).strip()
    if not s:
        raise ValueError(f"{field} empty")
    if _DIGITS_RE.match(s):
        return int(s)

    raise ValueError(f"{field} invalid: {value!r}")


def coerce_qty_map(value: Mapping[str, Any] | str | None) -> dict[str, float]:
    """Normalize a materialCode -> quantity map (dict or JSON text).

    Entries whose quantity cannot be parsed are dropped.
    """
    if value is None:
        return {}
    if isinstance(value, str):
        value = load_json_map(value)
    out: dict[str, float] = {}
    for code, raw in dict(value).items():
        v = coerce_float(raw)
        if v is None:
            continue
        out[str(code)] = v
    return out


def load_json_map(raw: str | None) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed JSON map: %r", raw)
        return {}
    return value if isinstance(value, dict) else {}


def dump_json_map(value: Mapping[str, Any] | None) -> str | None:
    if not value:
        return None
    return json.dumps(dict(value), ensure_ascii=False, sort_keys=True)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_iso(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.fromisoformat(s.replace(" ", "T", 1))
