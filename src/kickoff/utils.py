"""Shared helpers used across kickoff modules."""
from __future__ import annotations

import math
from datetime import datetime, timezone


def safe_num(v) -> float | None:
    """Convert a value to float, returning None for NaN/Inf/empty/invalid."""
    if v is None:
        return None
    if isinstance(v, str) and v.strip() == "":
        return None
    try:
        result = float(v)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(v) -> int:
    n = safe_num(v)
    return int(n) if n is not None else 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def chunked(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]
