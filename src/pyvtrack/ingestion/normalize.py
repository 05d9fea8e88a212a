"""Normalization helpers.

Tolerant parsing of loosely typed device values and topic helpers.
"""

from __future__ import annotations

import math
import re
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--":
        return None
    if isinstance(value, bool):
        return float(value)
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize device timestamps to epoch seconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """

    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    if ts > 1e11:
        ts /= 1000.0
    return ts


def topic_regex(pattern: str) -> re.Pattern[str]:
    """Compile a subscription pattern with one ``+`` segment into a regex.

    The wildcard segment becomes the single capture group.
    """
    parts = [r"([^/]+)" if part == "+" else re.escape(part) for part in pattern.split("/")]
    return re.compile("^" + "/".join(parts) + "$")


def vehicle_id_from_topic(topic: str, pattern: str = "vehicle/+/info") -> str | None:
    """Extract the vehicle id carried by *topic*, or ``None`` if it does not match."""
    match = topic_regex(pattern).match(topic)
    if match is None:
        return None
    return match.group(1)
