"""Metric-based health classification for process components.

The computed status is advisory. It is never written back to a
component's ``health_status``, which users set explicitly; callers that
want both show them side by side.
"""

import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_LEADING_FLOAT = re.compile(r"^-?(\d+\.?\d*|\.\d+)")

HEALTH_WEIGHTS = {
    "GREEN": 100,
    "YELLOW": 60,
    "RED": 20,
    "GRAY": 50,
    "BLUE": 70,
}


def parse_metric_value(value: str | None) -> float | None:
    """Parse a free-text metric value such as ``"85%"`` or ``"3hrs"``.

    Every character that is not a digit, ``-`` or ``.`` is dropped, then the
    longest numeric prefix of what remains is read as a float. Returns None
    when nothing numeric is left.
    """
    if not value:
        return None
    stripped = _NON_NUMERIC.sub("", str(value))
    match = _LEADING_FLOAT.match(stripped)
    if match is None:
        return None
    return float(match.group(0))


def meets_target(metric: Mapping[str, Any]) -> bool:
    """True when both values parse and current >= target."""
    current = parse_metric_value(metric.get("current"))
    target = parse_metric_value(metric.get("target"))
    if current is None or target is None:
        return False
    return current >= target


def count_meeting(metrics: Iterable[Mapping[str, Any]]) -> tuple[int, int]:
    """Return (metrics meeting target, total metrics)."""
    met = 0
    total = 0
    for metric in metrics:
        total += 1
        if meets_target(metric):
            met += 1
    return met, total


def calculate_health_status(metrics: Iterable[Mapping[str, Any]]) -> str:
    """Classify a component's metrics as GREEN, YELLOW, RED or GRAY.

    - no metrics: GRAY
    - 90%+ meet target: GREEN
    - 70-90% meet target: YELLOW
    - below 70%: RED

    BLUE is only ever set by hand and is never returned here.
    """
    met, total = count_meeting(metrics)
    if total == 0:
        return "GRAY"

    ratio = met / total
    if ratio >= 0.9:
        return "GREEN"
    if ratio >= 0.7:
        return "YELLOW"
    return "RED"


def overall_health_score(statuses: Iterable[str]) -> int:
    """Convert component statuses to a 0-100 dashboard score."""
    weights = [HEALTH_WEIGHTS.get(status, 0) for status in statuses]
    if not weights:
        return 0
    # Half rounds up, never to even.
    return math.floor(sum(weights) / len(weights) + 0.5)
