"""CSQ signal-level helpers used for display."""

from __future__ import annotations

from smsgw.core.model import MAX_SIGNAL_LEVEL


def signal_percentage(level: int) -> int:
    """Map a CSQ level (0-31) to 0-100."""
    level = min(max(level, 0), MAX_SIGNAL_LEVEL)
    return int(level / MAX_SIGNAL_LEVEL * 100 + 0.5)


def signal_category(level: int) -> str:
    if level >= 20:
        return "excellent"
    if level >= 15:
        return "good"
    if level >= 10:
        return "fair"
    if level > 0:
        return "poor"
    return "none"


def describe_signal(level: int) -> str:
    return f"{signal_category(level)} ({signal_percentage(level)}%)"
