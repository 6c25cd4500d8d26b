"""
PatternDetector - keyword occurrence counts over the current entries.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Sequence

from config.settings import get_settings
from events.log_models import LogEntry


@dataclass(frozen=True)
class PatternMatch:
    """Number of entries whose message contains ``pattern``."""

    pattern: str
    count: int


def detect(
    entries: Iterable[LogEntry],
    patterns: Sequence[str] | None = None,
) -> list[PatternMatch]:
    """Count entries matching each keyword (case-insensitive substring of ``message``).

    Zero-count patterns are left out; results are ordered by count
    descending, then pattern name ascending.
    """
    if patterns is None:
        patterns = get_settings().THREAT_PATTERNS
    needles = [(p, p.lower()) for p in dict.fromkeys(patterns) if p]

    counts: Counter[str] = Counter()
    for entry in entries:
        message = entry.message.lower()
        for pattern, needle in needles:
            if needle in message:
                counts[pattern] += 1

    return _ranked(counts)


def component_level_summary(
    entries: Iterable[LogEntry], limit: int = 5
) -> list[PatternMatch]:
    """Most frequent ``"component: LEVEL"`` pairs, same ordering as ``detect``."""
    counts: Counter[str] = Counter(
        f"{entry.component}: {entry.level.value}" for entry in entries
    )
    return _ranked(counts)[:limit]


def _ranked(counts: Counter[str]) -> list[PatternMatch]:
    return [
        PatternMatch(pattern=name, count=count)
        for name, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        if count > 0
    ]
