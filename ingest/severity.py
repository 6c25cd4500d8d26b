"""
SeverityClassifier - maps level tokens found in log lines to ``LogLevel``.
"""

from __future__ import annotations

from events.log_models import LogLevel

# (token, level): lower-case tokens the security product is known to emit
_LEVEL_ALIASES: tuple[tuple[str, LogLevel], ...] = (
    ("critical", LogLevel.CRITICAL),
    ("fatal", LogLevel.CRITICAL),
    ("error", LogLevel.ERROR),
    ("err", LogLevel.ERROR),
    ("fault", LogLevel.ERROR),
    ("warning", LogLevel.WARNING),
    ("warn", LogLevel.WARNING),
    ("info", LogLevel.INFO),
    ("default", LogLevel.INFO),
    ("notice", LogLevel.INFO),
    ("debug", LogLevel.DEBUG),
    ("dbg", LogLevel.DEBUG),
    ("trace", LogLevel.TRACE),
    ("verbose", LogLevel.TRACE),
)


class SeverityClassifier:
    """Classifies level tokens; unrecognized tokens map to ``default``."""

    def __init__(self, default: LogLevel = LogLevel.UNKNOWN) -> None:
        self._default = default
        self._table = dict(_LEVEL_ALIASES)

    def is_level_token(self, token: str) -> bool:
        return token.strip().lower() in self._table

    def classify(self, token: str | None) -> LogLevel:
        if not token:
            return self._default
        return self._table.get(token.strip().lower(), self._default)
