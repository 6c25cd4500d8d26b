"""
Custom exception hierarchy for Beacon Sentinel.

Provides specific, meaningful exceptions for every failure mode
so callers can handle errors precisely.
"""

from __future__ import annotations


class BeaconBaseError(Exception):
    """Root exception for the Beacon Sentinel system."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class LogFileError(BeaconBaseError):
    """Raised when a log file (or its directory) is missing, unreadable or unsupported."""

    def __init__(self, path: str, message: str, details: dict | None = None) -> None:
        self.path = path
        super().__init__(message, {"path": path, **(details or {})})


class ConfigurationError(BeaconBaseError):
    """Raised when a collaborator is enabled but misconfigured."""


class ForwardingError(BeaconBaseError):
    """Raised when Log Analytics cannot be reached or rejects a record."""


class ComplianceScriptError(BeaconBaseError):
    """Raised when a compliance benchmark script cannot be launched."""
