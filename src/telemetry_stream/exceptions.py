"""Base exception classes for the telemetry stream."""
from __future__ import annotations


class TelemetryStreamError(Exception):
    """Base error for the telemetry stream package."""


class FrameDecodeError(TelemetryStreamError):
    """Raised when an inbound frame is not valid JSON or does not match its schema."""


class ConfigError(TelemetryStreamError):
    """Raised when a configuration file cannot be read or validated."""
