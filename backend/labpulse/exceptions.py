"""Custom exceptions for LabPulse."""

from typing import Optional


class LabPulseError(Exception):
    """Base class for LabPulse errors."""
    pass


class ConfigurationError(LabPulseError):
    """Raised when configuration is invalid.

    Configuration is validated once at startup, so this is raised before the
    metrics scheduler is allowed to start.
    """

    def __init__(self, setting: str, value: Optional[str], reason: str):
        """Initialize the exception.

        Args:
            setting: Name of the offending setting (e.g. METRICS_RETENTION_HOURS)
            value: Raw value that was rejected
            reason: Human readable explanation
        """
        self.setting = setting
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {setting}={value!r}: {reason}")


class SourceUnavailableError(LabPulseError):
    """Raised when a metrics source cannot produce a snapshot.

    Covers transport failures (timeouts, malformed responses, failed
    subprocesses). Expected unavailability such as "service not running" is
    not an error and is reported through the source's own return value.
    """

    def __init__(self, family: str, reason: str):
        self.family = family
        self.reason = reason
        super().__init__(f"{family} source unavailable: {reason}")


class SnapshotValidationError(LabPulseError):
    """Raised when a snapshot fails range validation before persistence."""

    def __init__(self, family: str, errors: str):
        self.family = family
        self.errors = errors
        super().__init__(f"Invalid {family} snapshot: {errors}")
