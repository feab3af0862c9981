"""Error taxonomy for the remediation job.

Only ConfigurationError and EnumerationError abort a run. ObjectNotFound and
RemediationError are recorded against a single object and the run continues.
"""

from typing import Optional


class DispositionFixError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(DispositionFixError):
    """Missing or invalid settings. Raised before any work is attempted."""

    def __init__(self, message: str, usage: Optional[str] = None):
        super().__init__(message)
        self.usage = usage


class EnumerationError(DispositionFixError):
    """The blob datastore could not be read."""


class ObjectNotFound(DispositionFixError):
    """The object vanished between listing and remediation."""

    def __init__(self, key: str):
        super().__init__(f"object not found: {key}")
        self.key = key


class RemediationError(DispositionFixError):
    """Any other per-object failure (permissions, throttling, network)."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"{key}: {reason}")
        self.key = key
        self.reason = reason
