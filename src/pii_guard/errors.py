"""Exception taxonomy.

Remote failures are expected: the unified detector catches them and
falls back to pattern detection, so ``RemoteDetectionError`` never
reaches the host application.  ``ConfigError`` does, at startup.
"""

from __future__ import annotations


class PIIGuardError(Exception):
    """Base class for all pii-guard errors."""


class ConfigError(PIIGuardError):
    """Invalid configuration value."""


class RemoteDetectionError(PIIGuardError):
    """The remote detection service could not produce a result."""


class RemoteUnavailable(RemoteDetectionError):
    """The service is not reachable (health check failed or connection refused)."""


class RemoteTimeout(RemoteDetectionError):
    """Every attempt ran into the request timeout."""


class RemoteError(RemoteDetectionError):
    """The service answered with an error status or an unreadable payload."""
