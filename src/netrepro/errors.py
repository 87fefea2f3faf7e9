"""Exception hierarchy for fatal startup conditions.

Only configuration and bind failures are raised out of the lifecycle.
Accept and per-connection errors are contained where they occur.
"""

from __future__ import annotations


class ReproError(Exception):
    """Base class for fatal netrepro errors."""

    code = "REPRO_ERROR"


class ConfigError(ReproError):
    """Missing or invalid startup configuration."""

    code = "CONFIG_INVALID"


class BindError(ReproError):
    """The listener could not be created."""

    code = "BIND_FAILED"
