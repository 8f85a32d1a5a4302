"""Exception types raised by the drift tool.

Every failure that should abort a comparison derives from DriftToolError so the
CLI can map it to a single "comparison failed" exit code, distinct from the
drift exit codes.
"""
from __future__ import annotations


class DriftToolError(Exception):
    """Base class for failures that stop a comparison from running."""

    kind = "Internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(DriftToolError):
    """Bad config file, profile name, connection string, or schema list."""

    kind = "Config"


class DatabaseConnectionError(DriftToolError):
    """Network, login, or token acquisition failure."""

    kind = "Connection"


class QueryError(DriftToolError):
    """A catalog query failed (permissions, unsupported SKU, ...)."""

    kind = "Query"


class ScriptWriteError(DriftToolError):
    """The apply script could not be written to disk."""

    kind = "IO"


def classify_error(exc: BaseException) -> str:
    if isinstance(exc, DriftToolError):
        return exc.kind
    return "Internal"
