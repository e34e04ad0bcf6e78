"""Custom exception hierarchy for Gatekeeper.

All exceptions inherit from GatekeeperError so callers can catch broadly
or narrowly as needed. Entry points translate them into failure payloads
using each class's ``error_type``.
"""


class GatekeeperError(Exception):
    """Base exception for all Gatekeeper errors."""

    error_type = "GatekeeperError"


# ---------------------------------------------------------------------------
# Request handling
# ---------------------------------------------------------------------------

class ValidationError(GatekeeperError):
    """Missing or malformed request field."""

    error_type = "ValidationError"


class NotFoundError(GatekeeperError):
    """Unknown review item or operation id."""

    error_type = "NotFoundError"


class NoActiveContextError(GatekeeperError):
    """No host document or state is available."""

    error_type = "NoActiveContextError"


# ---------------------------------------------------------------------------
# Host execution
# ---------------------------------------------------------------------------

class HostExecutionError(GatekeeperError):
    """The executor call failed."""

    error_type = "HostExecutionError"

    def __init__(self, message: str, operation_id: str | None = None):
        self.operation_id = operation_id
        super().__init__(message)


class ExecutionTimeoutError(HostExecutionError):
    """The executor did not answer within the dispatch timeout."""

    def __init__(self, operation_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Operation {operation_id} timed out after {timeout_seconds}s",
            operation_id=operation_id,
        )


# ---------------------------------------------------------------------------
# Learning & workflow
# ---------------------------------------------------------------------------

class SessionError(GatekeeperError):
    """Learning session lifecycle violation."""

    error_type = "SessionError"


class DependencyCycleError(GatekeeperError):
    """Adding the edge would close a cycle in the dependency graph."""

    error_type = "DependencyCycleError"

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"Edge {source} -> {target} would introduce a cycle")


class InvariantViolation(GatekeeperError):
    """An internal invariant was broken (e.g. illegal status transition)."""

    error_type = "InvariantViolation"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class DatabaseError(GatekeeperError):
    """Failed database operation."""

    error_type = "DatabaseError"


class SchemaInitError(DatabaseError):
    """Failed to initialize database schema."""


class ConnectionError(DatabaseError):
    """Failed to connect to database."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(GatekeeperError):
    """Invalid or missing configuration."""

    error_type = "ConfigurationError"


class FeatureDisabledError(ConfigError):
    """The confidence gate is disabled in configuration."""

    def __init__(self, message: str = "Gatekeeper is not enabled. Set gatekeeper.enabled: true"):
        super().__init__(message)


class QueueFullError(ConfigError):
    """The review queue reached its configured capacity."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        super().__init__(f"Review queue is full ({max_size} pending items)")
