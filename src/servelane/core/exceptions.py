"""
Core exception classes for the Servelane operator.

Errors fall into four groups: a required API is not deployed, a rollout
is already in progress, a gateway call failed, and best-effort failures.
Only the first three ever reach a caller; best-effort failures are
reported through telemetry at their call site.
"""

from typing import Optional


class ServelaneError(Exception):
    """Base exception for all Servelane errors."""
    pass


class ConfigurationError(ServelaneError):
    """Raised when there's a configuration error."""
    pass


class APINotDeployedError(ServelaneError):
    """Raised when an operation requires a workload that does not exist."""

    def __init__(self, api_name: str):
        self.api_name = api_name
        super().__init__(f"{api_name} is not deployed")


class APIUpdatingError(ServelaneError):
    """Raised when a rollout is converging and the caller did not force an override."""

    retryable = True

    def __init__(self, api_name: str):
        self.api_name = api_name
        super().__init__(
            f"{api_name} is updating (override with --force)"
        )


class GatewayError(ServelaneError):
    """Raised when a read or write against the cluster or an external store fails."""

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        self.step = step
        self.cause = cause
        message = step if cause is None else f"{step}: {cause}"
        super().__init__(message)


class ObjectStorageError(GatewayError):
    """Raised when object storage operations fail."""
    pass


class DashboardError(GatewayError):
    """Raised when dashboard registration calls fail."""
    pass


class LabelNotFoundError(ServelaneError):
    """Raised when a cluster object is missing a required identity label."""

    def __init__(self, label: str, name: str):
        self.label = label
        self.name = name
        super().__init__(f"label {label} not found on {name}")
