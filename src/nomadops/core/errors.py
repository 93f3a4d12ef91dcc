"""Typed errors raised by the deployment components.

Every component raises a subclass of DeployError. The orchestrator
records the first one it sees as the attempt's failure reason and the
CLI prints it verbatim.
"""

from __future__ import annotations

from typing import Any, Mapping


class DeployError(RuntimeError):
    """Base class for deployment errors."""

    kind = "DeployError"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({extra})"


class ConfigError(DeployError):
    """Raised when configuration is missing or invalid."""

    kind = "ConfigError"


class BuildError(DeployError):
    """Raised when an image cannot be built or pushed."""

    kind = "BuildError"

    MISSING_SOURCE = "MissingSource"
    MISSING_DOCKERFILE = "MissingDockerfile"
    BACKEND_FAILURE = "BackendFailure"
    PUSH_DENIED = "PushDenied"
    PLATFORM_FAILURE = "PlatformFailure"

    def __init__(self, reason: str, message: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.reason}: {super().__str__()}"


class RewriteError(DeployError):
    """Raised when a job template cannot be rewritten."""

    kind = "RewriteError"

    PLACEHOLDER_NOT_FOUND = "PlaceholderNotFound"
    AMBIGUOUS_PLACEHOLDER = "AmbiguousPlaceholder"

    def __init__(self, reason: str, message: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.reason}: {super().__str__()}"


class InvalidSpec(DeployError):
    """Raised when the cluster rejects a job spec during validation."""

    kind = "InvalidSpec"


class TransportError(DeployError):
    """Raised when the cluster control plane cannot be reached."""

    kind = "TransportError"


class RejectedSpec(DeployError):
    """Raised when the cluster refuses to plan or run a job spec."""

    kind = "RejectedSpec"


class HealthTimeout(DeployError):
    """Raised when a rollout does not become healthy before the deadline."""

    kind = "HealthTimeout"


class DeploymentFailed(DeployError):
    """Raised when the cluster reports the rollout as failed."""

    kind = "DeploymentFailed"


class Cancelled(DeployError):
    """Raised when an attempt is aborted by the caller."""

    kind = "Cancelled"
