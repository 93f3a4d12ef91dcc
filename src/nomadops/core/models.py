"""Core deployment domain models.

This module defines the data structures that flow through a deployment:
build inputs and outputs, job templates and rewritten specs, cluster
handles and the deployment attempt record owned by the orchestrator.
It is intentionally free of CLI and transport concerns so the same
objects can be used by the CLI, automation and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Mapping


@dataclass(frozen=True)
class BuildRequest:
    """
    Input for a single image build.

    Attributes:
        source_path: Build context directory.
        dockerfile_path: Dockerfile location, relative to source_path
                         unless absolute.
        image_name: Fully qualified repository, e.g. ``ghcr.io/org/app``.
        tags: Tags to apply, in order. The first one becomes the
              reference used for deployment.
        platforms: Target platforms, e.g. ``linux/amd64``.
        push: Whether to push the result to the registry.
        build_args: Extra ``--build-arg`` values.
        labels: Extra image labels.
    """

    source_path: Path
    dockerfile_path: Path
    image_name: str
    tags: tuple[str, ...]
    platforms: frozenset[str] = frozenset({"linux/amd64"})
    push: bool = True
    build_args: Mapping[str, str] = field(default_factory=dict)
    labels: Mapping[str, str] = field(default_factory=dict)

    @property
    def dockerfile(self) -> Path:
        """Return the Dockerfile path resolved against the build context."""
        if self.dockerfile_path.is_absolute():
            return self.dockerfile_path
        return self.source_path / self.dockerfile_path

    @property
    def references(self) -> tuple[str, ...]:
        """Return ``image_name:tag`` for every requested tag."""
        return tuple(f"{self.image_name}:{tag}" for tag in self.tags)


@dataclass(frozen=True)
class BuildResult:
    """
    Outcome of a successful build.

    Attributes:
        image_reference: Reference used for deployment (first tag).
        tags: All references that were produced, in request order.
        digest: Manifest digest (``sha256:...``).
        pushed: True if the image was published to the registry.
    """

    image_reference: str
    tags: tuple[str, ...]
    digest: str
    pushed: bool = True

    @property
    def pinned_reference(self) -> str:
        """Return the reference pinned to its digest."""
        repository = self.image_reference.rsplit(":", 1)[0]
        return f"{repository}@{self.digest}"


@dataclass(frozen=True)
class JobTemplate:
    """Raw job-file text containing an image reference to replace."""

    text: str
    path: Path | None = None


@dataclass(frozen=True)
class JobSpec:
    """A job template with its image reference substituted."""

    text: str
    image_reference: str
    source: Path | None = None


@dataclass(frozen=True)
class ValidationResult:
    """Result of a successful validation call."""

    job_id: str
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class Plan:
    """
    Dry-run outcome of submitting a job spec.

    Attributes:
        job_id: Identifier of the job in the spec.
        diff_type: Scheduler diff type (``None``, ``Added``, ``Edited``...).
        changes: True if submitting would change anything.
        warnings: Scheduler warnings.
        failed_allocations: Task groups that could not be placed.
        job_modify_index: Index to use for check-and-set submission.
    """

    job_id: str
    diff_type: str
    changes: bool
    warnings: tuple[str, ...] = ()
    failed_allocations: tuple[str, ...] = ()
    job_modify_index: int = 0


@dataclass(frozen=True)
class DeploymentHandle:
    """
    Identifies a submitted job so its rollout can be polled.

    Attributes:
        job_id: Identifier of the submitted job.
        evaluation_id: Evaluation created by the submission.
        job_modify_index: Modify index reported by the scheduler.
        previous_version: Job version running before the submission,
                          or None if the job is new.
    """

    job_id: str
    evaluation_id: str
    job_modify_index: int = 0
    previous_version: int | None = None


class RolloutStatus(str, Enum):
    """
    Observed state of a submitted job.

    Values:
        PENDING: Submitted but not yet scheduled.
        RUNNING: Allocations are being placed or becoming healthy.
        HEALTHY: The new version is deployed and healthy.
        FAILED: The rollout failed.
        UNKNOWN: The state could not be determined.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    HEALTHY = "HEALTHY"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


class AttemptState(str, Enum):
    """Orchestrator states for a single deployment attempt."""

    INIT = "INIT"
    BUILDING = "BUILDING"
    REWRITING = "REWRITING"
    VALIDATING = "VALIDATING"
    SUBMITTING = "SUBMITTING"
    POLLING = "POLLING"
    HEALTHY = "HEALTHY"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        """Return True for HEALTHY and FAILED."""
        return self in (AttemptState.HEALTHY, AttemptState.FAILED)


@dataclass(frozen=True)
class FailureReason:
    """Kind and message of the first error that stopped an attempt."""

    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DeploymentAttempt:
    """
    Record of one run of the deployment pipeline.

    Only the orchestrator mutates this object. It ends in HEALTHY or
    FAILED, except for dry runs which stop after validation.
    """

    attempt_id: str
    environment: str
    started_at: datetime = field(default_factory=_utcnow)
    state: AttemptState = AttemptState.INIT
    build: BuildResult | None = None
    job_spec: JobSpec | None = None
    handle: DeploymentHandle | None = None
    plan: Plan | None = None
    failure: FailureReason | None = None
    dry_run: bool = False
    reverted: bool = False
    transitions: list[tuple[AttemptState, datetime]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Return True if the attempt reached HEALTHY."""
        return self.state == AttemptState.HEALTHY
