"""Cluster client interface and Nomad status mapping.

Both transports (the HTTP API and the ``nomad`` CLI over ssh) expose the
same four operations and read the same evaluation and deployment
objects, so the mapping from Nomad's vocabulary to RolloutStatus lives
here rather than in each adapter.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Protocol

from nomadops.core.errors import InvalidSpec
from nomadops.core.models import (
    DeploymentHandle,
    JobSpec,
    Plan,
    RolloutStatus,
    ValidationResult,
)

_JOB_BLOCK_RE = re.compile(r'^\s*job\s+"(?P<id>[^"]+)"\s*\{', re.MULTILINE)

EVAL_PENDING = {"pending", "blocked"}
EVAL_FAILED = {"failed", "canceled", "cancelled"}
DEPLOYMENT_RUNNING = {"running", "pending", "paused", "blocked", "initializing", "unblocking"}
DEPLOYMENT_FAILED = {"failed", "cancelled", "canceled"}


class ClusterClient(Protocol):
    """Interface for the cluster control plane used by the orchestrator."""

    def validate(self, spec: JobSpec) -> ValidationResult:
        """Check syntax and schema without side effects."""
        ...

    def plan(self, spec: JobSpec) -> Plan:
        """Return what submitting the spec would change."""
        ...

    def run(self, spec: JobSpec) -> DeploymentHandle:
        """Submit the spec and return a handle for polling."""
        ...

    def status(self, handle: DeploymentHandle) -> RolloutStatus:
        """Poll the rollout once."""
        ...

    def revert(self, handle: DeploymentHandle) -> None:
        """Revert the job to the version running before the submission."""
        ...


def job_id_of(spec: JobSpec) -> str:
    """Return the job identifier declared by ``job "<id>" {`` in a spec."""
    match = _JOB_BLOCK_RE.search(spec.text)
    if not match:
        raise InvalidSpec('Job spec has no `job "<id>" { ... }` block')
    return match.group("id")


def evaluation_status(evaluation: Mapping[str, Any]) -> RolloutStatus | None:
    """
    Map a Nomad evaluation to a RolloutStatus.

    Returns None when the evaluation completed and created a deployment,
    meaning the deployment object decides the outcome.
    """
    status = str(evaluation.get("Status") or "").lower()
    if status in EVAL_PENDING:
        return RolloutStatus.PENDING
    if status in EVAL_FAILED:
        return RolloutStatus.FAILED
    if status != "complete":
        return RolloutStatus.UNKNOWN
    if evaluation.get("FailedTGAllocs"):
        return RolloutStatus.FAILED
    if evaluation.get("DeploymentID"):
        return None
    # batch and system jobs have no deployment to watch
    return RolloutStatus.HEALTHY


def deployment_status(deployment: Mapping[str, Any]) -> RolloutStatus:
    """Map a Nomad deployment to a RolloutStatus."""
    status = str(deployment.get("Status") or "").lower()
    if status == "successful":
        return RolloutStatus.HEALTHY
    if status in DEPLOYMENT_FAILED:
        return RolloutStatus.FAILED
    if status in DEPLOYMENT_RUNNING:
        return RolloutStatus.RUNNING
    return RolloutStatus.UNKNOWN


def failed_allocations(failed: Mapping[str, Any] | None) -> tuple[str, ...]:
    """Return sorted task group names from a ``FailedTGAllocs`` map."""
    return tuple(sorted((failed or {}).keys()))


def diff_changes(diff_type: str) -> bool:
    """Return True if a plan diff type means the job would change."""
    return diff_type not in ("", "None")
