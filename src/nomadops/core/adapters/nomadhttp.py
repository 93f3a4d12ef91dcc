from __future__ import annotations

import ssl
from typing import Any

import httpx

from nomadops.core.cluster import (
    deployment_status,
    diff_changes,
    evaluation_status,
    failed_allocations,
)
from nomadops.core.config import ClusterConfig
from nomadops.core.errors import ConfigError, DeployError, InvalidSpec, RejectedSpec, TransportError
from nomadops.core.logging import get_logger
from nomadops.core.models import (
    DeploymentHandle,
    JobSpec,
    Plan,
    RolloutStatus,
    ValidationResult,
)

log = get_logger(__name__)


def _ssl_context(config: ClusterConfig) -> ssl.SSLContext | bool:
    """Return the TLS verification setting for the configured certificates."""
    if not (config.ca_cert or config.client_cert):
        return True
    try:
        context = ssl.create_default_context(cafile=config.ca_cert)
        if config.client_cert:
            context.load_cert_chain(config.client_cert, config.client_key)
    except OSError as exc:
        raise ConfigError(f"Cannot load TLS certificates: {exc}") from exc
    return context


def _warnings(raw: Any) -> tuple[str, ...]:
    """Nomad reports warnings as one multi-line string."""
    if not raw:
        return ()
    if isinstance(raw, str):
        return tuple(line.strip() for line in raw.splitlines() if line.strip())
    return tuple(str(w) for w in raw)


class NomadHttpClient:
    """Cluster client talking to the Nomad HTTP API."""

    def __init__(self, config: ClusterConfig, *, transport: httpx.BaseTransport | None = None):
        """
        Create a client for the configured Nomad address.

        Args:
            config: Cluster connection settings.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config
        headers = {"Accept": "application/json"}
        if config.token:
            headers["X-Nomad-Token"] = config.token
        params = {}
        if config.namespace:
            params["namespace"] = config.namespace
        if config.region:
            params["region"] = config.region
        self.client = httpx.Client(
            base_url=config.address.rstrip("/"),
            headers=headers,
            params=params,
            timeout=config.request_timeout,
            verify=_ssl_context(config),
            transport=transport,
        )
        self._parsed: dict[str, dict[str, Any]] = {}

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self.client.close()

    def __enter__(self) -> "NomadHttpClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        reject: type[DeployError],
        json: Any = None,
        allow_404: bool = False,
        server_error: type[DeployError] | None = None,
    ) -> Any:
        """
        Send a request and decode the JSON body, mapping failures to typed errors.

        HTTP errors raise ``reject``; 5xx responses raise ``server_error``
        instead when it is given.
        """
        try:
            response = self.client.request(method, path, json=json)
        except httpx.TransportError as exc:
            raise TransportError(
                f"Cannot reach Nomad at {self.config.address}: {exc}",
                details={"path": path},
            ) from exc

        if allow_404 and response.status_code == 404:
            return None
        if response.is_error:
            body = response.text.strip() or response.reason_phrase
            if server_error is not None and response.is_server_error:
                reject = server_error
            raise reject(
                f"Nomad returned HTTP {response.status_code}: {body}",
                details={"path": path},
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"Nomad returned invalid JSON for {path}") from exc

    def parse(self, spec: JobSpec) -> dict[str, Any]:
        """Convert HCL job text to the API's JSON job structure."""
        cached = self._parsed.get(spec.text)
        if cached is not None:
            return cached
        job = self._request(
            "POST",
            "/v1/jobs/parse",
            reject=InvalidSpec,
            json={"JobHCL": spec.text, "Canonicalize": True},
        )
        if not isinstance(job, dict) or not job.get("ID"):
            raise InvalidSpec("Parsed job has no ID")
        self._parsed[spec.text] = job
        return job

    def validate(self, spec: JobSpec) -> ValidationResult:
        """Parse and validate the job; never registers anything."""
        job = self.parse(spec)
        result = self._request("POST", "/v1/validate/job", reject=InvalidSpec, json={"Job": job})
        errors = result.get("ValidationErrors") or []
        if result.get("Error") or errors:
            reason = "; ".join(errors) if errors else result["Error"]
            raise InvalidSpec(reason, details={"job": job["ID"]})
        return ValidationResult(job_id=job["ID"], warnings=_warnings(result.get("Warnings")))

    def plan(self, spec: JobSpec) -> Plan:
        """Dry-run the job with a diff."""
        job = self.parse(spec)
        result = self._request(
            "POST",
            f"/v1/job/{job['ID']}/plan",
            reject=RejectedSpec,
            json={"Job": job, "Diff": True},
        )
        diff_type = str((result.get("Diff") or {}).get("Type") or "None")
        return Plan(
            job_id=job["ID"],
            diff_type=diff_type,
            changes=diff_changes(diff_type),
            warnings=_warnings(result.get("Warnings")),
            failed_allocations=failed_allocations(result.get("FailedTGAllocs")),
            job_modify_index=int(result.get("JobModifyIndex") or 0),
        )

    def current_version(self, job_id: str) -> int | None:
        """Return the registered job version, or None for a new job."""
        current = self._request("GET", f"/v1/job/{job_id}", reject=RejectedSpec, allow_404=True)
        if not current or current.get("Version") is None:
            return None
        return int(current["Version"])

    def run(self, spec: JobSpec) -> DeploymentHandle:
        """Register the job and return the evaluation handle."""
        job = self.parse(spec)
        previous = self.current_version(job["ID"])
        result = self._request("POST", "/v1/jobs", reject=RejectedSpec, json={"Job": job})
        eval_id = result.get("EvalID")
        if not eval_id:
            raise RejectedSpec("Nomad accepted the job but created no evaluation", details={"job": job["ID"]})
        for warning in _warnings(result.get("Warnings")):
            log.warning("nomad.warning", job=job["ID"], warning=warning)
        return DeploymentHandle(
            job_id=job["ID"],
            evaluation_id=eval_id,
            job_modify_index=int(result.get("JobModifyIndex") or 0),
            previous_version=previous,
        )

    def status(self, handle: DeploymentHandle) -> RolloutStatus:
        """Poll the evaluation and, once it completes, its deployment."""
        evaluation = self._request(
            "GET",
            f"/v1/evaluation/{handle.evaluation_id}",
            reject=RejectedSpec,
            server_error=TransportError,
        )
        mapped = evaluation_status(evaluation)
        if mapped is not None:
            return mapped
        deployment = self._request(
            "GET",
            f"/v1/deployment/{evaluation['DeploymentID']}",
            reject=RejectedSpec,
            server_error=TransportError,
        )
        return deployment_status(deployment)

    def revert(self, handle: DeploymentHandle) -> None:
        """Revert the job to the version running before the handle's submission."""
        if handle.previous_version is None:
            raise RejectedSpec(f"Job {handle.job_id} has no previous version to revert to")
        self._request(
            "POST",
            f"/v1/job/{handle.job_id}/revert",
            reject=RejectedSpec,
            json={"JobID": handle.job_id, "JobVersion": handle.previous_version},
        )
