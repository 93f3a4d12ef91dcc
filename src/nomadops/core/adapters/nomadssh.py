from __future__ import annotations

import json
import os
import re
import shlex
import subprocess
import tempfile
from typing import Any

from nomadops.core.cluster import (
    deployment_status,
    diff_changes,
    evaluation_status,
    job_id_of,
)
from nomadops.core.config import ClusterConfig
from nomadops.core.errors import ConfigError, DeployError, InvalidSpec, RejectedSpec, TransportError
from nomadops.core.models import (
    DeploymentHandle,
    JobSpec,
    Plan,
    RolloutStatus,
    ValidationResult,
)

SSH_CONNECTION_FAILED = 255
_SSH_ERROR_RE = re.compile(
    r"^(ssh: |kex_exchange_identification|Host key verification failed|Permission denied \(|"
    r"Connection (refused|timed out|closed by|reset by))",
    re.MULTILINE,
)
_READ_TOKEN = 'IFS= read -r NOMAD_TOKEN && export NOMAD_TOKEN && exec "$@"'

_EVAL_ID_RE = re.compile(r"Evaluation ID:\s*(\S+)")
_MODIFY_INDEX_RE = re.compile(r"Job Modify Index:\s*(\d+)")
_FAILED_TG_RE = re.compile(r'Task Group "([^"]+)" \(failed to place')
_PLAN_JOB_RE = re.compile(r'^(\+/-|\+|-)?\s*Job: "', re.MULTILINE)
_PLAN_DIFF_TYPES = {"+/-": "Edited", "+": "Added", "-": "Deleted", None: "None"}


class NomadSshClient:
    """Cluster client running the ``nomad`` CLI on a cluster host over ssh."""

    def __init__(self, config: ClusterConfig, *, ssh: str = "ssh"):
        """
        Create an ssh client for the configured host.

        Private key material given as text is written to a 0600 temporary
        file that lives until ``close()``.
        """
        if not (config.ssh_host and config.ssh_user):
            raise ConfigError("ssh transport requires ssh_host and ssh_user")
        self.config = config
        self.ssh = ssh
        self._key_file: str | None = None
        if config.ssh_key:
            fd, path = tempfile.mkstemp(prefix="nomadops-key-")
            with os.fdopen(fd, "w") as handle:
                handle.write(config.ssh_key.rstrip("\n") + "\n")
            os.chmod(path, 0o600)
            self._key_file = path

    def close(self) -> None:
        """Remove the temporary key file, if any."""
        if self._key_file and os.path.exists(self._key_file):
            os.unlink(self._key_file)
        self._key_file = None

    def __enter__(self) -> "NomadSshClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def key_path(self) -> str | None:
        return self._key_file or self.config.ssh_key_path

    def command(self, *nomad_args: str) -> list[str]:
        """
        Return the ssh command line running ``nomad <args>`` remotely.

        The ACL token never appears on the command line: when set, the remote
        shell reads it from the first line of stdin.
        """
        cfg = self.config
        cmd = [self.ssh, "-o", "BatchMode=yes", "-o", "StrictHostKeyChecking=accept-new"]
        cmd.extend(["-p", str(cfg.ssh_port)])
        if self.key_path:
            cmd.extend(["-i", self.key_path])
        cmd.append(f"{cfg.ssh_user}@{cfg.ssh_host}")

        remote: list[str] = []
        if cfg.token:
            remote.extend(["sh", "-c", _READ_TOKEN, "nomadops"])
        if cfg.address:
            remote.extend(["env", f"NOMAD_ADDR={cfg.address}"])
        remote.append("nomad")
        remote.extend(nomad_args[:2])
        if cfg.namespace:
            remote.append(f"-namespace={cfg.namespace}")
        if cfg.region:
            remote.append(f"-region={cfg.region}")
        remote.extend(nomad_args[2:])
        cmd.append(shlex.join(remote))
        return cmd

    def _nomad(
        self,
        *args: str,
        reject: type[DeployError],
        stdin: str | None = None,
        ok_codes: tuple[int, ...] = (0,),
    ) -> subprocess.CompletedProcess[str]:
        """Run a remote nomad command and map failures to typed errors."""
        cmd = self.command(*args)
        if self.config.token:
            stdin = f"{self.config.token}\n{stdin or ''}"
        try:
            proc = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.config.request_timeout,
            )
        except FileNotFoundError as exc:
            raise TransportError(f"{self.ssh} executable not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise TransportError(
                f"nomad {' '.join(args[:2])} timed out after {self.config.request_timeout:g}s",
                details={"host": self.config.ssh_host},
            ) from exc

        if proc.returncode == SSH_CONNECTION_FAILED and _SSH_ERROR_RE.search(proc.stderr):
            raise TransportError(
                f"ssh to {self.config.ssh_host} failed: {proc.stderr.strip()}",
                details={"host": self.config.ssh_host},
            )
        if proc.returncode not in ok_codes:
            output = (proc.stderr.strip() or proc.stdout.strip() or f"exit code {proc.returncode}")
            raise reject(output, details={"command": f"nomad {' '.join(args[:2])}"})
        return proc

    def _json(self, *args: str, reject: type[DeployError]) -> dict[str, Any]:
        proc = self._nomad(*args, reject=reject)
        try:
            return json.loads(proc.stdout)
        except json.JSONDecodeError as exc:
            raise TransportError(f"nomad {' '.join(args[:2])} returned invalid JSON") from exc

    def validate(self, spec: JobSpec) -> ValidationResult:
        """Run ``nomad job validate`` on the spec."""
        job_id = job_id_of(spec)
        proc = self._nomad("job", "validate", "-", reject=InvalidSpec, stdin=spec.text)
        warnings: list[str] = []
        collecting = False
        for line in proc.stdout.splitlines():
            stripped = line.strip()
            if stripped.startswith("Job Warnings:"):
                collecting = True
                continue
            if collecting and stripped.startswith("*"):
                warnings.append(stripped.lstrip("* ").strip())
        return ValidationResult(job_id=job_id, warnings=tuple(warnings))

    def plan(self, spec: JobSpec) -> Plan:
        """Run ``nomad job plan``; exit code 1 means changes, not failure."""
        job_id = job_id_of(spec)
        proc = self._nomad(
            "job", "plan", "-diff", "-", reject=RejectedSpec, stdin=spec.text, ok_codes=(0, 1)
        )
        match = _PLAN_JOB_RE.search(proc.stdout)
        diff_type = _PLAN_DIFF_TYPES[match.group(1) if match else None]
        index = _MODIFY_INDEX_RE.search(proc.stdout)
        return Plan(
            job_id=job_id,
            diff_type=diff_type,
            changes=proc.returncode == 1 or diff_changes(diff_type),
            failed_allocations=tuple(sorted(set(_FAILED_TG_RE.findall(proc.stdout)))),
            job_modify_index=int(index.group(1)) if index else 0,
        )

    def current_version(self, job_id: str) -> int | None:
        """Return the registered job version, or None for a new job."""
        try:
            data = self._json("job", "inspect", "-json", job_id, reject=RejectedSpec)
        except RejectedSpec as exc:
            message = str(exc).lower()
            if "not found" in message or "no job(s)" in message:
                return None
            raise
        job = data.get("Job", data)
        version = job.get("Version")
        return None if version is None else int(version)

    def run(self, spec: JobSpec) -> DeploymentHandle:
        """Run ``nomad job run -detach`` and return the evaluation handle."""
        job_id = job_id_of(spec)
        previous = self.current_version(job_id)
        proc = self._nomad("job", "run", "-detach", "-", reject=RejectedSpec, stdin=spec.text)
        match = _EVAL_ID_RE.search(proc.stdout)
        if not match:
            raise RejectedSpec("nomad job run printed no evaluation ID", details={"job": job_id})
        index = _MODIFY_INDEX_RE.search(proc.stdout)
        return DeploymentHandle(
            job_id=job_id,
            evaluation_id=match.group(1),
            job_modify_index=int(index.group(1)) if index else 0,
            previous_version=previous,
        )

    def status(self, handle: DeploymentHandle) -> RolloutStatus:
        """Poll the evaluation and, once it completes, its deployment."""
        evaluation = self._json("eval", "status", "-json", handle.evaluation_id, reject=TransportError)
        mapped = evaluation_status(evaluation)
        if mapped is not None:
            return mapped
        deployment = self._json(
            "deployment", "status", "-json", evaluation["DeploymentID"], reject=TransportError
        )
        return deployment_status(deployment)

    def revert(self, handle: DeploymentHandle) -> None:
        """Run ``nomad job revert`` to the previous version."""
        if handle.previous_version is None:
            raise RejectedSpec(f"Job {handle.job_id} has no previous version to revert to")
        self._nomad(
            "job", "revert", "-detach", handle.job_id, str(handle.previous_version),
            reject=RejectedSpec,
        )
