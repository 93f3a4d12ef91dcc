import json
import os
import shlex
import subprocess

import pytest

from nomadops.core.adapters import nomadssh
from nomadops.core.adapters.nomadssh import NomadSshClient
from nomadops.core.config import ClusterConfig
from nomadops.core.errors import ConfigError, InvalidSpec, RejectedSpec, TransportError
from nomadops.core.models import DeploymentHandle, JobSpec, RolloutStatus

SPEC = JobSpec(text='job "app" {\n}\n', image_reference="ghcr.io/org/app:sha-abc1234")


def _config(**kwargs) -> ClusterConfig:
    values = {"transport": "ssh", "ssh_host": "bastion", "ssh_user": "deploy"}
    values.update(kwargs)
    return ClusterConfig(**values)


class _Remote:
    """Fake ssh: answers by the nomad subcommand of the remote command line."""

    def __init__(self, answers: dict):
        self.answers = answers
        self.calls: list[tuple[list[str], str | None]] = []

    def __call__(self, cmd, input=None, **kwargs):
        self.calls.append((cmd, input))
        remote = shlex.split(cmd[-1])
        nomad_at = remote.index("nomad")
        key = " ".join(remote[nomad_at + 1 : nomad_at + 3])
        returncode, stdout, stderr = self.answers[key]
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


def test_command_wraps_nomad_with_env_and_flags():
    client = NomadSshClient(
        _config(address="http://10.0.0.1:4646", token="t0k", namespace="apps", ssh_port=2222, ssh_key_path="/k")
    )

    cmd = client.command("job", "run", "-detach", "-")

    assert cmd[:5] == ["ssh", "-o", "BatchMode=yes", "-o", "StrictHostKeyChecking=accept-new"]
    assert cmd[cmd.index("-p") + 1] == "2222"
    assert cmd[cmd.index("-i") + 1] == "/k"
    assert cmd[-2] == "deploy@bastion"
    remote = shlex.split(cmd[-1])
    assert "t0k" not in " ".join(cmd)
    assert remote[:2] == ["sh", "-c"]
    assert remote[remote.index("env") :] == [
        "env",
        "NOMAD_ADDR=http://10.0.0.1:4646",
        "nomad",
        "job",
        "run",
        "-namespace=apps",
        "-detach",
        "-",
    ]


def test_key_material_is_written_and_removed():
    client = NomadSshClient(_config(ssh_key="-----BEGIN KEY-----\nabc\n-----END KEY-----"))
    path = client.key_path

    assert path is not None and os.path.exists(path)
    assert oct(os.stat(path).st_mode & 0o777) == "0o600"
    client.close()
    assert not os.path.exists(path)


def test_requires_host_and_user():
    with pytest.raises(ConfigError, match="ssh_host and ssh_user"):
        NomadSshClient(ClusterConfig(transport="ssh"))


def test_validate_sends_spec_on_stdin_and_collects_warnings(monkeypatch):
    stdout = "Job validation successful\nJob Warnings:\n* Group \"web\" has no checks\n"
    remote = _Remote({"job validate": (0, stdout, "")})
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    result = NomadSshClient(_config()).validate(SPEC)

    assert result.job_id == "app"
    assert result.warnings == ('Group "web" has no checks',)
    assert remote.calls[0][1] == SPEC.text


def test_token_is_sent_as_first_stdin_line(monkeypatch):
    remote = _Remote({"job validate": (0, "Job validation successful\n", "")})
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    NomadSshClient(_config(token="t0k")).validate(SPEC)

    cmd, stdin = remote.calls[0]
    assert "t0k" not in " ".join(cmd)
    assert stdin == "t0k\n" + SPEC.text


def test_validate_failure_is_invalid_spec(monkeypatch):
    remote = _Remote({"job validate": (1, "", "Error getting job struct: bad HCL")})
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    with pytest.raises(InvalidSpec, match="bad HCL"):
        NomadSshClient(_config()).validate(SPEC)


def test_ssh_failure_is_transport_error(monkeypatch):
    remote = _Remote({"job validate": (255, "", "Connection refused")})
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    with pytest.raises(TransportError, match="Connection refused"):
        NomadSshClient(_config()).validate(SPEC)


def test_plan_exit_code_one_means_changes(monkeypatch):
    stdout = (
        '+/- Job: "app"\n'
        '+/- Task Group: "web" (1 create/destroy update)\n\n'
        'Scheduler dry-run:\n- WARNING: Failed to place all allocations.\n'
        '  Task Group "web" (failed to place 1 allocation):\n\n'
        "Job Modify Index: 17\n"
    )
    remote = _Remote({"job plan": (1, stdout, "")})
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    plan = NomadSshClient(_config()).plan(SPEC)

    assert plan.diff_type == "Edited"
    assert plan.changes is True
    assert plan.failed_allocations == ("web",)
    assert plan.job_modify_index == 17


def test_plan_error_exit_255_is_rejected_spec(monkeypatch):
    stderr = 'Error during plan: Unexpected response code: 500 (1 error occurred:\n\t* group "web" has no tasks\n)\n'
    remote = _Remote({"job plan": (255, "", stderr)})
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    with pytest.raises(RejectedSpec, match="Error during plan"):
        NomadSshClient(_config()).plan(SPEC)


def test_run_parses_evaluation_and_previous_version(monkeypatch):
    remote = _Remote(
        {
            "job inspect": (0, json.dumps({"Job": {"ID": "app", "Version": 2}}), ""),
            "job run": (0, "Job registration successful\nEvaluation ID: 8f1e-22\n", ""),
        }
    )
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    handle = NomadSshClient(_config()).run(SPEC)

    assert handle.evaluation_id == "8f1e-22"
    assert handle.previous_version == 2


def test_run_new_job(monkeypatch):
    remote = _Remote(
        {
            "job inspect": (1, "", 'No job(s) with prefix or id "app" found\n'),
            "job run": (0, "Evaluation ID: e-1\n", ""),
        }
    )
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    assert NomadSshClient(_config()).run(SPEC).previous_version is None


def test_run_new_job_not_found_message(monkeypatch):
    remote = _Remote(
        {
            "job inspect": (1, "", "Error: job not found\n"),
            "job run": (0, "Evaluation ID: e-1\n", ""),
        }
    )
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    assert NomadSshClient(_config()).run(SPEC).previous_version is None


def test_status_reads_evaluation_then_deployment(monkeypatch):
    remote = _Remote(
        {
            "eval status": (0, json.dumps({"Status": "complete", "DeploymentID": "d-1"}), ""),
            "deployment status": (0, json.dumps({"Status": "successful"}), ""),
        }
    )
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    status = NomadSshClient(_config()).status(DeploymentHandle(job_id="app", evaluation_id="e-1"))

    assert status == RolloutStatus.HEALTHY


def test_status_read_failure_is_transport_error(monkeypatch):
    remote = _Remote({"eval status": (1, "", "Error querying evaluation: No cluster leader\n")})
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    with pytest.raises(TransportError, match="No cluster leader"):
        NomadSshClient(_config()).status(DeploymentHandle(job_id="app", evaluation_id="e-1"))


def test_revert_runs_job_revert(monkeypatch):
    remote = _Remote({"job revert": (0, "", "")})
    monkeypatch.setattr(nomadssh.subprocess, "run", remote)

    NomadSshClient(_config()).revert(DeploymentHandle(job_id="app", evaluation_id="e-1", previous_version=5))

    assert shlex.split(remote.calls[0][0][-1])[-3:] == ["-detach", "app", "5"]


def test_revert_without_previous_version():
    with pytest.raises(RejectedSpec):
        NomadSshClient(_config()).revert(DeploymentHandle(job_id="app", evaluation_id="e-1"))
