import json

import httpx
import pytest

from nomadops.core.adapters.nomadhttp import NomadHttpClient
from nomadops.core.config import ClusterConfig, DeployConfig
from nomadops.core.errors import InvalidSpec, RejectedSpec, TransportError
from nomadops.core.models import DeploymentHandle, JobSpec, RolloutStatus
from nomadops.core.orchestrator import wait_for_rollout

SPEC = JobSpec(text='job "app" {}\n', image_reference="ghcr.io/org/app:sha-abc1234")


class _Nomad:
    """Minimal fake of the Nomad HTTP API keyed by (method, path)."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, text="not found")
        answer = self.routes[key]
        if isinstance(answer, list):
            answer = answer.pop(0)
        status, body = answer
        return httpx.Response(status, json=body)


def _client(routes: dict, **config) -> tuple[NomadHttpClient, _Nomad]:
    fake = _Nomad(routes)
    cfg = ClusterConfig(address="http://nomad:4646", **config)
    return NomadHttpClient(cfg, transport=httpx.MockTransport(fake)), fake


PARSE = {("POST", "/v1/jobs/parse"): (200, {"ID": "app", "Name": "app"})}


def test_validate_sends_token_namespace_and_parsed_job():
    routes = {**PARSE, ("POST", "/v1/validate/job"): (200, {"Warnings": "w1\nw2\n"})}
    client, fake = _client(routes, token="secret", namespace="apps")

    result = client.validate(SPEC)

    assert result.job_id == "app"
    assert result.warnings == ("w1", "w2")
    parse_req, validate_req = fake.requests
    assert parse_req.headers["X-Nomad-Token"] == "secret"
    assert parse_req.url.params["namespace"] == "apps"
    assert json.loads(parse_req.content) == {"JobHCL": SPEC.text, "Canonicalize": True}
    assert json.loads(validate_req.content) == {"Job": {"ID": "app", "Name": "app"}}


def test_validate_reports_validation_errors():
    routes = {**PARSE, ("POST", "/v1/validate/job"): (200, {"ValidationErrors": ["bad count"]})}
    client, _ = _client(routes)

    with pytest.raises(InvalidSpec, match="bad count"):
        client.validate(SPEC)


def test_parse_failure_is_invalid_spec():
    client, _ = _client({("POST", "/v1/jobs/parse"): (400, {"error": "syntax"})})

    with pytest.raises(InvalidSpec, match="HTTP 400"):
        client.validate(SPEC)


def test_parse_is_cached_per_spec_text():
    routes = {
        **PARSE,
        ("POST", "/v1/validate/job"): (200, {}),
        ("POST", "/v1/job/app/plan"): (200, {"Diff": {"Type": "None"}}),
    }
    client, fake = _client(routes)

    client.validate(SPEC)
    client.plan(SPEC)

    assert [r.url.path for r in fake.requests].count("/v1/jobs/parse") == 1


def test_plan_maps_diff_and_failed_allocations():
    routes = {
        **PARSE,
        ("POST", "/v1/job/app/plan"): (
            200,
            {"Diff": {"Type": "Edited"}, "FailedTGAllocs": {"web": {}}, "JobModifyIndex": 42},
        ),
    }
    client, _ = _client(routes)

    plan = client.plan(SPEC)

    assert plan.diff_type == "Edited"
    assert plan.changes is True
    assert plan.failed_allocations == ("web",)
    assert plan.job_modify_index == 42


def test_run_records_previous_version():
    routes = {
        **PARSE,
        ("GET", "/v1/job/app"): (200, {"ID": "app", "Version": 4}),
        ("POST", "/v1/jobs"): (200, {"EvalID": "e-1", "JobModifyIndex": 7}),
    }
    client, _ = _client(routes)

    handle = client.run(SPEC)

    assert handle == DeploymentHandle(job_id="app", evaluation_id="e-1", job_modify_index=7, previous_version=4)


def test_run_new_job_has_no_previous_version():
    routes = {**PARSE, ("POST", "/v1/jobs"): (200, {"EvalID": "e-1"})}
    client, _ = _client(routes)

    assert client.run(SPEC).previous_version is None


def test_run_rejected():
    routes = {**PARSE, ("POST", "/v1/jobs"): (403, {"error": "Permission denied"})}
    client, _ = _client(routes)

    with pytest.raises(RejectedSpec, match="HTTP 403"):
        client.run(SPEC)


def test_status_follows_evaluation_to_deployment():
    routes = {
        ("GET", "/v1/evaluation/e-1"): (200, {"Status": "complete", "DeploymentID": "d-1"}),
        ("GET", "/v1/deployment/d-1"): (200, {"Status": "running"}),
    }
    client, _ = _client(routes)

    assert client.status(DeploymentHandle(job_id="app", evaluation_id="e-1")) == RolloutStatus.RUNNING


def test_status_pending_evaluation_skips_deployment():
    routes = {("GET", "/v1/evaluation/e-1"): (200, {"Status": "pending"})}
    client, fake = _client(routes)

    assert client.status(DeploymentHandle(job_id="app", evaluation_id="e-1")) == RolloutStatus.PENDING
    assert len(fake.requests) == 1


def test_status_server_error_is_transport_error():
    routes = {("GET", "/v1/evaluation/e-1"): (500, "No cluster leader")}
    client, _ = _client(routes)

    with pytest.raises(TransportError, match="No cluster leader"):
        client.status(DeploymentHandle(job_id="app", evaluation_id="e-1"))


def test_rollout_survives_one_status_server_error():
    routes = {
        ("GET", "/v1/evaluation/e-1"): [
            (500, "No cluster leader"),
            (200, {"Status": "complete", "DeploymentID": "d-1"}),
        ],
        ("GET", "/v1/deployment/d-1"): (200, {"Status": "successful"}),
    }
    client, fake = _client(routes)
    handle = DeploymentHandle(job_id="app", evaluation_id="e-1")

    status = wait_for_rollout(client, handle, DeployConfig(max_poll_errors=3), sleep=lambda _: None)

    assert status == RolloutStatus.HEALTHY
    assert len(fake.requests) == 3


def test_connection_error_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = NomadHttpClient(ClusterConfig(), transport=httpx.MockTransport(handler))

    with pytest.raises(TransportError, match="Cannot reach Nomad"):
        client.status(DeploymentHandle(job_id="app", evaluation_id="e-1"))


def test_revert_posts_previous_version():
    routes = {("POST", "/v1/job/app/revert"): (200, {"EvalID": "e-2"})}
    client, fake = _client(routes)

    client.revert(DeploymentHandle(job_id="app", evaluation_id="e-1", previous_version=3))

    assert json.loads(fake.requests[0].content) == {"JobID": "app", "JobVersion": 3}


def test_revert_without_previous_version():
    client, fake = _client({})

    with pytest.raises(RejectedSpec):
        client.revert(DeploymentHandle(job_id="app", evaluation_id="e-1"))
    assert fake.requests == []
