import pytest

from nomadops.core.cluster import (
    deployment_status,
    diff_changes,
    evaluation_status,
    failed_allocations,
    job_id_of,
)
from nomadops.core.errors import InvalidSpec
from nomadops.core.models import JobSpec, RolloutStatus


def test_job_id_of_reads_job_block():
    spec = JobSpec(text='# comment\njob "web-app" {\n  type = "service"\n}\n', image_reference="x")

    assert job_id_of(spec) == "web-app"


def test_job_id_of_without_job_block():
    with pytest.raises(InvalidSpec):
        job_id_of(JobSpec(text='group "web" {}\n', image_reference="x"))


@pytest.mark.parametrize(
    ("evaluation", "expected"),
    [
        ({"Status": "pending"}, RolloutStatus.PENDING),
        ({"Status": "blocked"}, RolloutStatus.PENDING),
        ({"Status": "failed"}, RolloutStatus.FAILED),
        ({"Status": "canceled"}, RolloutStatus.FAILED),
        ({"Status": "complete", "FailedTGAllocs": {"web": {}}}, RolloutStatus.FAILED),
        ({"Status": "complete"}, RolloutStatus.HEALTHY),
        ({"Status": "weird"}, RolloutStatus.UNKNOWN),
        ({}, RolloutStatus.UNKNOWN),
    ],
)
def test_evaluation_status(evaluation, expected):
    assert evaluation_status(evaluation) == expected


def test_evaluation_with_deployment_defers_to_deployment():
    assert evaluation_status({"Status": "complete", "DeploymentID": "d-1"}) is None


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("successful", RolloutStatus.HEALTHY),
        ("running", RolloutStatus.RUNNING),
        ("paused", RolloutStatus.RUNNING),
        ("failed", RolloutStatus.FAILED),
        ("cancelled", RolloutStatus.FAILED),
        ("", RolloutStatus.UNKNOWN),
    ],
)
def test_deployment_status(status, expected):
    assert deployment_status({"Status": status}) == expected


def test_failed_allocations_and_diff_changes():
    assert failed_allocations({"web": {}, "api": {}}) == ("api", "web")
    assert failed_allocations(None) == ()
    assert diff_changes("Edited") is True
    assert diff_changes("None") is False
