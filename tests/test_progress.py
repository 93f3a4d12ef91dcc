from nomadops.cli.common.progress import DeployProgress, _status_label
from nomadops.core.models import AttemptState, DeploymentAttempt, RolloutStatus


def test_status_label_only_while_polling():
    assert _status_label(AttemptState.VALIDATING, RolloutStatus.RUNNING, 2) == "-"
    assert _status_label(AttemptState.POLLING, None, 0) == "-"
    assert _status_label(AttemptState.POLLING, RolloutStatus.RUNNING, 2) == "RUNNING (poll 2)"


def test_deploy_progress_tracks_stage_and_polls():
    tracker = DeployProgress("staging: app.hcl")
    attempt = DeploymentAttempt(attempt_id="a1", environment="staging", state=AttemptState.POLLING)

    tracker.on_transition(attempt, AttemptState.POLLING)
    tracker.on_status(attempt, RolloutStatus.PENDING)
    tracker.on_status(attempt, RolloutStatus.RUNNING)
    tracker.on_transition(attempt, AttemptState.HEALTHY)

    task = tracker.progress.tasks[0]
    assert tracker.polls == 2
    assert task.fields["stage"] == "HEALTHY"
    assert task.fields["style"] == "ok"
    assert task.finished
