"""Progress display for a deployment attempt."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from rich.console import Console
from rich.live import Live
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from nomadops.cli.common.output import state_style
from nomadops.core.models import AttemptState, DeploymentAttempt, RolloutStatus

console = Console()
_MAX_LABEL_WIDTH = 48


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _status_label(state: AttemptState, status: RolloutStatus | None, polls: int) -> str:
    """
    Render the status column.

    Before polling only the stage is known; while polling the last
    rollout status and the number of polls are shown.
    """
    if state != AttemptState.POLLING or status is None:
        return "-"
    return f"{status.value} (poll {polls})"


class DeployProgress:
    """Live spinner row following an attempt's stages and rollout polls."""

    def __init__(self, label: str):
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[label]}[/]"),
            TextColumn("stage=[{task.fields[style]}]{task.fields[stage]}[/{task.fields[style]}]"),
            TextColumn("rollout={task.fields[rollout]}"),
            TimeElapsedColumn(),
            console=console,
        )
        self.polls = 0
        self.status: RolloutStatus | None = None
        self.task_id = self.progress.add_task(
            "",
            total=1,
            label=_truncate(label, _MAX_LABEL_WIDTH),
            stage=AttemptState.INIT.value,
            style=state_style(AttemptState.INIT.value),
            rollout="-",
        )

    def on_transition(self, attempt: DeploymentAttempt, state: AttemptState) -> None:
        """Orchestrator hook: a new stage started."""
        fields = {
            "stage": state.value,
            "style": state_style(state.value),
            "rollout": _status_label(state, self.status, self.polls),
        }
        if state.terminal:
            self.progress.update(self.task_id, completed=1, **fields)
        else:
            self.progress.update(self.task_id, **fields)

    def on_status(self, attempt: DeploymentAttempt, status: RolloutStatus) -> None:
        """Orchestrator hook: one rollout poll finished."""
        self.polls += 1
        self.status = status
        self.progress.update(
            self.task_id,
            rollout=_status_label(attempt.state, status, self.polls),
        )


@contextmanager
def deploy_progress(label: str) -> Iterator[DeployProgress]:
    """Show a transient live progress row while an attempt runs."""
    tracker = DeployProgress(label)
    with Live(tracker.progress, console=console, refresh_per_second=10, transient=True):
        yield tracker
