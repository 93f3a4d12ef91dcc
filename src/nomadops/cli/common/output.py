"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Mapping

import questionary
from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from nomadops.cli.common.tui_style import QUESTIONARY_STYLE_CONFIRM
from nomadops.core.models import BuildResult, DeploymentAttempt, Plan, ValidationResult

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)


def state_style(value: str) -> str:
    """Return the theme style for an attempt state or rollout status value."""
    if value == "HEALTHY":
        return "ok"
    if value == "FAILED":
        return "err"
    if value in ("UNKNOWN", "INIT"):
        return "meta"
    return "warn"


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def _q_try(self, fn, *args, **kwargs):
        """Call questionary prompts and drop unsupported kwargs on older versions."""
        try:
            return fn(*args, **kwargs)
        except TypeError:
            for k in ("pointer", "auto_enter"):
                kwargs.pop(k, None)
            return fn(*args, **kwargs)

    def _q(self, message: str) -> str:
        """Prefix Questionary prompts so they stand out from log output."""
        return f"[nomadops] {message}"

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {msg}", highlight=False)

    def print(self, msg: str) -> None:
        """Print a raw Rich-formatted message to the console."""
        console.print(msg)

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs, skipping None values."""
        for k, v in items.items():
            if v is None:
                continue
            console.print(f"[meta]{k}[/]: {v}")

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """
        Ask the user for confirmation using a standardized Questionary prompt.

        Args:
            message: Confirmation question shown to the user.
            default: Default answer if the user just presses enter.

        Returns:
            True if the user confirms, False otherwise.
        """
        console.print("[meta]Use y/n then Enter[/]")

        prompt = self._q_try(
            questionary.confirm,
            self._q(message),
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="✦",
            auto_enter=False,
        )
        return bool(prompt.ask())

    def build_table(self, result: BuildResult, title: str = "Image") -> None:
        """Render the references and digest of a build."""
        t = Table(title=title, show_lines=False)
        t.add_column("Reference", style="ok")
        t.add_column("Digest", style="meta", no_wrap=True)

        for ref in result.tags:
            t.add_row(ref, result.digest)

        console.print(t)
        if not result.pushed:
            self.warn("Image was built locally and not pushed")

    def validation(self, result: ValidationResult) -> None:
        """Print a validation outcome with its warnings."""
        self.success(f"Job '{result.job_id}' is valid")
        for warning in result.warnings:
            self.warn(warning)

    def plan_table(self, plan: Plan, title: str = "Plan") -> None:
        """Render a job plan."""
        t = Table(title=title, show_lines=False)
        t.add_column("Job", style="ok", no_wrap=True)
        t.add_column("Diff")
        t.add_column("Changes")
        t.add_column("Unplaced groups", style="err")

        t.add_row(
            plan.job_id,
            plan.diff_type,
            "yes" if plan.changes else "no",
            ", ".join(plan.failed_allocations),
        )
        console.print(t)
        for warning in plan.warnings:
            self.warn(warning)

    def attempt_table(self, attempt: DeploymentAttempt, title: str = "Deployment") -> None:
        """Render the transitions of a deployment attempt and its outcome."""
        t = Table(title=f"{title} {attempt.attempt_id} → {attempt.environment}", show_lines=False)
        t.add_column("State", no_wrap=True)
        t.add_column("At", style="meta", no_wrap=True)

        for state, at in attempt.transitions:
            style = state_style(state.value)
            t.add_row(f"[{style}]{state.value}[/{style}]", at.strftime("%H:%M:%S"))

        console.print(t)
        self.kv(
            {
                "image": attempt.job_spec.image_reference if attempt.job_spec else None,
                "digest": attempt.build.digest if attempt.build else None,
                "job": attempt.handle.job_id if attempt.handle else None,
                "evaluation": attempt.handle.evaluation_id if attempt.handle else None,
                "reverted": "yes" if attempt.reverted else None,
            }
        )


out = Out()
