"""Terminal UI utilities for nomadops."""

from __future__ import annotations

import questionary

from nomadops.cli.common.tui_style import QUESTIONARY_STYLE_SELECT
from nomadops.core.config import EnvironmentProfile

_MAX_ENV_NAME_WIDTH = 32


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _environment_choice_title(profile: EnvironmentProfile, *, name_width: int) -> str:
    """Format one environment as `<name>  <job file> [protected]` with aligned columns."""
    short_name = _truncate(profile.name, _MAX_ENV_NAME_WIDTH)
    title = f"{short_name.ljust(name_width)}  {profile.job_file}"
    if profile.protected:
        title = f"{title}  [protected]"
    return title


def select_environment(profiles: list[EnvironmentProfile]) -> EnvironmentProfile | None:
    """Display a radio prompt to select one environment.

    Args:
        profiles: Environment profiles to choose from.

    Returns:
        The selected profile, or None if the prompt was cancelled.
    """
    shown_names = [_truncate(p.name, _MAX_ENV_NAME_WIDTH) for p in profiles]
    name_width = max((len(name) for name in shown_names), default=0)

    choices = [
        questionary.Choice(
            title=_environment_choice_title(profile, name_width=name_width),
            value=profile,
        )
        for profile in profiles
    ]

    return questionary.select(
        "Select environment:",
        choices=choices,
        style=QUESTIONARY_STYLE_SELECT,
    ).ask()
