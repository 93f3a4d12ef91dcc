"""Application context management for the CLI."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path

from nomadops.cli.common.exits import die, exit_from_error
from nomadops.core.adapters.nomadhttp import NomadHttpClient
from nomadops.core.adapters.nomadssh import NomadSshClient
from nomadops.core.config import (
    ClusterConfig,
    EnvironmentProfile,
    build_profile,
    find_config_path,
    get_profile,
    load_profiles,
)
from nomadops.core.errors import ConfigError


@dataclass
class AppContext:
    """Resolved environment profile plus the profiles it was chosen from."""

    profile: EnvironmentProfile
    profiles: dict[str, EnvironmentProfile]


def make_cluster_client(config: ClusterConfig) -> NomadHttpClient | NomadSshClient:
    """Return the cluster client for the configured transport."""
    if config.transport == "ssh":
        return NomadSshClient(config)
    return NomadHttpClient(config)


def load_all_profiles(config_path: Path | None) -> dict[str, EnvironmentProfile]:
    """Load profiles from the config file, or return {} when there is none."""
    path = find_config_path(config_path)
    if path is None:
        return {}
    return load_profiles(path)


def _pick_environment(profiles: dict[str, EnvironmentProfile]) -> EnvironmentProfile:
    """Choose a profile when --env was not given."""
    if len(profiles) == 1:
        return next(iter(profiles.values()))
    if not sys.stdin.isatty():
        die(f"Several environments configured; pass --env ({', '.join(sorted(profiles))})", code=2)

    # Imported lazily: questionary pulls in prompt_toolkit.
    from nomadops.cli.tui import select_environment

    picked = select_environment(list(profiles.values()))
    if picked is None:
        die("No environment selected", code=2)
    return picked


def build_app_context(
    config_path: Path | None,
    env: str | None,
    *,
    job_file: Path | None = None,
    image_name: str | None = None,
) -> AppContext:
    """
    Resolve the environment profile for a command.

    With a config file the profile comes from ``--env`` (or a prompt);
    without one, ``--image-name`` (and ``--job-file`` for cluster commands)
    describe an ad-hoc environment whose cluster settings come from NOMAD_*
    variables.

    Args:
        config_path: Explicit ``--config`` value.
        env: ``--env`` value.
        job_file: Overrides the profile's job file.
        image_name: Overrides the profile's image name.

    Returns:
        AppContext: the chosen profile and all loaded profiles.
    """
    try:
        profiles = load_all_profiles(config_path)
        if profiles:
            profile = get_profile(profiles, env) if env else _pick_environment(profiles)
        else:
            if not (image_name or job_file):
                die("No nomadops.toml found; pass --image-name and/or --job-file", code=2)
            profile = build_profile(env or "default", {}, os.environ)
            profiles = {profile.name: profile}
    except ConfigError as exc:
        exit_from_error(exc)

    if job_file is not None:
        profile = replace(profile, job_file=job_file)
    if image_name is not None:
        profile = replace(profile, image_name=image_name)
    return AppContext(profile=profile, profiles=profiles)


def require_job_file(profile: EnvironmentProfile) -> Path:
    """Return the profile's job file or exit when none is configured."""
    if profile.job_file is None:
        die(f"Environment '{profile.name}' has no job_file; pass --job-file", code=2)
    return profile.job_file
