"""Common CLI options for the CLI."""

import typer

ConfigOpt = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to nomadops.toml (default: ./nomadops.toml)",
    envvar="NOMADOPS_CONFIG",
)

EnvOpt = typer.Option(
    None,
    "--env",
    "-e",
    help="Target environment from nomadops.toml",
)

JobFileOpt = typer.Option(
    None,
    "--job-file",
    "-j",
    help="Nomad job file (overrides the environment's job_file)",
)

ImageNameOpt = typer.Option(
    None,
    "--image-name",
    help="Image repository, e.g. ghcr.io/org/app",
)

ImageOpt = typer.Option(
    None,
    "--image",
    help="Deploy an already published image reference (skips the build)",
)

ContextOpt = typer.Option(
    None,
    "--context",
    help="Build context directory",
)

DockerfileOpt = typer.Option(
    None,
    "--dockerfile",
    "-f",
    help="Dockerfile path, relative to the build context",
)

PlatformOpt = typer.Option(
    [],
    "--platform",
    help="Target platform (e.g. linux/arm64). This is reusable.",
    show_default=False,
)

TagOpt = typer.Option(
    [],
    "--tag",
    "-t",
    help="Image tag. This is reusable. Defaults to tags derived from git.",
    show_default=False,
)

BuildArgOpt = typer.Option(
    [],
    "--build-arg",
    help="Build argument (key=value). This is reusable.",
    show_default=False,
)

VarOpt = typer.Option(
    [],
    "--var",
    help="Template variable for ${NOMADOPS_<KEY>} (key=value). This is reusable.",
    show_default=False,
)

PushOpt = typer.Option(
    True,
    "--push/--no-push",
    help="Push the image to the registry",
)

TimeoutOpt = typer.Option(
    None,
    "--timeout",
    help="Seconds to wait for the rollout to become healthy",
)

IntervalOpt = typer.Option(
    None,
    "--interval",
    help="Seconds between rollout status polls",
)

PlanOpt = typer.Option(
    None,
    "--plan/--no-plan",
    help="Plan the job before submitting it",
    show_default=False,
)

RevertOpt = typer.Option(
    None,
    "--revert-on-failure/--no-revert-on-failure",
    help="Revert to the previous job version when the rollout fails",
    show_default=False,
)

ConfirmOpt = typer.Option(
    True,
    "--confirm/--no-confirm",
    help="Ask for confirmation before deploying to a protected environment",
)

WatchOpt = typer.Option(
    False,
    "--watch",
    "-w",
    help="Wait until the rollout is healthy or failed",
)

DryRunOpt = typer.Option(
    False,
    "--dry-run",
    help="Validate and plan, but don't submit anything",
)

FromGithubOpt = typer.Option(
    False,
    "--from-github",
    help="Derive environment and tags from GitHub Actions event variables",
)

OutputOpt = typer.Option(
    None,
    "--output",
    "-o",
    help="Write the result to a file instead of stdout",
)

LogLevelOpt = typer.Option(
    "INFO",
    "--log-level",
    help="Log level (DEBUG, INFO, WARNING, ERROR)",
    envvar="NOMADOPS_LOG_LEVEL",
)

LogFormatOpt = typer.Option(
    "console",
    "--log-format",
    help="Log format: console or json",
    envvar="NOMADOPS_LOG_FORMAT",
)


def parse_pairs(values: list[str], what: str) -> dict[str, str]:
    """Parse repeated ``key=value`` options into a dict."""
    pairs: dict[str, str] = {}
    for item in values:
        if "=" not in item:
            raise ValueError(f"Invalid {what}: '{item}' (expected key=value)")
        key, value = item.split("=", 1)
        if not key:
            raise ValueError(f"Invalid {what}: '{item}' (empty key)")
        pairs[key] = value
    return pairs

