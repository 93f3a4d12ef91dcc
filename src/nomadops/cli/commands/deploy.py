"""Command running the full build, rewrite, validate, run and health pipeline."""

from __future__ import annotations

import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from nomadops.cli.commands.build import git_tags, make_build_request
from nomadops.cli.commands.rewrite import prepare_template
from nomadops.cli.common.context import build_app_context, load_all_profiles, make_cluster_client
from nomadops.cli.common.exits import EXIT_FAILED, die, exit_from_error, ok_exit
from nomadops.cli.common.options import (
    BuildArgOpt,
    ConfigOpt,
    ConfirmOpt,
    DryRunOpt,
    EnvOpt,
    FromGithubOpt,
    ImageNameOpt,
    ImageOpt,
    IntervalOpt,
    JobFileOpt,
    PlanOpt,
    PlatformOpt,
    PushOpt,
    RevertOpt,
    TagOpt,
    TimeoutOpt,
    VarOpt,
)
from nomadops.cli.common.output import out
from nomadops.cli.common.progress import deploy_progress
from nomadops.core.adapters.buildx import BuildxBackend
from nomadops.core.builder import build_image
from nomadops.core.config import with_deploy_overrides
from nomadops.core.errors import DeployError
from nomadops.core.orchestrator import Orchestrator
from nomadops.core.triggers import PipelineInvocation, from_github_env, resolve_trigger


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """
    Turn Ctrl-C into a cancel event for the duration of the block.

    The orchestrator stops at its next check; the rollout already
    submitted to the cluster keeps going.
    """
    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _handler(signum, frame):
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _github_invocation(config: Path | None, env: str | None) -> tuple[PipelineInvocation, str | None]:
    """
    Resolve the GitHub Actions event to an invocation.

    Returns the invocation and the environment whose profile drives the
    build: the trigger's target, else ``--env``, else the first profile.
    """
    try:
        profiles = load_all_profiles(config)
        names = list(profiles) or [env or "default"]
        invocation = resolve_trigger(**from_github_env(), environments=names)
    except DeployError as exc:
        exit_from_error(exc)
    return invocation, invocation.environment or env or (names[0] if profiles else None)


def deploy(
    config: Path | None = ConfigOpt,
    env: str | None = EnvOpt,
    job_file: Path | None = JobFileOpt,
    image_name: str | None = ImageNameOpt,
    image: str | None = ImageOpt,
    platform: list[str] = PlatformOpt,
    tag: list[str] = TagOpt,
    build_arg: list[str] = BuildArgOpt,
    var: list[str] = VarOpt,
    push: bool = PushOpt,
    timeout: float | None = TimeoutOpt,
    interval: float | None = IntervalOpt,
    plan: bool | None = PlanOpt,
    revert_on_failure: bool | None = RevertOpt,
    confirm: bool = ConfirmOpt,
    dry_run: bool = DryRunOpt,
    from_github: bool = FromGithubOpt,
):
    """
    Build the image, rewrite the job file, then validate, run and watch the job.
    """
    if image is not None and not image.strip():
        die("--image must not be empty", code=2)

    invocation = None
    if from_github:
        invocation, env = _github_invocation(config, env)
        if invocation.environment is None:
            appctx = build_app_context(config, env, job_file=job_file, image_name=image_name)
            _build_only(appctx.profile, invocation, platform, build_arg)
            ok_exit(f"No deployment for {invocation.event} on {invocation.ref or 'HEAD'}")
        push = push and invocation.push

    appctx = build_app_context(config, env, job_file=job_file, image_name=image_name)

    try:
        profile = with_deploy_overrides(
            appctx.profile,
            health_timeout=timeout,
            poll_interval=interval,
            plan_first=plan,
            revert_on_failure=revert_on_failure,
        )
        template = prepare_template(profile, var)

        build_request = None
        if image is None:
            if not profile.image_name:
                die(f"Environment '{profile.name}' has no image_name; pass --image-name or --image", code=2)
            if not push:
                die("Deploying requires a pushed image; use --push or --image", code=2)
            if tag:
                tags = tuple(tag)
            elif invocation is not None:
                tags = invocation.tags
            else:
                tags = git_tags(profile.context)
            build_request = make_build_request(
                profile,
                tags=tags,
                push=push,
                platforms=platform,
                build_args=build_arg,
            )
    except ValueError as exc:
        die(str(exc), code=2)
    except DeployError as exc:
        exit_from_error(exc)

    if profile.protected and confirm and not dry_run:
        if not sys.stdin.isatty():
            die(f"'{profile.name}' is protected; pass --no-confirm to deploy non-interactively", code=2)
        if not out.confirm(f"Deploy to protected environment '{profile.name}'?"):
            ok_exit("Cancelled")

    label = f"{profile.name}: {profile.job_file.name if profile.job_file else 'job'}"
    try:
        with make_cluster_client(profile.cluster) as cluster, cancel_on_interrupt() as cancel:
            with deploy_progress(label) as tracker:
                orchestrator = Orchestrator(
                    cluster,
                    profile.deploy,
                    builder=BuildxBackend(),
                    on_status=tracker.on_status,
                    on_transition=tracker.on_transition,
                )
                attempt = orchestrator.deploy(
                    template,
                    environment=profile.name,
                    build_request=build_request,
                    image_reference=image,
                    image_name=profile.image_name or None,
                    cancel=cancel,
                    dry_run=dry_run,
                )
    except DeployError as exc:
        exit_from_error(exc)

    out.attempt_table(attempt)
    if attempt.plan is not None:
        out.plan_table(attempt.plan)

    if attempt.failure is not None:
        die(str(attempt.failure), code=EXIT_FAILED)
    if attempt.dry_run:
        ok_exit("Dry-run enabled: nothing was submitted")
    out.success(f"Deployed {attempt.job_spec.image_reference} to {profile.name}")


def _build_only(profile, invocation: PipelineInvocation, platform: list[str], build_arg: list[str]) -> None:
    """Build (and push when the trigger allows it) without deploying."""
    if not profile.image_name:
        die(f"Environment '{profile.name}' has no image_name; pass --image-name", code=2)
    try:
        request = make_build_request(
            profile,
            tags=invocation.tags,
            push=invocation.push,
            platforms=platform,
            build_args=build_arg,
        )
        with out.status(f"Building {request.image_name}..."):
            result = build_image(BuildxBackend(), request)
    except ValueError as exc:
        die(str(exc), code=2)
    except DeployError as exc:
        exit_from_error(exc)
    out.build_table(result)
