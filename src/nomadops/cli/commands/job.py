"""Commands for single Nomad job operations."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from nomadops.cli.commands.rewrite import prepare_template
from nomadops.cli.common.context import build_app_context, make_cluster_client
from nomadops.cli.common.exits import die, exit_from_error
from nomadops.cli.common.options import (
    ConfigOpt,
    EnvOpt,
    ImageNameOpt,
    JobFileOpt,
    TimeoutOpt,
    VarOpt,
    WatchOpt,
)
from nomadops.cli.common.output import out, state_style
from nomadops.core.config import EnvironmentProfile, with_deploy_overrides
from nomadops.core.errors import DeployError
from nomadops.core.models import DeploymentHandle, JobSpec, RolloutStatus
from nomadops.core.orchestrator import wait_for_rollout
from nomadops.core.rewriter import rewrite

app = typer.Typer(
    help="Validate, plan, run and inspect a Nomad job",
    no_args_is_help=True,
)

ImageOpt = typer.Option(
    None,
    "--image",
    help="Substitute this image reference before talking to the cluster",
)


@dataclass
class JobAppContext:
    """Profile and template options shared by the job commands."""

    profile: EnvironmentProfile
    var: list[str]


@app.callback()
def _init(
    ctx: typer.Context,
    config: Path | None = ConfigOpt,
    env: str | None = EnvOpt,
    job_file: Path | None = JobFileOpt,
    image_name: str | None = ImageNameOpt,
    var: list[str] = VarOpt,
):
    """Resolve the environment once per invocation."""
    appctx = build_app_context(config, env, job_file=job_file, image_name=image_name)
    ctx.obj = JobAppContext(profile=appctx.profile, var=var)


def _load_spec(appctx: JobAppContext, image: str | None) -> JobSpec:
    """Return the job spec, rewritten when an image is given."""
    try:
        template = prepare_template(appctx.profile, appctx.var)
        if image:
            return rewrite(template, image, image_name=appctx.profile.image_name or None)
    except ValueError as exc:
        die(str(exc), code=2)
    except DeployError as exc:
        exit_from_error(exc)
    return JobSpec(text=template.text, image_reference="", source=template.path)


@app.command()
def validate(ctx: typer.Context, image: str | None = ImageOpt):
    """
    Validate the job file against the cluster.
    """
    appctx: JobAppContext = ctx.obj
    spec = _load_spec(appctx, image)

    try:
        with make_cluster_client(appctx.profile.cluster) as cluster:
            with out.status("Validating job..."):
                result = cluster.validate(spec)
    except DeployError as exc:
        exit_from_error(exc)

    out.validation(result)


@app.command()
def plan(ctx: typer.Context, image: str | None = ImageOpt):
    """
    Show what running the job would change.
    """
    appctx: JobAppContext = ctx.obj
    spec = _load_spec(appctx, image)

    try:
        with make_cluster_client(appctx.profile.cluster) as cluster:
            with out.status("Planning job..."):
                result = cluster.plan(spec)
    except DeployError as exc:
        exit_from_error(exc)

    out.plan_table(result)
    if result.failed_allocations:
        raise typer.Exit(1)


@app.command()
def run(
    ctx: typer.Context,
    image: str | None = ImageOpt,
    watch: bool = WatchOpt,
    timeout: float | None = TimeoutOpt,
):
    """
    Validate and submit the job.
    """
    appctx: JobAppContext = ctx.obj
    spec = _load_spec(appctx, image)

    try:
        profile = with_deploy_overrides(appctx.profile, health_timeout=timeout)
        with make_cluster_client(profile.cluster) as cluster:
            with out.status("Validating job..."):
                cluster.validate(spec)
            with out.status("Submitting job..."):
                handle = cluster.run(spec)
            out.success(f"Job '{handle.job_id}' submitted")
            out.kv({"evaluation": handle.evaluation_id, "previous version": handle.previous_version})

            if watch:
                with out.status("Waiting for rollout..."):
                    wait_for_rollout(cluster, handle, profile.deploy)
                out.success(f"Job '{handle.job_id}' is healthy")
    except DeployError as exc:
        exit_from_error(exc)


@app.command()
def status(
    ctx: typer.Context,
    job_id: str = typer.Argument(..., help="Job ID"),
    evaluation_id: str = typer.Argument(..., help="Evaluation ID returned by run"),
):
    """
    Poll a submitted job's rollout once.
    """
    appctx: JobAppContext = ctx.obj
    handle = DeploymentHandle(job_id=job_id, evaluation_id=evaluation_id)

    try:
        with make_cluster_client(appctx.profile.cluster) as cluster:
            result = cluster.status(handle)
    except DeployError as exc:
        exit_from_error(exc)

    style = state_style(result.value)
    out.print(f"{job_id}: [{style}]{result.value}[/{style}]")
    if result == RolloutStatus.FAILED:
        raise typer.Exit(1)
