"""Command for rendering a job file with a new image reference."""

from __future__ import annotations

from pathlib import Path

import typer

from nomadops.cli.common.context import build_app_context, require_job_file
from nomadops.cli.common.exits import die, exit_from_error
from nomadops.cli.common.options import (
    ConfigOpt,
    EnvOpt,
    ImageNameOpt,
    JobFileOpt,
    OutputOpt,
    VarOpt,
    parse_pairs,
)
from nomadops.cli.common.output import out
from nomadops.core.config import EnvironmentProfile
from nomadops.core.errors import DeployError
from nomadops.core.models import JobTemplate
from nomadops.core.rewriter import load_template, render_variables
from nomadops.core.rewriter import rewrite as core_rewrite


def prepare_template(profile: EnvironmentProfile, var: list[str] | None = None) -> JobTemplate:
    """
    Load the profile's job file and fill in ``${NOMADOPS_*}`` variables.

    ``ENVIRONMENT`` is always set to the profile name; profile variables
    and then ``--var`` values override it.
    """
    variables = {"ENVIRONMENT": profile.name, **profile.variables}
    variables.update(parse_pairs(var or [], "variable"))
    return render_variables(load_template(require_job_file(profile)), variables)


def rewrite(
    image: str = typer.Option(..., "--image", help="Image reference to substitute"),
    config: Path | None = ConfigOpt,
    env: str | None = EnvOpt,
    job_file: Path | None = JobFileOpt,
    image_name: str | None = ImageNameOpt,
    var: list[str] = VarOpt,
    output: Path | None = OutputOpt,
):
    """
    Print the job file with its image reference replaced.
    """
    appctx = build_app_context(config, env, job_file=job_file, image_name=image_name)
    profile = appctx.profile

    try:
        template = prepare_template(profile, var)
        spec = core_rewrite(template, image, image_name=profile.image_name or None)
    except ValueError as exc:
        die(str(exc), code=2)
    except DeployError as exc:
        exit_from_error(exc)

    if output is None:
        typer.echo(spec.text, nl=False)
        return
    output.write_text(spec.text, encoding="utf-8")
    out.success(f"Wrote {output} ({spec.image_reference})")
