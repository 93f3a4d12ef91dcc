"""CLI application for building and deploying Nomad jobs."""

import typer

from nomadops.cli.commands.build import build
from nomadops.cli.commands.deploy import deploy
from nomadops.cli.commands.job import app as job_app
from nomadops.cli.commands.rewrite import rewrite
from nomadops.cli.common.exits import EXIT_CONFIG, die
from nomadops.cli.common.options import LogFormatOpt, LogLevelOpt
from nomadops.core.logging import configure_logging

app = typer.Typer(
    help="nomadops - build, rewrite and deploy Nomad jobs",
    no_args_is_help=True,
)


@app.callback()
def _main(
    log_level: str = LogLevelOpt,
    log_format: str = LogFormatOpt,
):
    """Configure logging for every command."""
    try:
        configure_logging(log_level, log_format)
    except ValueError as exc:
        die(str(exc), code=EXIT_CONFIG)


app.command("build", help="Build the image for all platforms and push it.")(build)
app.command("rewrite", help="Print the job file with its image reference replaced.")(rewrite)
app.add_typer(job_app, name="job")
app.command("deploy", help="Run the full build, validate, run and health pipeline.")(deploy)


if __name__ == "__main__":
    app()
