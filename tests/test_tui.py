from pathlib import Path

from nomadops.cli.tui import _MAX_ENV_NAME_WIDTH, _environment_choice_title, _truncate
from nomadops.core.config import EnvironmentProfile


def test_environment_choice_title_aligns_job_file_column():
    first = _environment_choice_title(
        EnvironmentProfile(name="staging", job_file=Path("deploy/app.hcl")),
        name_width=12,
    )
    second = _environment_choice_title(
        EnvironmentProfile(name="prod", job_file=Path("deploy/app.hcl")),
        name_width=12,
    )

    assert first.startswith("staging")
    assert second.startswith("prod")
    assert first.index("deploy/") == second.index("deploy/")


def test_environment_choice_title_marks_protected_and_truncates():
    long_name = "x" * (_MAX_ENV_NAME_WIDTH + 10)
    rendered = _environment_choice_title(
        EnvironmentProfile(name=long_name, job_file=Path("app.hcl"), protected=True),
        name_width=_MAX_ENV_NAME_WIDTH,
    )

    assert "..." in rendered
    assert rendered.endswith("[protected]")
    assert _truncate(long_name, _MAX_ENV_NAME_WIDTH).endswith("...")
