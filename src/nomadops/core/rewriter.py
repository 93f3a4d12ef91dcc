"""Job template rewriting.

A job template is a Nomad job file with an ``image = "..."`` attribute
pointing at a placeholder or previously deployed image. Rewriting swaps
the quoted value for the freshly built reference and leaves every other
byte of the file untouched, so the submitted spec is exactly the
template the repository owns plus a new image.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping

from nomadops.core.errors import ConfigError, RewriteError
from nomadops.core.models import JobSpec, JobTemplate

IMAGE_LINE_RE = re.compile(
    r'^(?P<prefix>[ \t]*image[ \t]*=[ \t]*")(?P<ref>[^"\n]+)(?P<suffix>"[^\n]*)$',
    re.MULTILINE,
)
_VARIABLE_RE = re.compile(r"\$\{NOMADOPS_([A-Z0-9_]+)\}")


def repository_of(reference: str) -> str:
    """
    Return the repository part of an image reference.

    ``ghcr.io/org/app:1.2`` and ``ghcr.io/org/app@sha256:...`` both give
    ``ghcr.io/org/app``. A registry port (``host:5000/app``) is kept.
    """
    name = reference.split("@", 1)[0]
    last_slash = name.rfind("/")
    last_colon = name.rfind(":")
    if last_colon > last_slash:
        name = name[:last_colon]
    return name


def load_template(path: Path) -> JobTemplate:
    """Read a job template from disk."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Job file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read job file {path}: {exc}") from exc
    return JobTemplate(text=text, path=path)


def rewrite(
    template: JobTemplate,
    image_reference: str,
    *,
    image_name: str | None = None,
) -> JobSpec:
    """
    Substitute the image reference in a job template.

    Every ``image = "<ref>"`` line is a candidate. When ``image_name`` is
    given only lines whose repository equals it, or the repository of
    ``image_reference`` itself, are rewritten; otherwise all candidates must
    share one repository.

    Rewriting is idempotent: applying it to its own output with the same
    reference returns identical text.

    Args:
        template: Job template to rewrite.
        image_reference: New image reference.
        image_name: Optional repository filter.

    Returns:
        The rewritten JobSpec.

    Raises:
        RewriteError: If no candidate line matches, or candidates point at
                      different repositories and no filter was given.
    """
    if not image_reference.strip():
        raise ValueError("image_reference must not be empty")

    matches = list(IMAGE_LINE_RE.finditer(template.text))
    if image_name:
        targets = {image_name, repository_of(image_reference)}
        matches = [m for m in matches if repository_of(m.group("ref")) in targets]

    if not matches:
        target = f" for {image_name}" if image_name else ""
        raise RewriteError(
            RewriteError.PLACEHOLDER_NOT_FOUND,
            f"No image reference{target} found in job template",
            details={"template": str(template.path)} if template.path else None,
        )

    repositories = {repository_of(m.group("ref")) for m in matches}
    if len(repositories) > 1 and not image_name:
        raise RewriteError(
            RewriteError.AMBIGUOUS_PLACEHOLDER,
            "Job template references several images; pass an image name to choose one",
            details={"images": ", ".join(sorted(repositories))},
        )

    chosen = {m.start() for m in matches}

    def _substitute(match: re.Match[str]) -> str:
        if match.start() not in chosen:
            return match.group(0)
        return f"{match.group('prefix')}{image_reference}{match.group('suffix')}"

    text = IMAGE_LINE_RE.sub(_substitute, template.text)
    return JobSpec(text=text, image_reference=image_reference, source=template.path)


def render_variables(template: JobTemplate, variables: Mapping[str, str]) -> JobTemplate:
    """
    Replace ``${NOMADOPS_<NAME>}`` placeholders with values.

    Keys are matched case-insensitively against ``<NAME>``. Unknown
    placeholders are left as they are; Nomad's own ``${...}``
    interpolation is never touched.
    """
    if not variables:
        return template
    lookup = {key.upper(): str(value) for key, value in variables.items()}

    def _substitute(match: re.Match[str]) -> str:
        return lookup.get(match.group(1), match.group(0))

    return JobTemplate(text=_VARIABLE_RE.sub(_substitute, template.text), path=template.path)
