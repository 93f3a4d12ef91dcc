"""Command for building and publishing the deployment image."""

from __future__ import annotations

from pathlib import Path

from nomadops.cli.common.context import build_app_context
from nomadops.cli.common.exits import die, exit_from_error
from nomadops.cli.common.options import (
    BuildArgOpt,
    ConfigOpt,
    ContextOpt,
    DockerfileOpt,
    EnvOpt,
    FromGithubOpt,
    ImageNameOpt,
    PlatformOpt,
    PushOpt,
    TagOpt,
    parse_pairs,
)
from nomadops.cli.common.output import out
from nomadops.core.adapters.buildx import BuildxBackend
from nomadops.core.builder import build_image, compute_tags
from nomadops.core.config import EnvironmentProfile
from nomadops.core.errors import DeployError
from nomadops.core.git import current_ref, head_sha
from nomadops.core.models import BuildRequest
from nomadops.core.triggers import from_github_env, resolve_trigger


def git_tags(context: Path) -> tuple[str, ...]:
    """Derive image tags from the git checkout containing the build context."""
    return compute_tags(current_ref(context), head_sha(context))


def make_build_request(
    profile: EnvironmentProfile,
    *,
    tags: tuple[str, ...],
    push: bool,
    platforms: list[str] | None = None,
    build_args: list[str] | None = None,
    context: Path | None = None,
    dockerfile: Path | None = None,
) -> BuildRequest:
    """Combine an environment profile and command-line overrides into a BuildRequest."""
    return BuildRequest(
        source_path=context or profile.context,
        dockerfile_path=dockerfile or profile.dockerfile,
        image_name=profile.image_name,
        tags=tags,
        platforms=frozenset(platforms) if platforms else profile.platforms,
        push=push,
        build_args=parse_pairs(build_args or [], "build arg"),
    )


def build(
    config: Path | None = ConfigOpt,
    env: str | None = EnvOpt,
    image_name: str | None = ImageNameOpt,
    context: Path | None = ContextOpt,
    dockerfile: Path | None = DockerfileOpt,
    platform: list[str] = PlatformOpt,
    tag: list[str] = TagOpt,
    build_arg: list[str] = BuildArgOpt,
    push: bool = PushOpt,
    from_github: bool = FromGithubOpt,
):
    """
    Build the image for all platforms and push it.
    """
    appctx = build_app_context(config, env, image_name=image_name)
    profile = appctx.profile
    if not profile.image_name:
        die(f"Environment '{profile.name}' has no image_name; pass --image-name", code=2)

    try:
        if tag:
            tags = tuple(tag)
        elif from_github:
            invocation = resolve_trigger(**from_github_env(), environments=appctx.profiles)
            tags = invocation.tags
            push = push and invocation.push
        else:
            tags = git_tags(context or profile.context)
        request = make_build_request(
            profile,
            tags=tags,
            push=push,
            platforms=platform,
            build_args=build_arg,
            context=context,
            dockerfile=dockerfile,
        )
    except ValueError as exc:
        die(str(exc), code=2)
    except DeployError as exc:
        exit_from_error(exc)

    try:
        with out.status(f"Building {request.image_name} ({', '.join(sorted(request.platforms))})..."):
            result = build_image(BuildxBackend(), request)
    except DeployError as exc:
        exit_from_error(exc)

    out.success(f"Built {result.image_reference}")
    out.build_table(result)
