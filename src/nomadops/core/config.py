"""Deployment configuration.

Configuration is resolved once per invocation into frozen dataclasses and
handed to each component explicitly. Values come from a ``nomadops.toml``
file (a ``[defaults]`` table merged into each ``[environments.<name>]``
table) and are then overridden by the usual Nomad environment variables,
the same way Nomad's own CLI resolves its address and token.

Example::

    [defaults]
    image_name = "ghcr.io/org/app"
    job_file = "deploy/app.nomad.hcl"

    [defaults.cluster]
    address = "https://nomad.internal:4646"

    [environments.staging]

    [environments.production]
    protected = true
    job_file = "deploy/app.prod.nomad.hcl"

    [environments.production.deploy]
    health_timeout = 900
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

from nomadops.core.errors import ConfigError

CONFIG_FILE_NAME = "nomadops.toml"
CONFIG_PATH_ENV = "NOMADOPS_CONFIG"
TRANSPORTS = ("http", "ssh")

_CLUSTER_ENV = {
    "NOMAD_ADDR": "address",
    "NOMAD_TOKEN": "token",
    "NOMAD_NAMESPACE": "namespace",
    "NOMAD_REGION": "region",
    "NOMAD_CACERT": "ca_cert",
    "NOMAD_CLIENT_CERT": "client_cert",
    "NOMAD_CLIENT_KEY": "client_key",
    "NOMADOPS_TRANSPORT": "transport",
    "NOMADOPS_SSH_HOST": "ssh_host",
    "NOMADOPS_SSH_USER": "ssh_user",
    "NOMADOPS_SSH_KEY": "ssh_key",
    "NOMADOPS_SSH_KEY_PATH": "ssh_key_path",
}


@dataclass(frozen=True)
class ClusterConfig:
    """Connection settings for the cluster control plane."""

    transport: str = "http"
    address: str = "http://127.0.0.1:4646"
    token: str | None = field(default=None, repr=False)
    namespace: str | None = None
    region: str | None = None
    ca_cert: str | None = None
    client_cert: str | None = None
    client_key: str | None = None
    ssh_host: str | None = None
    ssh_user: str | None = None
    ssh_port: int = 22
    ssh_key_path: str | None = None
    ssh_key: str | None = field(default=None, repr=False)
    request_timeout: float = 30.0

    def validate(self) -> "ClusterConfig":
        """Return self, raising ConfigError on inconsistent settings."""
        if self.transport not in TRANSPORTS:
            raise ConfigError(
                f"cluster.transport must be one of {', '.join(TRANSPORTS)}",
                details={"value": self.transport},
            )
        if self.transport == "ssh" and not (self.ssh_host and self.ssh_user):
            raise ConfigError("ssh transport requires cluster.ssh_host and cluster.ssh_user")
        if self.transport == "http" and not self.address:
            raise ConfigError("http transport requires cluster.address")
        if self.request_timeout <= 0:
            raise ConfigError("cluster.request_timeout must be > 0")
        return self


@dataclass(frozen=True)
class DeployConfig:
    """Orchestrator policy for one deployment attempt."""

    poll_interval: float = 5.0
    health_timeout: float = 600.0
    max_poll_errors: int = 3
    plan_first: bool = False
    revert_on_failure: bool = False

    def validate(self) -> "DeployConfig":
        """Return self, raising ConfigError on out-of-range values."""
        if self.poll_interval <= 0:
            raise ConfigError("deploy.poll_interval must be > 0")
        if self.health_timeout <= 0:
            raise ConfigError("deploy.health_timeout must be > 0")
        if self.max_poll_errors < 1:
            raise ConfigError("deploy.max_poll_errors must be >= 1")
        for name in ("plan_first", "revert_on_failure"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"deploy.{name} must be true or false")
        return self


@dataclass(frozen=True)
class EnvironmentProfile:
    """Everything needed to build and deploy to one environment."""

    name: str
    image_name: str = ""
    job_file: Path | None = None
    context: Path = Path(".")
    dockerfile: Path = Path("Dockerfile")
    platforms: frozenset[str] = frozenset({"linux/amd64"})
    protected: bool = False
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    variables: Mapping[str, str] = field(default_factory=dict)


def find_config_path(explicit: Path | None = None, environ: Mapping[str, str] | None = None) -> Path | None:
    """Return the config path to use, or None if there is none."""
    environ = os.environ if environ is None else environ
    if explicit is not None:
        return explicit
    env_path = environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    default = Path.cwd() / CONFIG_FILE_NAME
    return default if default.exists() else None


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc


def _merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return base updated with override, merging nested tables."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _build(cls: type, section: str, raw: Mapping[str, Any]) -> Any:
    """Instantiate a config dataclass, rejecting unknown keys and bad types."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown {section} setting(s): {', '.join(unknown)}")
    try:
        return cls(**raw).validate()
    except TypeError as exc:
        raise ConfigError(f"Invalid {section} settings: {exc}") from exc


def cluster_env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    """Return ClusterConfig overrides taken from environment variables."""
    return {attr: environ[var] for var, attr in _CLUSTER_ENV.items() if environ.get(var)}


def _coerce_cluster(raw: Mapping[str, Any]) -> dict[str, Any]:
    values = dict(raw)
    for key, kind in (("ssh_port", int), ("request_timeout", float)):
        if key in values:
            try:
                values[key] = kind(values[key])
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"cluster.{key} must be a number", details={"value": values[key]}) from exc
    return values


def build_profile(
    name: str,
    raw: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
    *,
    base_dir: Path = Path("."),
) -> EnvironmentProfile:
    """
    Build one EnvironmentProfile from a merged settings table.

    Args:
        name: Environment name.
        raw: Merged ``[defaults]`` + ``[environments.<name>]`` table.
        environ: Environment used for cluster overrides.
        base_dir: Directory relative paths are resolved against.

    Raises:
        ConfigError: If required keys are missing or values are invalid.
    """
    environ = os.environ if environ is None else environ
    values = dict(raw)

    cluster_raw = _merge(values.pop("cluster", {}) or {}, cluster_env_overrides(environ))
    cluster = _build(ClusterConfig, "cluster", _coerce_cluster(cluster_raw))
    deploy = _build(DeployConfig, "deploy", values.pop("deploy", {}) or {})
    variables = {str(k): str(v) for k, v in (values.pop("variables", {}) or {}).items()}

    platforms = values.pop("platforms", None)
    if isinstance(platforms, str):
        platforms = [platforms]

    kwargs: dict[str, Any] = {
        "name": name,
        "image_name": str(values.pop("image_name", "") or ""),
        "cluster": cluster,
        "deploy": deploy,
        "variables": variables,
    }
    job_file = values.pop("job_file", None)
    if job_file:
        kwargs["job_file"] = base_dir / str(job_file)
    if "context" in values:
        kwargs["context"] = base_dir / str(values.pop("context"))
    else:
        kwargs["context"] = base_dir
    if "dockerfile" in values:
        kwargs["dockerfile"] = Path(str(values.pop("dockerfile")))
    if platforms:
        kwargs["platforms"] = frozenset(str(p) for p in platforms)
    if "protected" in values:
        protected = values.pop("protected")
        if not isinstance(protected, bool):
            raise ConfigError(
                f"protected must be true or false for environment '{name}'",
                details={"value": protected},
            )
        kwargs["protected"] = protected

    if values:
        raise ConfigError(
            f"Unknown setting(s) for environment '{name}': {', '.join(sorted(values))}"
        )
    return EnvironmentProfile(**kwargs)


def load_profiles(
    path: Path,
    environ: Mapping[str, str] | None = None,
) -> dict[str, EnvironmentProfile]:
    """
    Load every environment profile from a config file.

    Relative paths in the file are resolved against the file's directory.
    """
    data = _read_toml(path)
    defaults = data.get("defaults", {}) or {}
    environments = data.get("environments", {}) or {}
    if not isinstance(environments, Mapping) or not environments:
        raise ConfigError(f"No [environments.<name>] tables in {path}")

    base_dir = path.parent
    return {
        name: build_profile(name, _merge(defaults, table or {}), environ, base_dir=base_dir)
        for name, table in environments.items()
    }


def get_profile(profiles: Mapping[str, EnvironmentProfile], name: str) -> EnvironmentProfile:
    """Return the named profile or raise ConfigError listing known names."""
    try:
        return profiles[name]
    except KeyError:
        known = ", ".join(sorted(profiles)) or "none"
        raise ConfigError(f"Unknown environment '{name}' (known: {known})") from None


def with_deploy_overrides(profile: EnvironmentProfile, **overrides: Any) -> EnvironmentProfile:
    """Return a copy of profile with non-None DeployConfig overrides applied."""
    changes = {k: v for k, v in overrides.items() if v is not None}
    if not changes:
        return profile
    deploy = replace(profile.deploy, **changes).validate()
    return replace(profile, deploy=deploy)
