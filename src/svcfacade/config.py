"""Load and validate the YAML configuration files of a facade project."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from svcfacade.variables import substitute

AGGREGATION_CONFIG_PATH = "config/aggregation-config.yml"
META_DEPLOY_CONFIG_PATH = "config/meta-deploy.yml"


class ConfigError(Exception):
    """Raised when configuration is missing, unreadable, or invalid."""


@dataclass
class SourceBucketConfig:
    """Where per-service metadata lives (``MetaSourceBucket``)."""

    bucket: str
    root_path: str = ""
    aws_region: str = "us-east-1"

    def __post_init__(self) -> None:
        self.root_path = normalize_root_path(self.root_path)


@dataclass
class FacadeApiConfig:
    """The aggregated API and the stack it is deployed with (``FacadeApi``)."""

    name: str
    cf_stack_name: str
    poll_interval: int = 5
    max_poll_attempts: int = 30


@dataclass
class AggregationConfig:
    source: SourceBucketConfig
    facade: FacadeApiConfig


@dataclass
class MetaDeployConfig:
    """The ``MetaDeploy`` section: raw target and module definitions."""

    targets: list[dict[str, Any]]
    modules: list[dict[str, Any]] = field(default_factory=list)


def normalize_root_path(root_path: str | None) -> str:
    """Strip the leading slash and ensure a single trailing slash.

    An empty root (the bucket root) stays empty.
    """
    root_path = (root_path or "").strip("/")
    return f"{root_path}/" if root_path else ""


def load_yaml_file(path: str | Path) -> Any:
    """Read and parse a YAML file, raising :class:`ConfigError` on failure."""
    try:
        with open(path) as fh:
            return yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"Could not read {str(path)!r}: {exc.strerror}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {str(path)!r}: {exc}") from exc


def load_document(path: str | Path) -> Any:
    """Load a JSON or YAML document, chosen by file extension."""
    path = Path(path)
    if path.suffix == ".json":
        try:
            with open(path) as fh:
                return json.load(fh)
        except OSError as exc:
            raise ConfigError(f"Could not read {str(path)!r}: {exc.strerror}") from exc
        except ValueError as exc:
            raise ConfigError(f"Could not parse {str(path)!r}: {exc}") from exc
    return load_yaml_file(path)


def _require_mapping(data: Any, key: str, source: str) -> dict[str, Any]:
    section = data.get(key) if isinstance(data, dict) else None
    if not isinstance(section, dict):
        raise ConfigError(f"{source} is missing the required {key!r} section")
    return section


def _require_str(section: Mapping[str, Any], key: str, where: str) -> str:
    value = section.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{where}.{key} must be a non-empty string")
    return value


def load_aggregation_config(
    root_path: str | Path,
    variables: Mapping[str, Any] | None = None,
    rel_path: str = AGGREGATION_CONFIG_PATH,
) -> AggregationConfig:
    """Load ``config/aggregation-config.yml`` from a facade project.

    Args:
        root_path: The facade project root.
        variables: Variables substituted into the document before validation.
        rel_path: Location of the file relative to *root_path*.

    Raises:
        ConfigError: If the file is missing, malformed, or incomplete.
    """
    source = str(rel_path)
    data = substitute(load_yaml_file(Path(root_path) / rel_path), variables or {})

    bucket = _require_mapping(data, "MetaSourceBucket", source)
    facade = _require_mapping(data, "FacadeApi", source)

    try:
        return AggregationConfig(
            source=SourceBucketConfig(
                bucket=_require_str(bucket, "bucket", "MetaSourceBucket"),
                root_path=bucket.get("rootPath", ""),
                aws_region=bucket.get("awsRegion") or "us-east-1",
            ),
            facade=FacadeApiConfig(
                name=_require_str(facade, "name", "FacadeApi"),
                cf_stack_name=_require_str(facade, "cfStackName", "FacadeApi"),
                poll_interval=int(facade.get("pollInterval", 5)),
                max_poll_attempts=int(facade.get("maxPollAttempts", 30)),
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{source} contains an invalid value: {exc}") from exc


def load_meta_deploy_config(
    root_path: str | Path,
    variables: Mapping[str, Any] | None = None,
    rel_path: str = META_DEPLOY_CONFIG_PATH,
) -> MetaDeployConfig:
    """Load the ``MetaDeploy`` section used by the metadata deployment pipeline.

    Raises:
        ConfigError: If ``MetaDeploy`` is missing/invalid or defines no targets
            or no modules.
    """
    source = str(rel_path)
    data = load_yaml_file(Path(root_path) / rel_path)
    if not isinstance(data, dict) or "MetaDeploy" not in data:
        raise ConfigError(
            f"{source} does not contain a 'MetaDeploy' property, "
            "which is required for metadata deployment."
        )
    section = data["MetaDeploy"]
    if not isinstance(section, dict):
        raise ConfigError("The provided 'MetaDeploy' configuration settings are invalid or malformed.")

    section = substitute(section, variables or {})

    targets = section.get("DeployTargets")
    if not isinstance(targets, list) or not targets:
        raise ConfigError("Metadata deployment requires at least one deployment target (DeployTargets)")
    modules = section.get("Modules")
    if not isinstance(modules, list) or not modules:
        raise ConfigError("Metadata deployment requires at least one module (Modules)")

    return MetaDeployConfig(targets=targets, modules=modules)
