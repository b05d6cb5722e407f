"""Metadata deployment modules: what gets published to each target."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from svcfacade.config import load_document
from svcfacade.context import ServiceContext
from svcfacade.generators import (
    OpenApiSpecGenerator,
    ServerlessConfigGenerator,
    apply_functions,
)
from svcfacade.targets import DeployError, FileToDeploy, S3BucketTarget
from svcfacade.variables import substitute

logger = logging.getLogger(__name__)


class DeployModule:
    """Base class: publishes one kind of metadata to every target, in order."""

    type_name = "DeployModule"

    def __init__(
        self,
        context: ServiceContext,
        targets: list[S3BucketTarget],
        name: str | None = None,
    ) -> None:
        self.context = context
        self.targets = targets
        self.name = name or self.type_name

    @classmethod
    def from_config(
        cls, cfg: dict[str, Any], context: ServiceContext, targets: list[S3BucketTarget]
    ) -> DeployModule:
        return cls(context, targets, name=cfg.get("name"))

    def execute(self) -> list[Any]:
        logger.info("Executing Meta Deployment Module (%s)", self.name)
        results = []
        for index, target in enumerate(self.targets, start=1):
            logger.info("Deploying to Target #%d (%s -> %s)", index, self.name, target.name)
            results.append(self.deploy_to_target(target))
        logger.info("All operations for module '%s' have completed successfully.", self.name)
        return results

    def deploy_to_target(self, target: S3BucketTarget) -> Any:
        raise NotImplementedError


class _DocumentModule(DeployModule):
    """A module that publishes one document as JSON and/or YAML.

    The JSON file defaults to :attr:`default_json_filename` unless a YAML
    filename is configured.
    """

    default_json_filename = ""

    def __init__(
        self,
        context: ServiceContext,
        targets: list[S3BucketTarget],
        name: str | None = None,
        json_filename: str | None = None,
        yaml_filename: str | None = None,
    ) -> None:
        super().__init__(context, targets, name)
        if json_filename is None and yaml_filename is None:
            json_filename = self.default_json_filename
        self.json_filename = json_filename
        self.yaml_filename = yaml_filename

    @classmethod
    def _filename_kwargs(cls, cfg: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": cfg.get("name"),
            "json_filename": cfg.get("jsonFilename"),
            "yaml_filename": cfg.get("yamlFilename"),
        }

    @classmethod
    def from_config(
        cls, cfg: dict[str, Any], context: ServiceContext, targets: list[S3BucketTarget]
    ) -> DeployModule:
        return cls(context, targets, **cls._filename_kwargs(cfg))

    def build_document(self) -> Any:
        raise NotImplementedError

    def deploy_to_target(self, target: S3BucketTarget) -> list[dict[str, Any]]:
        document = self.build_document()
        results = []
        if self.json_filename:
            results.append(target.put_object_as_json(self.json_filename, document))
        if self.yaml_filename:
            results.append(target.put_object_as_yaml(self.yaml_filename, document))
        return results


class PackageFile(_DocumentModule):
    """Publishes the service's ``package.json``."""

    type_name = "PackageFile"
    default_json_filename = "package.json"

    def build_document(self) -> Any:
        return self.context.package_data


class ServerlessSpec(_DocumentModule):
    """Publishes the service's serverless spec.

    Functions generated from ``lib/endpoints`` are added to the spec (entries
    written in the spec itself win), and ``provider.environment`` is dropped
    unless ``truncateEnvironment`` is false.
    """

    type_name = "ServerlessSpec"
    default_json_filename = "serverless.json"

    def __init__(
        self,
        context: ServiceContext,
        targets: list[S3BucketTarget],
        name: str | None = None,
        json_filename: str | None = None,
        yaml_filename: str | None = None,
        source_path_rel: str = "serverless.yml",
        truncate_environment: bool = True,
        generate_functions: bool = True,
    ) -> None:
        super().__init__(context, targets, name, json_filename, yaml_filename)
        self.source_path_rel = source_path_rel
        self.truncate_environment = truncate_environment
        self.generate_functions = generate_functions

    @classmethod
    def from_config(
        cls, cfg: dict[str, Any], context: ServiceContext, targets: list[S3BucketTarget]
    ) -> DeployModule:
        return cls(
            context,
            targets,
            source_path_rel=cfg.get("sourcePathRel", "serverless.yml"),
            truncate_environment=bool(cfg.get("truncateEnvironment", True)),
            generate_functions=bool(cfg.get("generateFunctions", True)),
            **cls._filename_kwargs(cfg),
        )

    def build_document(self) -> Any:
        spec = load_document(self.context.root_path / self.source_path_rel)
        spec = substitute(spec, self.context.global_variables)
        if not isinstance(spec, dict):
            return spec
        if self.generate_functions:
            endpoints = ServerlessConfigGenerator(self.context).load_endpoints()
            spec = apply_functions(spec, endpoints)
        provider = spec.get("provider")
        if self.truncate_environment and isinstance(provider, dict):
            provider.pop("environment", None)
        return spec


class OpenApiSpec(_DocumentModule):
    """Builds the service's OpenAPI document from its template and publishes it.

    See :class:`~svcfacade.generators.OpenApiSpecGenerator` for the references
    a template may use.
    """

    type_name = "OpenApiSpec"
    default_json_filename = "openapi.json"

    def __init__(
        self,
        context: ServiceContext,
        targets: list[S3BucketTarget],
        name: str | None = None,
        json_filename: str | None = None,
        yaml_filename: str | None = None,
        source_path_rel: str = "openapi.yml",
        dereference: bool = True,
    ) -> None:
        super().__init__(context, targets, name, json_filename, yaml_filename)
        self.source_path_rel = source_path_rel
        self.dereference = dereference

    @classmethod
    def from_config(
        cls, cfg: dict[str, Any], context: ServiceContext, targets: list[S3BucketTarget]
    ) -> DeployModule:
        return cls(
            context,
            targets,
            source_path_rel=cfg.get("sourcePathRel", "openapi.yml"),
            dereference=bool(cfg.get("dereference", True)),
            **cls._filename_kwargs(cfg),
        )

    def build_document(self) -> Any:
        template = load_document(self.context.root_path / self.source_path_rel)
        endpoints = ServerlessConfigGenerator(self.context).load_endpoints()
        generator = OpenApiSpecGenerator(self.context, endpoints)
        return generator.build_spec(template, self.dereference)


class StaticDirectory(DeployModule):
    """Uploads every file under a local directory, keeping relative paths."""

    type_name = "StaticDirectory"

    def __init__(
        self,
        context: ServiceContext,
        targets: list[S3BucketTarget],
        name: str | None = None,
        source_path_rel: str = "",
        dest_path_rel: str = "",
    ) -> None:
        super().__init__(context, targets, name)
        self.source_path_rel = source_path_rel
        self.dest_path_rel = dest_path_rel

    @classmethod
    def from_config(
        cls, cfg: dict[str, Any], context: ServiceContext, targets: list[S3BucketTarget]
    ) -> DeployModule:
        return cls(
            context,
            targets,
            name=cfg.get("name"),
            source_path_rel=cfg.get("sourcePathRel", ""),
            dest_path_rel=cfg.get("destPathRel", ""),
        )

    @property
    def source_path_abs(self) -> Path:
        return self.context.root_path / self.source_path_rel

    def collect_files(self) -> list[FileToDeploy]:
        source = self.source_path_abs
        if not source.is_dir():
            raise DeployError(f"Static directory {str(source)!r} does not exist")
        dest = self.dest_path_rel.strip("/")
        files = []
        for path in sorted(p for p in source.rglob("*") if p.is_file()):
            relative = path.relative_to(source).as_posix()
            files.append(FileToDeploy(path, f"{dest}/{relative}" if dest else relative))
        return files

    def deploy_to_target(self, target: S3BucketTarget) -> list[dict[str, Any]]:
        return target.deploy_files(self.collect_files())


MODULE_TYPES: dict[str, type[DeployModule]] = {
    cls.type_name: cls for cls in (PackageFile, ServerlessSpec, OpenApiSpec, StaticDirectory)
}
