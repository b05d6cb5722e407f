"""Service-level facts (name, version, git branch) shared by every pipeline."""

from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from functools import cached_property
from pathlib import Path
from typing import Any

from svcfacade.config import ConfigError

_GIT_HEAD_JUNK_RE = re.compile(r"[^a-zA-Z0-9\-:/.]+")
_SHORT_NAME_PREFIX = "sls-service-"


class ServiceContext:
    """Resolves the values exposed to templates as global variables.

    Args:
        root_path: Root directory of the service project.
        service_name: Explicit service name; defaults to ``package.json``'s ``name``.
        environ: Environment used for branch detection (defaults to ``os.environ``).
    """

    def __init__(
        self,
        root_path: str | Path,
        service_name: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.root_path = Path(root_path)
        self._service_name = service_name
        self._environ = os.environ if environ is None else environ

    @cached_property
    def package_data(self) -> dict[str, Any]:
        pkg_path = self.root_path / "package.json"
        try:
            with open(pkg_path) as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Failed to load the service's package.json ({pkg_path})") from exc

    @property
    def version_full(self) -> str:
        version = self.package_data.get("version")
        if not isinstance(version, str) or not version:
            raise ConfigError("Missing or invalid 'version' specified in package.json")
        return version

    @property
    def version_major(self) -> str:
        return self.version_full.split(".")[0]

    @property
    def version_minor(self) -> str:
        parts = self.version_full.split(".")
        return parts[1] if len(parts) > 1 else "0"

    @property
    def version_revision(self) -> str:
        parts = self.version_full.split(".")
        return parts[2] if len(parts) > 2 else "0"

    @property
    def service_name(self) -> str:
        if self._service_name:
            return self._service_name
        name = self.package_data.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigError("Missing or invalid service 'name' specified in package.json")
        return name

    @property
    def service_name_short(self) -> str:
        return self.service_name.replace(_SHORT_NAME_PREFIX, "", 1)

    @cached_property
    def git_branch(self) -> str:
        """Current branch: ``GIT_BRANCH``, then ``TRAVIS_BRANCH``, then ``.git/HEAD``."""
        for var in ("GIT_BRANCH", "TRAVIS_BRANCH"):
            if self._environ.get(var):
                return self._environ[var]

        head_path = self.root_path / ".git" / "HEAD"
        try:
            contents = head_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(
                "Missing .git/HEAD file, which is required to resolve the current Git branch"
            ) from exc

        contents = _GIT_HEAD_JUNK_RE.sub("", contents)
        if not contents.startswith("ref:") or "/" not in contents:
            raise ConfigError(
                "Could not resolve the current Git branch; "
                "the contents of .git/HEAD were not recognized."
            )
        return contents.split("/")[-1]

    @property
    def global_variables(self) -> dict[str, str]:
        """Variables available to every template and config document."""
        return {
            "versionMajor": self.version_major,
            "versionMinor": self.version_minor,
            "versionRevision": self.version_revision,
            "versionFull": self.version_full,
            "serviceName": self.service_name,
            "serviceNameShort": self.service_name_short,
            "gitBranch": self.git_branch,
        }

    def variables(self, extra: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Return the global variables overlaid with *extra* (extra wins)."""
        merged: dict[str, Any] = dict(self.global_variables)
        if extra:
            merged.update(extra)
        return merged
