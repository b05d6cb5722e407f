"""Data models for svcfacade."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

HTTP_METHODS = ("get", "patch", "post", "delete")
HttpMethod = Literal["get", "patch", "post", "delete"]

VERSION_HASH_LENGTH = 32
_VERSION_HASH_RE = re.compile(r"^[0-9a-f]{32}$")


@dataclass
class ServiceBundle:
    """The three metadata documents published for one service.

    Each document is ``None`` when its file was missing from the source bucket.
    """

    name: str
    package: dict[str, Any] | None = None
    serverless: dict[str, Any] | None = None
    open_api: dict[str, Any] | None = None

    @property
    def functions(self) -> dict[str, Any]:
        """The ``functions`` block of the serverless spec, or ``{}``."""
        if not isinstance(self.serverless, dict):
            return {}
        functions = self.serverless.get("functions")
        return functions if isinstance(functions, dict) else {}


@dataclass(frozen=True)
class EndpointDescriptor:
    """A single HTTP endpoint (path + method) resolved from a service."""

    name: str             # deployed function name, e.g. "sls-service-users-dev-getUser"
    short_name: str       # key under ``functions`` in serverless.json
    description: str | None
    path: str
    method: HttpMethod
    service: str
    version_hash: str     # 32-char lowercase hex

    def __post_init__(self) -> None:
        if self.method not in HTTP_METHODS:
            raise ValueError(
                f"Invalid HTTP method {self.method!r}; expected one of {HTTP_METHODS}"
            )
        if not _VERSION_HASH_RE.match(self.version_hash):
            raise ValueError(f"Invalid version hash {self.version_hash!r}")


@dataclass
class FunctionRecord:
    """A deployed Lambda function carrying a version hash and branch tag."""

    function_arn: str
    function_name: str
    version_hash: str
    branch: str | None = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> FunctionRecord:
        """Build a record from a Lambda ``ListFunctions`` entry."""
        env = (item.get("Environment") or {}).get("Variables") or {}
        return cls(
            function_arn=item["FunctionArn"],
            function_name=item["FunctionName"],
            version_hash=str(env.get("COREFW_VERSION_HASH", "")).lower(),
            branch=env.get("COREFW_SERVICE_BRANCH"),
        )


@dataclass
class PathNode:
    """A node in the endpoint path tree."""

    name: str                                   # path segment
    path: str                                   # full path up to this segment
    children: dict[str, PathNode] = field(default_factory=dict)
    endpoints: dict[str, EndpointDescriptor] = field(default_factory=dict)

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0
