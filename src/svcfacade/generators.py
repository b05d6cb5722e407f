"""Generate serverless function config and OpenAPI documents from a service's endpoints.

Each endpoint of a service lives in its own directory::

    lib/endpoints/<method>/<EndpointName>/
        <config dir>/serverless-function.yml
        schema/Parameters.yml      (optional)
        schema/Path.yml            (optional, at most one path)
        schema/*.json              (schema fragments for ``endpoint:`` refs)
"""

from __future__ import annotations

import copy
import hashlib
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from svcfacade.config import ConfigError, load_document, load_yaml_file
from svcfacade.context import ServiceContext
from svcfacade.variables import substitute

logger = logging.getLogger(__name__)

FUNCTION_CONFIG_FILENAME = "serverless-function.yml"

FUNCTION_DEFAULTS_FILENAME = "function-defaults.yml"
HTTP_EVENT_DEFAULTS_FILENAME = "http-event-defaults.yml"
HTTP_EVENT_SCAFFOLD_FILENAME = "http-event-scaffold.yml"

# Used when the service has no file of its own.  The environment tags are the
# ones the aggregator looks for on deployed functions.
DEFAULT_FUNCTION_DEFAULTS: dict[str, Any] = {
    "environment": {
        "COREFW_VERSION_HASH": "${endpointVersionHash}",
        "COREFW_SERVICE_BRANCH": "${gitBranch}",
    },
}
DEFAULT_HTTP_EVENT_DEFAULTS: dict[str, Any] = {"integration": "lambda-proxy"}
DEFAULT_HTTP_EVENT_SCAFFOLD: dict[str, Any] = {
    "http": {"path": "${httpPath}", "method": "${httpMethodLC}"},
}

_CUSTOM_REF_RE = re.compile(r"^(common|endpoints?|service):(.*)$", re.IGNORECASE)


def deep_merge(base: Any, override: Any) -> Any:
    """Merge *override* onto *base*.

    Dicts are merged key by key; any other value in *override* (lists
    included) replaces the one in *base*.  Neither argument is mutated.
    """
    if isinstance(base, dict) and isinstance(override, dict):
        merged = copy.deepcopy(base)
        for key, value in override.items():
            merged[key] = deep_merge(merged.get(key), value)
        return merged
    return copy.deepcopy(override)


def normalize_config_http_path(path: str) -> str:
    """Strip spaces and slashes from both ends: ``" /users/{id}/"`` -> ``"users/{id}"``."""
    return path.strip(" /")


def function_config_has_path(
    cfg: dict[str, Any],
    path: str,
    event_types: str | list[str] | None = None,
) -> bool:
    """Return True if an event of *cfg* (optionally of *event_types*) is bound to *path*.

    Paths are compared after :func:`normalize_config_http_path`; event types
    are compared case-insensitively.
    """
    wanted = normalize_config_http_path(path)
    if isinstance(event_types, str):
        event_types = [event_types]
    types = {t.lower() for t in event_types} if event_types is not None else None

    for wrapper in cfg.get("events") or []:
        if not isinstance(wrapper, dict):
            continue
        for event_type, event in wrapper.items():
            if types is not None and event_type.lower() not in types:
                continue
            if not isinstance(event, dict) or not isinstance(event.get("path"), str):
                continue
            if normalize_config_http_path(event["path"]) == wanted:
                return True
    return False


def resolve_pointer(document: Any, pointer: str) -> Any:
    """Follow a JSON pointer (``/paths/~1users/get``) into *document*.

    An empty pointer selects the whole document.
    """
    if not pointer:
        return document
    if not pointer.startswith("/"):
        raise ConfigError(f"Invalid JSON pointer {pointer!r}")

    current = document
    for raw in pointer[1:].split("/"):
        part = raw.replace("~1", "/").replace("~0", "~")
        try:
            if isinstance(current, list):
                current = current[int(part)]
            elif isinstance(current, dict):
                current = current[part]
            else:
                raise KeyError(part)
        except (KeyError, IndexError, ValueError) as exc:
            raise ConfigError(f"Could not resolve JSON pointer {pointer!r}") from exc
    return current


@dataclass
class EndpointDetails:
    """Everything known about one endpoint directory."""

    endpoint_name: str
    http_method: str
    function_config_path: Path
    endpoint_root: Path
    endpoint_root_rel: str
    version_string: str
    version_hash: str
    parameter_config: Any = None
    path_config: dict[str, Any] | None = None
    function_config: dict[str, Any] = field(default_factory=dict)

    @property
    def schema_root_path(self) -> Path:
        return self.endpoint_root / "schema"

    @property
    def parameter_config_path(self) -> Path:
        return self.schema_root_path / "Parameters.yml"

    @property
    def path_config_path(self) -> Path:
        return self.schema_root_path / "Path.yml"

    def variables(self) -> dict[str, str]:
        """Variables available to this endpoint's function config."""
        return {
            "functionConfigPath": str(self.function_config_path),
            "functionConfigFilename": self.function_config_path.name,
            "configRootPath": str(self.function_config_path.parent),
            "configDirName": self.function_config_path.parent.name,
            "endpointRoot": str(self.endpoint_root),
            "endpointRootRel": self.endpoint_root_rel,
            "endpointName": self.endpoint_name,
            "httpMethod": self.http_method,
            "httpMethodUC": self.http_method.upper(),
            "httpMethodLC": self.http_method.lower(),
            "schemaRootPath": str(self.schema_root_path),
            "parameterConfigPath": str(self.parameter_config_path),
            "pathConfigPath": str(self.path_config_path),
            "endpointVersionString": self.version_string,
            "endpointVersionHash": self.version_hash,
        }


EndpointMapping = Mapping[str, EndpointDetails]


def find_endpoint(endpoints: EndpointMapping, name: str) -> EndpointDetails | None:
    """Look up an endpoint by name, ignoring case."""
    wanted = name.lower()
    for endpoint_name, details in endpoints.items():
        if endpoint_name.lower() == wanted:
            return details
    return None


def build_functions(endpoints: EndpointMapping) -> dict[str, dict[str, Any]]:
    """Return ``{endpoint name: function config}`` for *endpoints*."""
    return {name: copy.deepcopy(d.function_config) for name, d in endpoints.items()}


def apply_functions(spec: dict[str, Any], endpoints: EndpointMapping) -> dict[str, Any]:
    """Add the functions of *endpoints* to a serverless *spec*; functions already in it win."""
    if not endpoints:
        return spec
    existing = spec.get("functions")
    spec["functions"] = {
        **build_functions(endpoints),
        **(existing if isinstance(existing, dict) else {}),
    }
    return spec


class ServerlessConfigGenerator:
    """Resolves the endpoint directories of a service into :class:`EndpointDetails`.

    Every endpoint's ``serverless-function.yml`` is merged over the function
    defaults.  An ``http`` event is added for the path in ``Path.yml`` when the
    config does not already bind it, and every ``http`` event is merged with
    the http event defaults.  Finally the global variables and the endpoint's
    own variables (see :meth:`EndpointDetails.variables`) are substituted.

    The shared defaults are read once, when the generator is created.

    Args:
        context: The service whose ``lib/endpoints`` tree is scanned.
        config_root: Directory holding ``function-defaults.yml``,
            ``http-event-defaults.yml`` and ``http-event-scaffold.yml``.
            Defaults to ``config/serverless`` under the service root.  A
            missing file falls back to the built-in default.

    Raises:
        ConfigError: If a defaults file cannot be parsed.
    """

    def __init__(self, context: ServiceContext, config_root: str | Path | None = None) -> None:
        self.context = context
        self.config_root = (
            Path(config_root) if config_root else context.root_path / "config" / "serverless"
        )
        self._function_defaults = self._load_common(
            FUNCTION_DEFAULTS_FILENAME, DEFAULT_FUNCTION_DEFAULTS
        )
        self._http_event_defaults = self._load_common(
            HTTP_EVENT_DEFAULTS_FILENAME, DEFAULT_HTTP_EVENT_DEFAULTS
        )
        self._http_event_scaffold = self._load_common(
            HTTP_EVENT_SCAFFOLD_FILENAME, DEFAULT_HTTP_EVENT_SCAFFOLD
        )

    @property
    def endpoint_root(self) -> Path:
        return self.context.root_path / "lib" / "endpoints"

    def _load_common(self, filename: str, default: dict[str, Any]) -> Any:
        path = self.config_root / filename
        data = (load_yaml_file(path) or {}) if path.is_file() else default
        return substitute(data, self.context.global_variables)

    def load_endpoints(self) -> dict[str, EndpointDetails]:
        """Scan ``lib/endpoints`` and return every endpoint keyed by endpoint name.

        A service without an endpoint directory has no endpoints.
        """
        endpoints: dict[str, EndpointDetails] = {}
        if not self.endpoint_root.is_dir():
            logger.debug("No endpoint directory at %s", self.endpoint_root)
            return endpoints

        for config_path in sorted(self.endpoint_root.rglob(FUNCTION_CONFIG_FILENAME)):
            details = self.resolve_endpoint_details(config_path)
            endpoints[details.endpoint_name] = details
        logger.info("Resolved %d endpoint(s) under %s", len(endpoints), self.endpoint_root)
        return endpoints

    def resolve_endpoint_details(self, config_path: Path) -> EndpointDetails:
        """Describe the endpoint owning *config_path*.

        The endpoint name is the directory above the config directory and the
        HTTP method is the directory above that.
        """
        endpoint_root = config_path.parent.parent
        try:
            endpoint_root_rel = "/" + endpoint_root.relative_to(self.context.root_path).as_posix()
        except ValueError:
            endpoint_root_rel = str(endpoint_root)

        version_string = "::".join(
            [
                self.context.service_name,
                endpoint_root.name,
                self.context.git_branch,
                self.context.version_full,
            ]
        )
        details = EndpointDetails(
            endpoint_name=endpoint_root.name,
            http_method=endpoint_root.parent.name,
            function_config_path=config_path,
            endpoint_root=endpoint_root,
            endpoint_root_rel=endpoint_root_rel,
            version_string=version_string,
            version_hash=hashlib.md5(
                version_string.encode("utf-8"), usedforsecurity=False
            ).hexdigest(),
        )
        details.parameter_config = self._load_parameter_config(details)
        details.path_config = self._load_path_config(details)
        details.function_config = self._load_function_config(details)
        return details

    def _load_parameter_config(self, details: EndpointDetails) -> Any:
        if not details.parameter_config_path.is_file():
            return None
        data = load_yaml_file(details.parameter_config_path)
        if isinstance(data, dict) and data.get("parameters") is not None:
            return data["parameters"]
        return data

    def _load_path_config(self, details: EndpointDetails) -> dict[str, Any] | None:
        if not details.path_config_path.is_file():
            return None
        data = load_yaml_file(details.path_config_path)
        if isinstance(data, dict) and data.get("paths") is not None:
            data = data["paths"]
        if not isinstance(data, dict):
            return None
        if len(data) > 1:
            raise ConfigError(
                f"Expected path config at '{details.path_config_path}' to have a single path "
                f"definition but found ({len(data)}) definitions instead."
            )
        return data

    def _load_function_config(self, details: EndpointDetails) -> dict[str, Any]:
        cfg = load_yaml_file(details.function_config_path) or {}
        if not isinstance(cfg, dict):
            raise ConfigError(f"'{details.function_config_path}' must contain a mapping")

        cfg = deep_merge(self._function_defaults, cfg)
        cfg = self._add_automatic_events(cfg, details)
        cfg = self._apply_event_defaults(cfg)
        return substitute(cfg, self.context.variables(details.variables()))

    def _add_automatic_events(
        self, cfg: dict[str, Any], details: EndpointDetails
    ) -> dict[str, Any]:
        if not details.path_config:
            return cfg
        if not isinstance(cfg.get("events"), list):
            cfg["events"] = []

        for path_name, path_schema in details.path_config.items():
            path_name = normalize_config_http_path(path_name)
            if not function_config_has_path(cfg, path_name, "http"):
                cfg["events"].append(self._build_http_event(path_name, path_schema))
        return cfg

    def _build_http_event(self, path_name: str, path_schema: Any) -> Any:
        variables = {"httpPath": path_name}
        if isinstance(path_schema, dict) and path_schema:
            # The last method declared for the path wins.
            method = list(path_schema)[-1]
            variables.update(
                httpMethod=method, httpMethodLC=method.lower(), httpMethodUC=method.upper()
            )
        return substitute(self._http_event_scaffold, self.context.variables(variables))

    def _apply_event_defaults(self, cfg: dict[str, Any]) -> dict[str, Any]:
        for wrapper in cfg.get("events") or []:
            if not isinstance(wrapper, dict):
                continue
            for event_type, event in list(wrapper.items()):
                if event_type.lower() == "http" and isinstance(event, dict):
                    # Defaults take precedence over the endpoint's own values.
                    wrapper[event_type] = deep_merge(event, self._http_event_defaults)
        return cfg


class OpenApiSpecGenerator:
    """Builds an OpenAPI document from a template whose ``$ref``s point into the service.

    Besides local ``#/...`` pointers, a template may use:

    * ``service:Package`` for ``package.json`` and ``service:EndpointPaths``
      for the merged ``Path.yml`` of every endpoint;
    * ``common:<path>`` for ``<schema root>/definitions/<path>.json``;
    * ``endpoint:<name>/<path>`` for ``<path>.json`` in the endpoint's
      ``schema`` directory (``endpoints:`` is accepted too).

    Any of them may carry a ``#/json/pointer`` fragment.  Other references
    are left in place.

    Args:
        context: The service the document describes.
        endpoints: The service's endpoints, from
            :meth:`ServerlessConfigGenerator.load_endpoints`.
        schema_root: Root of the shared schemas; defaults to ``schema``
            under the service root.
    """

    def __init__(
        self,
        context: ServiceContext,
        endpoints: EndpointMapping,
        schema_root: str | Path | None = None,
    ) -> None:
        self.context = context
        self.endpoints = endpoints
        self.schema_root = Path(schema_root) if schema_root else context.root_path / "schema"

    @property
    def definitions_root(self) -> Path:
        return self.schema_root / "definitions"

    def build_spec(self, template: Any, dereference: bool = True) -> Any:
        """Resolve the references in *template* and return the finished document.

        Service, common and endpoint references are always inlined, along
        with any local pointer inside the documents they load.  The
        template's own local pointers are inlined only with *dereference*;
        otherwise they are kept so shared definitions stay shared.

        Raises:
            ConfigError: On an unknown service reference, a missing endpoint
                or file, an unresolvable pointer, or a circular reference.
        """
        logger.info("Building OpenAPI spec (dereference=%s) ...", dereference)
        return self._resolve(template, template, "", dereference, ())

    def build_endpoint_paths(self) -> dict[str, Any]:
        """Merge the path config of every endpoint into one ``paths`` mapping."""
        paths: dict[str, Any] = {}
        for details in self.endpoints.values():
            if details.path_config:
                paths.update(details.path_config)
        return paths

    def _resolve(
        self,
        node: Any,
        document: Any,
        base: str,
        dereference: bool,
        seen: tuple[str, ...],
    ) -> Any:
        if isinstance(node, list):
            return [self._resolve(item, document, base, dereference, seen) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str):
            location, _, pointer = ref.partition("#")
            if location:
                match = _CUSTOM_REF_RE.match(location)
                if match:
                    if ref in seen:
                        raise ConfigError(f"Circular $ref {ref!r}")
                    loaded = self._load_ref(match.group(1).lower(), match.group(2))
                    target = resolve_pointer(loaded, pointer)
                    return self._resolve(target, loaded, location, dereference, (*seen, ref))
                logger.debug("Leaving unrecognized $ref %r in place", ref)
            elif dereference or base:
                key = base + ref
                if key in seen:
                    raise ConfigError(f"Circular $ref {key!r}")
                target = resolve_pointer(document, pointer)
                return self._resolve(target, document, base, dereference, (*seen, key))

        return {
            key: self._resolve(value, document, base, dereference, seen)
            for key, value in node.items()
        }

    def _load_ref(self, kind: str, path: str) -> Any:
        if kind == "service":
            name = path.lower()
            if name == "package":
                return self.context.package_data
            if name == "endpointpaths":
                return self.build_endpoint_paths()
            raise ConfigError(f"Invalid or unrecognized 'service' $ref path: {path!r}")

        if kind == "common":
            return load_document(self.definitions_root / f"{path}.json")

        endpoint_name, _, rel_path = path.partition("/")
        details = find_endpoint(self.endpoints, endpoint_name)
        if details is None:
            raise ConfigError(
                f"Invalid or unrecognized 'endpoint' $ref path: {path!r} (no such endpoint)"
            )
        return load_document(details.schema_root_path / f"{rel_path}.json")
