"""Resolve HTTP endpoints from the serverless specs of many services."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from svcfacade.models import HTTP_METHODS, EndpointDescriptor, ServiceBundle

logger = logging.getLogger(__name__)

SUPPORTED_INTEGRATION = "lambda-proxy"
_VERSION_HASH_RE = re.compile(r"^[0-9a-fA-F]{32}$")

EndpointMap = dict[str, dict[str, EndpointDescriptor]]


@dataclass
class EndpointMapResult:
    """The endpoint map plus the number of HTTP events that were accepted."""

    endpoints: EndpointMap = field(default_factory=dict)
    resolved_count: int = 0


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def _function_rejection(func: Any) -> str | None:
    """Return why a function entry cannot be aggregated, or ``None``."""
    if not isinstance(func, dict) or not isinstance(func.get("environment"), dict):
        return "no environment variables defined"
    version_hash = func["environment"].get("COREFW_VERSION_HASH")
    if not isinstance(version_hash, str) or not _VERSION_HASH_RE.match(version_hash):
        return "missing or invalid COREFW_VERSION_HASH environment variable"
    if not isinstance(func.get("events"), list) or not func["events"]:
        return "no events are defined for this function"
    return None


def _event_rejection(http: Any) -> str | None:
    """Return why an ``http`` event cannot be aggregated, or ``None``."""
    if not isinstance(http, dict):
        return "the 'http' block is missing"
    if not _non_empty_str(http.get("path")):
        return "the 'path' is undefined or invalid"
    method = http.get("method")
    if not _non_empty_str(method):
        return "the 'method' is undefined or invalid"
    if method not in HTTP_METHODS:
        return f"the 'method' specified ({method!r}) is not supported"
    integration = http.get("integration")
    if not _non_empty_str(integration):
        return "the 'integration' is undefined or invalid"
    if integration != SUPPORTED_INTEGRATION:
        return f"the 'integration' specified ({integration!r}) is not supported"
    return None


def build_endpoint_map(bundles: Iterable[ServiceBundle]) -> EndpointMapResult:
    """Build ``{path: {method: EndpointDescriptor}}`` from service bundles.

    Functions and events that fail validation are logged and skipped.  When two
    functions declare the same path and method, the one processed last wins.

    Args:
        bundles: Service bundles, in processing order.

    Returns:
        An :class:`EndpointMapResult`.
    """
    result = EndpointMapResult()
    logger.info("Resolving Endpoint Data ...")

    for bundle in bundles:
        for short_name, func in bundle.functions.items():
            reason = _function_rejection(func)
            if reason:
                logger.warning(
                    "Skipping function '%s' from service '%s'; %s.",
                    short_name, bundle.name, reason,
                )
                continue

            function_name = func.get("name") if _non_empty_str(func.get("name")) else short_name
            version_hash = func["environment"]["COREFW_VERSION_HASH"].lower()
            valid_events = 0

            for event in func["events"]:
                # Non-HTTP events (schedule, sns, ...) are not relevant here.
                if not isinstance(event, dict) or "http" not in event:
                    continue
                http = event["http"]
                reason = _event_rejection(http)
                if reason:
                    logger.warning(
                        "Invalid HTTP event found for '%s' from service '%s'; %s.",
                        short_name, bundle.name, reason,
                    )
                    continue

                method = http["method"]
                path = http["path"]
                logger.info(
                    "... Identified Path: '%s %s' -> '%s'", method.upper(), path, function_name
                )
                result.endpoints.setdefault(path, {})[method] = EndpointDescriptor(
                    name=function_name,
                    short_name=short_name,
                    description=func.get("description"),
                    path=path,
                    method=method,
                    service=bundle.name,
                    version_hash=version_hash,
                )
                valid_events += 1
                result.resolved_count += 1

            if valid_events == 0:
                logger.warning(
                    "Skipping function '%s' from service '%s'; no valid HTTP events were found.",
                    short_name, bundle.name,
                )

    logger.info("Resolved %d endpoints", result.resolved_count)
    return result
