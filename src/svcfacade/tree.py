"""Build a path tree from an endpoint map."""

from __future__ import annotations

import fnmatch

from svcfacade.assembler import path_segments
from svcfacade.endpoints import EndpointMap
from svcfacade.models import PathNode


def normalize_path(path: str) -> str:
    """Return *path* as the facade serves it: one leading slash, no empty segments.

    ``"users/"``, ``"/users"`` and ``"//users"`` all become ``"/users"``; an
    empty path becomes ``"/"``.
    """
    return "/" + "/".join(path_segments(path))


def filter_endpoints(endpoints: EndpointMap, pattern: str) -> EndpointMap:
    """Keep only the paths whose normalized form matches the glob *pattern*.

    Serverless paths are often declared without a leading slash, so matching
    is done on :func:`normalize_path` rather than the raw key.  Endpoints on
    ``/`` are kept only when ``/`` itself matches.
    """
    return {
        path: methods
        for path, methods in endpoints.items()
        if fnmatch.fnmatchcase(normalize_path(path), pattern)
    }


def build_path_tree(endpoints: EndpointMap, pattern: str | None = None) -> PathNode:
    """Build a :class:`PathNode` tree rooted at ``/`` from *endpoints*.

    Every path segment becomes a node; the node for a full endpoint path
    carries that path's methods in ``endpoints``.  Shared prefixes share nodes.
    With *pattern*, only matching paths are added (see :func:`filter_endpoints`),
    so intermediate nodes appear without methods.
    """
    if pattern:
        endpoints = filter_endpoints(endpoints, pattern)

    root = PathNode(name="/", path="/")
    for path, methods in endpoints.items():
        current = root
        for segment in path_segments(path):
            if segment not in current.children:
                current.children[segment] = PathNode(
                    name=segment, path=f"{current.path.rstrip('/')}/{segment}"
                )
            current = current.children[segment]
        current.endpoints.update(methods)

    return root
