"""Rich-based formatters for svcfacade output."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from svcfacade.models import HTTP_METHODS, EndpointDescriptor, FunctionRecord, PathNode

_MAX_VALUE_LEN = 60

_METHOD_STYLES = {
    "get": "bold green",
    "post": "bold yellow",
    "patch": "bold cyan",
    "delete": "bold red",
}


def _truncate(value: str) -> str:
    if len(value) <= _MAX_VALUE_LEN:
        return value
    return value[:_MAX_VALUE_LEN] + "…"


def _endpoint_label(
    endpoint: EndpointDescriptor,
    functions: Mapping[str, FunctionRecord] | None,
) -> Text:
    """Build a Rich :class:`Text` label for one method of a path."""
    label = Text()
    label.append(endpoint.method.upper(), style=_METHOD_STYLES.get(endpoint.method, "bold"))
    label.append(f"  {endpoint.name}", style="italic")
    label.append(f"  [{endpoint.service}]", style="dim")

    if functions is not None and endpoint.version_hash not in functions:
        label.append("  (no matching function)", style="dim red")
    if endpoint.description:
        label.append(f"  {_truncate(endpoint.description)}", style="dim italic")
    return label


def _add_node(
    rich_tree: Tree,
    node: PathNode,
    functions: Mapping[str, FunctionRecord] | None,
) -> None:
    """Recursively add *node*'s methods and children to *rich_tree*."""
    for method in HTTP_METHODS:
        if method in node.endpoints:
            rich_tree.add(_endpoint_label(node.endpoints[method], functions))
    for child in sorted(node.children.values(), key=lambda n: n.name):
        branch = rich_tree.add(Text(child.name, style="bold blue"))
        _add_node(branch, child, functions)


def render_endpoint_tree(
    root: PathNode,
    functions: Mapping[str, FunctionRecord] | None = None,
) -> Tree:
    """Render the endpoint path tree using Rich.

    Args:
        root: Root :class:`PathNode` (as returned by :func:`~svcfacade.tree.build_path_tree`).
        functions: When given, endpoints whose version hash has no function
            are flagged.

    Returns:
        A :class:`rich.tree.Tree` ready to be printed.
    """
    rich_root = Tree(Text(root.path, style="bold white"))
    _add_node(rich_root, root, functions)
    return rich_root


def render_resource_table(template: Mapping[str, Any]) -> Table:
    """Render the resources of a CloudFormation template as a table.

    Returns:
        A :class:`rich.table.Table` with one row per resource, sorted by type
        then logical id.
    """
    resources: Mapping[str, Any] = template.get("Resources", {})
    table = Table(title=f"[bold]Facade template:[/] {len(resources)} resource(s)")
    table.add_column("Logical ID", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Depends On", style="dim", justify="right")

    for ref_name, resource in sorted(resources.items(), key=lambda kv: (kv[1]["Type"], kv[0])):
        depends_on = resource.get("DependsOn") or []
        table.add_row(ref_name, resource["Type"], str(len(depends_on)) if depends_on else "")

    return table
