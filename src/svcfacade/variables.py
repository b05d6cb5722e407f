"""Recursive ``${name}`` substitution over JSON/YAML-shaped data."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def token(name: str) -> str:
    """Return the placeholder token for variable *name*, e.g. ``${name}``."""
    return "${" + name + "}"


def substitute(tree: Any, variables: Mapping[str, Any]) -> Any:
    """Return a copy of *tree* with ``${name}`` placeholders replaced.

    Dicts and lists are walked recursively (dict keys are left alone), strings
    are scanned for placeholders and every other value is returned verbatim.

    A string-valued variable is spliced into the string at every occurrence of
    its token.  A variable with any other value replaces the *whole* string as
    soon as its token is present, and no further variables are applied to that
    string.  Tokens with no matching variable are left in place.

    Args:
        tree: Any JSON-compatible value.
        variables: Variable name -> value.  Applied in mapping order.

    Returns:
        A new tree; *tree* itself is never mutated.
    """
    if isinstance(tree, dict):
        return {key: substitute(value, variables) for key, value in tree.items()}
    if isinstance(tree, (list, tuple)):
        return [substitute(item, variables) for item in tree]
    if isinstance(tree, str):
        return _substitute_string(tree, variables)
    return tree


def _substitute_string(text: str, variables: Mapping[str, Any]) -> Any:
    result = text
    for name, value in variables.items():
        marker = token(name)
        if marker not in result:
            continue
        if not isinstance(value, str):
            return value
        # Single pass per variable: replacement text is not re-scanned, so a
        # value containing its own token cannot loop forever.
        result = result.replace(marker, value)
    return result
