"""Small SQL text helpers shared by the executors and driver adapter."""

from __future__ import annotations

import re
from typing import Any, Mapping

PREVIEW_LENGTH = 100

_BRACKETS = re.compile(r"^\[|\]$")
_UNSAFE_IDENTIFIER_CHARS = re.compile(r"[^A-Za-z0-9_]")
# String literals and quoted identifiers are matched first so placeholders inside them survive.
_PLACEHOLDER = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|(?<![@\w])@(\w+)")


def sanitize_identifier(identifier: str | None) -> str:
    """Strip bracket delimiters and every character outside ``[A-Za-z0-9_]``."""

    if not identifier:
        return ""
    identifier = _BRACKETS.sub("", identifier)
    return _UNSAFE_IDENTIFIER_CHARS.sub("", identifier)


def preview(statement: str, limit: int = PREVIEW_LENGTH) -> str:
    """Shorten a statement for log output."""

    if len(statement) > limit:
        return f"{statement[:limit]}..."
    return statement


def bind_named_parameters(
    statement: str,
    parameters: Mapping[str, Any] | None,
) -> tuple[str, list[Any]]:
    """Rewrite ``@name`` placeholders into positional ``$n`` arguments.

    Each distinct name is bound once, in order of first appearance. Names that
    are not present in *parameters* (``@@ROWCOUNT``-style variables, unrelated
    tokens) are left untouched.
    """

    if not parameters:
        return statement, []
    positions: dict[str, int] = {}
    args: list[Any] = []

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name is None or name not in parameters:
            return match.group(0)
        if name not in positions:
            args.append(parameters[name])
            positions[name] = len(args)
        return f"${positions[name]}"

    return _PLACEHOLDER.sub(_replace, statement), args


__all__ = ["PREVIEW_LENGTH", "bind_named_parameters", "preview", "sanitize_identifier"]
