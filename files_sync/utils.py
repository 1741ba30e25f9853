"""Small helpers shared by the config loader, file resolver and sync loop."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Optional

from jinja2 import Environment, StrictUndefined
from jinja2.exceptions import TemplateError

_LEADING_INVALID = re.compile(r"^[./]+")
_SLASHES = re.compile(r"/+")
_INVALID_CHARS = re.compile(r"[@{\\~^:?*\[\]]+")
_TRAILING_DOTS = re.compile(r"\.+$")


def convert_valid_branch_name(value: str) -> str:
    """Turn an arbitrary string into a valid git branch name.

    Example:
        >>> convert_valid_branch_name("octo/repo")
        'octo-repo'
    """
    name = value
    while True:
        converted = name.strip()
        converted = _LEADING_INVALID.sub("", converted)
        converted = _SLASHES.sub("-", converted)
        converted = _INVALID_CHARS.sub("", converted)
        converted = _TRAILING_DOTS.sub("", converted)
        # removing characters can expose a new leading or trailing dot
        if converted == name:
            return converted
        name = converted


def split_commit_message(message: str) -> tuple[str, Optional[str]]:
    """Split a commit message into its headline and body.

    The body is None for a single-line message.
    """
    headline, _, body = message.partition("\n")
    if not body:
        return headline, None
    return headline, body


def deep_merge(left: Mapping[str, Any], right: Mapping[str, Any]) -> dict[str, Any]:
    """Merge two partial config mappings, right-biased and recursive.

    Nested mappings are merged key by key. Any other value present on the
    right, lists included, replaces the left one. Neither input is mutated.
    """
    merged: dict[str, Any] = dict(left)
    for key, value in right.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        elif isinstance(value, Mapping):
            merged[key] = deep_merge({}, value)
        elif isinstance(value, list):
            merged[key] = list(value)
        else:
            merged[key] = value
    return merged


_STRING_ENVIRONMENT = Environment(undefined=StrictUndefined, keep_trailing_newline=True)

# file contents must leave GitHub Actions ${{ ... }} expressions untouched
_FILE_ENVIRONMENT = Environment(
    variable_start_string="<%=",
    variable_end_string="%>",
    block_start_string="<%",
    block_end_string="%>",
    comment_start_string="<%#",
    comment_end_string="%>",
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def _render(environment: Environment, source: str, context: Mapping[str, Any]) -> str:
    try:
        return environment.from_string(source).render(dict(context))
    except TemplateError as e:
        raise ValueError(f"Failed to render template: {e}") from e


def render_template(source: str, context: Mapping[str, Any]) -> str:
    """Render a Jinja2 template string against a variable map.

    Used for branch names, commit messages and pull request text.

    Raises:
        ValueError: If the template is malformed or references an undefined variable
    """
    return _render(_STRING_ENVIRONMENT, source, context)


def render_file_template(source: str, context: Mapping[str, Any]) -> str:
    """Render synced file contents written with ``<%= %>`` and ``<% %>`` markers.

    ``{{ }}`` and ``${{ }}`` pass through as plain text.

    Raises:
        ValueError: If the template is malformed or references an undefined variable
    """
    return _render(_FILE_ENVIRONMENT, source, context)
