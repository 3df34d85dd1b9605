"""Front matter: splits the ``---`` block from the body and parses it strictly.

The front matter in agent and skill files looks like YAML but is not: a
description routinely contains unescaped ``key: value`` fragments and quoted
example dialogue.  Parsing is therefore line based.  PyYAML is only used to
decode individual quoted scalars and flow lists.
"""
from __future__ import annotations

import re
from typing import Any

import yaml

from skillscope.core.errors import ParseError, ValidationError
from skillscope.manifests.types import (
    AgentFrontMatter,
    FrontMatter,
    ManifestKind,
    SkillFrontMatter,
)

_DELIMITER = "---"
_KEY_LINE = re.compile(r"^([A-Za-z][A-Za-z0-9_-]*)\s*:(?:\s+(.*?)|\s*)$")
_BLOCK_INDICATOR = re.compile(r"^[|>][+-]?$")

_FIELDS: dict[ManifestKind, tuple[str, ...]] = {
    ManifestKind.AGENT: ("name", "description", "tools", "color", "model"),
    ManifestKind.SKILL: ("name", "description"),
}
_REQUIRED = ("name", "description")

# Keys seen in the wild that carry nothing the resolver uses.
_TOLERATED = frozenset({
    "allowed-tools", "argument-hint", "compatibility", "license",
    "metadata", "model", "tags", "tools", "color", "version",
    "user-invocable", "model-invocable", "disable-model-invocation",
})


def split_front_matter(text: str, source: str | None = None) -> tuple[str | None, str]:
    """Split text into front matter and markdown body.

    Returns ``(None, text)`` when the file has no front matter at all.

    Raises:
        ParseError: If an opening ``---`` has no matching closing line.
    """
    stripped = text.lstrip("\ufeff").lstrip("\n")
    lines = stripped.splitlines(keepends=True)
    if not lines or lines[0].strip() != _DELIMITER:
        return None, text

    for i in range(1, len(lines)):
        if lines[i].strip() == _DELIMITER:
            return "".join(lines[1:i]), "".join(lines[i + 1 :])

    msg = f"Front matter has no closing '---': {source}"
    raise ParseError(msg, source=source)


def parse_front_matter(
    block: str,
    kind: ManifestKind,
    *,
    fallback_name: str,
    source: str | None = None,
) -> tuple[FrontMatter, list[ValidationError]]:
    """Parse a front matter block into the typed record for *kind*.

    Missing required fields do not abort parsing: a ValidationError is
    returned alongside a record filled with fallbacks (``name`` falls back
    to *fallback_name*, ``description`` to the empty string).
    """
    raw, errors = _collect(block, kind, source)

    name = _decode_scalar(raw["name"]).strip() if "name" in raw else ""
    description = _decode_description(raw["description"]) if "description" in raw else ""

    for key, value in zip(_REQUIRED, (name, description), strict=True):
        if not value:
            errors.append(ValidationError(
                f"Front matter missing required field '{key}': {source}",
                source=source,
            ))
    name = name or fallback_name

    if kind is ManifestKind.SKILL:
        return SkillFrontMatter(name=name, description=description), errors

    tools = _decode_list(raw["tools"]) if raw.get("tools") else ()
    color = _decode_scalar(raw["color"]) if raw.get("color") else None
    model = _decode_scalar(raw["model"]) if raw.get("model") else None
    return (
        AgentFrontMatter(
            name=name,
            description=description,
            tools=tools,
            color=color or None,
            model=model or None,
        ),
        errors,
    )


def _collect(
    block: str, kind: ManifestKind, source: str | None
) -> tuple[dict[str, list[str]], list[ValidationError]]:
    """Group front matter lines by key.

    A new field starts on an unindented ``key:`` line whose key is known.
    Unknown keys inside a description are treated as prose, since
    descriptions embed dialogue such as ``user: "..."``.
    """
    fields = _FIELDS[kind]
    raw: dict[str, list[str]] = {}
    errors: list[ValidationError] = []
    current: list[str] | None = None
    current_key: str | None = None

    for line in block.splitlines():
        match = None if line[:1].isspace() else _KEY_LINE.match(line)
        if match is not None:
            key = match.group(1)
            known = key in fields or key in _TOLERATED
            if known or current_key != "description":
                value = match.group(2) or ""
                if key not in fields:
                    current, current_key = [], key
                    continue
                if key in raw:
                    errors.append(ValidationError(
                        f"Duplicate front matter field '{key}' (first value kept): {source}",
                        source=source,
                    ))
                    current, current_key = [], key
                    continue
                current = raw[key] = [value]
                current_key = key
                continue
        if current is not None:
            current.append(line.strip())

    return raw, errors


def _join(lines: list[str]) -> tuple[str, bool]:
    """Join a field's lines; returns (text, is_block_scalar)."""
    first, rest = lines[0].strip(), lines[1:]
    if _BLOCK_INDICATOR.match(first):
        sep = " " if first.startswith(">") else "\n"
        return sep.join(rest).strip(), True
    return "\n".join([first, *rest]).strip(), False


def _decode_scalar(lines: list[str]) -> str:
    text, block = _join(lines)
    if block:
        return text
    return _unquote(text)


def _decode_description(lines: list[str]) -> str:
    text, block = _join(lines)
    if block:
        return text
    if _is_quoted(text):
        return _unquote(text)
    return text.replace("\\n", "\n")


def _decode_list(lines: list[str]) -> tuple[str, ...]:
    text, _ = _join(lines)
    if text.startswith("["):
        try:
            loaded: Any = yaml.safe_load(text)
        except yaml.YAMLError:
            loaded = None
        if isinstance(loaded, list):
            return tuple(str(item).strip() for item in loaded if str(item).strip())
        text = text.strip("[]")
    items: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("- "):
            line = line[2:]
        items.extend(part.strip() for part in line.split(","))
    return tuple(_unquote(item) for item in items if item)


def _is_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'"


def _unquote(text: str) -> str:
    """Decode a quoted YAML scalar; unquoted or undecodable text is kept as is."""
    if not _is_quoted(text):
        return text
    try:
        value = yaml.safe_load(text)
    except yaml.YAMLError:
        return text
    return "" if value is None else str(value)
