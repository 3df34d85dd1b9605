"""Manifest parser: turns one file's bytes into an AgentManifest or SkillManifest."""
from __future__ import annotations

import hashlib
import re
from dataclasses import replace
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from skillscope.core.errors import ParseError, ValidationError
from skillscope.manifests.frontmatter import parse_front_matter, split_front_matter
from skillscope.manifests.types import (
    AgentFrontMatter,
    AgentManifest,
    ManifestKind,
    ReferenceDeclaration,
    SkillManifest,
)
from skillscope.manifests.validator import ManifestValidator
from skillscope.markdown import iter_headings

if TYPE_CHECKING:
    from skillscope.core.errors import SkillscopeError
    from skillscope.manifests.types import Manifest

AGENTS_DIR = "agents"
SKILLS_DIR = "skills"
SKILL_FILENAME = "SKILL.md"

_QUOTED = re.compile(r"\"([^\"\n]+)\"|“([^”\n]+)”")
_REFERENCES_HEADING = re.compile(r"^references\b", re.IGNORECASE)
_BOLD_REFERENCES = re.compile(r"^\s*\*\*references:?\*\*:?\s*$", re.IGNORECASE)
_LINK = re.compile(r"\[([^\]]+)\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")
_BACKTICK_PATH = re.compile(r"`([^`\s]+\.(?:md|txt))`")
_BARE_PATH = re.compile(r"(?<![\w/.\-])((?:\./)?[\w][\w./\-]*\.(?:md|txt))(?![\w/])")
_TITLE_TRIM = " \t-*+:|–—"

_validator = ManifestValidator()


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def manifest_kind(rel_path: PurePosixPath) -> ManifestKind | None:
    """Classify a corpus-relative path by location, never by content."""
    parts = rel_path.parts
    if (
        len(parts) >= 2
        and parts[-2] == AGENTS_DIR
        and rel_path.suffix == ".md"
    ):
        return ManifestKind.AGENT
    if len(parts) >= 3 and parts[-1] == SKILL_FILENAME and parts[-3] == SKILLS_DIR:
        return ManifestKind.SKILL
    return None


def manifest_id(rel_path: PurePosixPath, kind: ManifestKind) -> str:
    if kind is ManifestKind.AGENT:
        return rel_path.stem
    return rel_path.parts[-2]


def parse_manifest(
    data: bytes,
    path: Path,
    rel_path: PurePosixPath,
    *,
    mtime: float = 0.0,
) -> Manifest:
    """Parse raw file bytes into a manifest record.

    Args:
        data: The file contents.
        path: Absolute path of the file.
        rel_path: Path relative to the corpus root; selects the kind.
        mtime: Modification time recorded for ranking tie-breaks.

    Raises:
        ParseError: If the path is not a manifest location, the bytes are
            not UTF-8, or the front matter block is never closed.
    """
    source = rel_path.as_posix()
    kind = manifest_kind(rel_path)
    if kind is None:
        msg = f"Not a manifest location: {source}"
        raise ParseError(msg, source=source)

    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        msg = f"Manifest is not valid UTF-8: {source}"
        raise ParseError(msg, source=source) from exc

    ident = manifest_id(rel_path, kind)
    block, body = split_front_matter(text, source)
    warnings: list[SkillscopeError] = []

    if block is None:
        name, description, opaque = ident, rel_path.name, True
        front = None
    else:
        front, errors = parse_front_matter(
            block, kind, fallback_name=ident, source=source
        )
        warnings.extend(errors)
        name, description, opaque = front.name, front.description, False

    body = body.strip()
    common = {
        "id": ident,
        "name": name,
        "description": description,
        "body": body,
        "source_path": path,
        "rel_path": source,
        "content_hash": content_hash(data),
        "mtime": mtime,
        "trigger_phrases": extract_trigger_phrases(description),
        "opaque": opaque,
    }

    manifest: Manifest
    if kind is ManifestKind.AGENT:
        agent_front = front if isinstance(front, AgentFrontMatter) else None
        manifest = AgentManifest(
            **common,
            tools=agent_front.tools if agent_front else (),
            color=agent_front.color if agent_front else None,
            model=agent_front.model if agent_front else None,
        )
    else:
        manifest = SkillManifest(**common, references=extract_references(body))

    for problem in _validator.validate(manifest):
        warnings.append(ValidationError(problem, source=source))

    if warnings:
        manifest = replace(manifest, warnings=tuple(warnings))
    return manifest


def extract_trigger_phrases(description: str) -> tuple[str, ...]:
    """Return every double-quoted substring of *description*, in order, deduplicated."""
    phrases: list[str] = []
    for match in _QUOTED.finditer(description):
        phrase = (match.group(1) or match.group(2) or "").strip()
        if phrase and phrase not in phrases:
            phrases.append(phrase)
    return tuple(phrases)


def narrative_text(description: str) -> str:
    """The description with its quoted trigger phrases blanked out."""
    return _QUOTED.sub(" ", description)


def extract_references(body: str) -> tuple[ReferenceDeclaration, ...]:
    """Extract (path, title) pairs from the body's References section(s).

    Only the lines between a ``References`` heading and the next heading of
    the same or a higher level are considered, each matched on its own.
    """
    lines = body.splitlines()
    sections: list[tuple[int, int]] = []
    headings = list(iter_headings(body))

    for i, heading in enumerate(headings):
        if not _REFERENCES_HEADING.match(heading.title):
            continue
        end = len(lines)
        for later in headings[i + 1 :]:
            if later.level <= heading.level:
                end = later.line_no
                break
        sections.append((heading.line_no + 1, end))

    if not sections:
        for line_no, line in enumerate(lines):
            if _BOLD_REFERENCES.match(line):
                end = next(
                    (h.line_no for h in headings if h.line_no > line_no),
                    len(lines),
                )
                sections.append((line_no + 1, end))

    found: list[ReferenceDeclaration] = []
    seen: set[str] = set()
    for start, end in sections:
        for line in lines[start:end]:
            for ref in _references_in_line(line):
                if ref.path not in seen:
                    seen.add(ref.path)
                    found.append(ref)
    return tuple(found)


def _references_in_line(line: str) -> list[ReferenceDeclaration]:
    refs: list[ReferenceDeclaration] = []
    links = list(_LINK.finditer(line))
    if links:
        for link in links:
            target = link.group(2)
            if ":" in target.split("/")[0] or target.startswith("#"):
                continue  # external URL or in-page anchor
            path = _normalize(target)
            if path:
                title = _clean_title(link.group(1)) or _stem(path)
                refs.append(ReferenceDeclaration(path=path, title=title))
        return refs

    match = _BACKTICK_PATH.search(line) or _BARE_PATH.search(line)
    if match is None:
        return refs
    path = _normalize(match.group(1))
    remainder = line[: match.start()] + " " + line[match.end() :]
    title = _clean_title(remainder) or _stem(path)
    refs.append(ReferenceDeclaration(path=path, title=title))
    return refs


def _normalize(target: str) -> str:
    target = target.split("#", 1)[0].strip()
    while target.startswith("./"):
        target = target[2:]
    return target


def _clean_title(text: str) -> str:
    text = text.replace("**", "").replace("`", "")
    return " ".join(text.split()).strip(_TITLE_TRIM)


def _stem(path: str) -> str:
    return PurePosixPath(path).stem
