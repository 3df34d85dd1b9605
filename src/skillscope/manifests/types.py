"""Manifest types: typed front matter, agent/skill records, and the corpus."""
from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import ClassVar

from skillscope.core.errors import ConflictError, SkillscopeError


class ManifestKind(enum.Enum):
    AGENT = "agent"
    SKILL = "skill"


# ── Front matter ─────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AgentFrontMatter:
    """Front matter of an ``agents/<id>.md`` file."""

    name: str
    description: str
    tools: tuple[str, ...] = ()
    color: str | None = None
    model: str | None = None


@dataclass(frozen=True, slots=True)
class SkillFrontMatter:
    """Front matter of a ``skills/<id>/SKILL.md`` file."""

    name: str
    description: str


FrontMatter = AgentFrontMatter | SkillFrontMatter


# ── Manifests ────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ReferenceDeclaration:
    """A (relative path, display title) pair from a skill's References section."""

    path: str
    title: str


@dataclass(frozen=True, slots=True)
class AgentManifest:
    """A parsed agent persona.

    ``id`` comes from the file stem, never from the front matter, so two
    files can declare the same ``name`` without colliding.
    """

    kind: ClassVar[ManifestKind] = ManifestKind.AGENT

    id: str
    name: str
    description: str
    body: str
    source_path: Path
    rel_path: str
    content_hash: str
    mtime: float = 0.0
    tools: tuple[str, ...] = ()
    color: str | None = None
    model: str | None = None
    trigger_phrases: tuple[str, ...] = ()
    warnings: tuple[SkillscopeError, ...] = ()
    opaque: bool = False

    @property
    def depth(self) -> int:
        """Number of path segments below the corpus root."""
        return len(self.rel_path.split("/"))


@dataclass(frozen=True, slots=True)
class SkillManifest:
    """A parsed skill with its declared (not yet loaded) references."""

    kind: ClassVar[ManifestKind] = ManifestKind.SKILL

    id: str
    name: str
    description: str
    body: str
    source_path: Path
    rel_path: str
    content_hash: str
    mtime: float = 0.0
    references: tuple[ReferenceDeclaration, ...] = ()
    trigger_phrases: tuple[str, ...] = ()
    warnings: tuple[SkillscopeError, ...] = ()
    opaque: bool = False

    @property
    def depth(self) -> int:
        """Number of path segments below the corpus root."""
        return len(self.rel_path.split("/"))

    @property
    def skill_dir(self) -> Path:
        return self.source_path.parent


Manifest = AgentManifest | SkillManifest


# ── Corpus ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True, eq=False)
class Corpus:
    """All manifests known at one point in time, keyed by unique id."""

    manifests: Mapping[str, Manifest] = field(
        default_factory=lambda: MappingProxyType({})
    )
    conflicts: tuple[ConflictError, ...] = ()
    diagnostics: tuple[SkillscopeError, ...] = ()

    @classmethod
    def of(
        cls,
        manifests: Iterable[Manifest],
        conflicts: Iterable[ConflictError] = (),
        diagnostics: Iterable[SkillscopeError] = (),
    ) -> Corpus:
        """Build a corpus; ids must already be unique."""
        by_id: dict[str, Manifest] = {}
        for manifest in sorted(manifests, key=lambda m: m.id):
            if manifest.id in by_id:
                msg = f"Duplicate manifest id in corpus: {manifest.id}"
                raise ValueError(msg)
            by_id[manifest.id] = manifest
        return cls(
            manifests=MappingProxyType(by_id),
            conflicts=tuple(conflicts),
            diagnostics=tuple(diagnostics),
        )

    def get(self, manifest_id: str) -> Manifest | None:
        return self.manifests.get(manifest_id)

    def __contains__(self, manifest_id: object) -> bool:
        return manifest_id in self.manifests

    def __len__(self) -> int:
        return len(self.manifests)

    def __iter__(self) -> Iterator[Manifest]:
        return iter(self.manifests.values())

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self.manifests)

    def agents(self) -> list[AgentManifest]:
        return [m for m in self if isinstance(m, AgentManifest)]

    def skills(self) -> list[SkillManifest]:
        return [m for m in self if isinstance(m, SkillManifest)]

    @property
    def warnings(self) -> list[SkillscopeError]:
        """Every recorded problem: diagnostics, conflicts, manifest warnings."""
        found: list[SkillscopeError] = [*self.diagnostics, *self.conflicts]
        for manifest in self:
            found.extend(manifest.warnings)
        return found
