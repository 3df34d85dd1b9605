"""One-hop reference graph for skills, plus a shared document cache.

Every skill's declared references are flattened into a single arena of
:class:`ReferenceNode` entries addressed by ``(skill_id, index)``.  Nodes
hold paths, never other nodes, so a reference can not lead anywhere but
back to text: depth is capped at one hop by construction.
"""
from __future__ import annotations

import hashlib
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import TYPE_CHECKING

from skillscope.core.errors import ReferenceNotFound
from skillscope.core.logging import get_logger

if TYPE_CHECKING:
    from skillscope.manifests.types import Corpus, SkillManifest

logger = get_logger("references")


@dataclass(frozen=True, slots=True)
class ReferenceNode:
    """A declared reference of one skill, resolved against its directory.

    ``byte_size`` is the size seen at scan time, or ``None`` when the file
    was missing or the path escapes the skill directory.
    """

    skill_id: str
    index: int
    path: str
    title: str
    abs_path: Path
    byte_size: int | None = None
    escapes: bool = False

    @property
    def key(self) -> tuple[str, int]:
        return (self.skill_id, self.index)

    @property
    def source_id(self) -> str:
        return f"{self.skill_id}:{self.path}"

    @property
    def available(self) -> bool:
        return self.byte_size is not None and not self.escapes

    def not_found(self, detail: str = "") -> ReferenceNotFound:
        if self.escapes:
            reason = "path escapes the skill directory"
        else:
            reason = detail or "file not found"
        return ReferenceNotFound(
            f"Reference '{self.path}' of skill '{self.skill_id}' is unavailable: {reason}",
            source=self.source_id,
        )


@dataclass(frozen=True, slots=True)
class ReferenceDocument:
    """Loaded content of a reference file."""

    path: str
    title: str
    byte_size: int
    content: str
    content_hash: str


def resolve_node(skill: SkillManifest, index: int, path: str, title: str) -> ReferenceNode:
    """Resolve a declared path against *skill*'s directory and stat it."""
    skill_dir = skill.skill_dir.resolve()
    candidate = (skill_dir / PurePosixPath(path)).resolve()
    if not candidate.is_relative_to(skill_dir):
        return ReferenceNode(skill.id, index, path, title, candidate, escapes=True)
    try:
        byte_size = candidate.stat().st_size if candidate.is_file() else None
    except OSError:
        byte_size = None
    return ReferenceNode(skill.id, index, path, title, candidate, byte_size)


@dataclass(frozen=True, slots=True, eq=False)
class ReferenceGraph:
    """Immutable arena of reference nodes for one snapshot."""

    nodes: tuple[ReferenceNode, ...] = ()
    spans: Mapping[str, tuple[int, int]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def build(cls, corpus: Corpus) -> ReferenceGraph:
        nodes: list[ReferenceNode] = []
        spans: dict[str, tuple[int, int]] = {}
        for skill in sorted(corpus.skills(), key=lambda s: s.id):
            start = len(nodes)
            for index, ref in enumerate(skill.references):
                nodes.append(resolve_node(skill, index, ref.path, ref.title))
            spans[skill.id] = (start, len(nodes))
        graph = cls(nodes=tuple(nodes), spans=MappingProxyType(spans))
        for problem in graph.diagnostics:
            logger.debug("%s", problem)
        return graph

    def __len__(self) -> int:
        return len(self.nodes)

    def references_for(self, skill_id: str) -> tuple[ReferenceNode, ...]:
        start, end = self.spans.get(skill_id, (0, 0))
        return self.nodes[start:end]

    def node(self, skill_id: str, index: int) -> ReferenceNode:
        """Look up a node by its arena address.

        Raises:
            KeyError: If the skill has no reference at *index*.
        """
        refs = self.references_for(skill_id)
        if not 0 <= index < len(refs):
            msg = f"No reference {index} for skill '{skill_id}'"
            raise KeyError(msg)
        return refs[index]

    def find(self, skill_id: str, path: str) -> ReferenceNode | None:
        wanted = normalize_reference_path(path)
        for node in self.references_for(skill_id):
            if normalize_reference_path(node.path) == wanted:
                return node
        return None

    @property
    def diagnostics(self) -> list[ReferenceNotFound]:
        """References that were already unavailable when the graph was built."""
        return [node.not_found() for node in self.nodes if not node.available]


def normalize_reference_path(path: str) -> str:
    text = path.strip().replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    return text


# ── Document cache ───────────────────────────────────────────────────


class ReferenceStore:
    """Thread-safe cache of reference documents keyed by content hash.

    A path maps to the stat signature and hash it had when last read, so a
    repeated load of an unchanged file is a ``stat`` plus a dict lookup.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._paths: dict[Path, tuple[tuple[int, int], str]] = {}
        self._documents: dict[str, ReferenceDocument] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)

    def load(self, node: ReferenceNode) -> ReferenceDocument:
        """Return the document behind *node*, reading it if not cached.

        Raises:
            ReferenceNotFound: If the path escapes the skill directory or
                the file can not be read.
        """
        if node.escapes:
            raise node.not_found()
        try:
            signature = _signature(node.abs_path)
        except OSError as exc:
            raise node.not_found(exc.strerror or "file not found") from exc

        with self._lock:
            cached = self._paths.get(node.abs_path)
            if cached is not None and cached[0] == signature:
                document = self._documents.get(cached[1])
                if document is not None:
                    return _retitle(document, node)

        try:
            data = node.abs_path.read_bytes()
        except OSError as exc:
            raise node.not_found(exc.strerror or "file not found") from exc

        digest = hashlib.sha256(data).hexdigest()
        document = ReferenceDocument(
            path=node.path,
            title=node.title,
            byte_size=len(data),
            content=data.decode("utf-8", errors="replace"),
            content_hash=digest,
        )
        with self._lock:
            self._paths[node.abs_path] = (signature, digest)
            document = self._documents.setdefault(digest, document)
        logger.debug("Loaded reference %s (%d bytes)", node.source_id, len(data))
        return _retitle(document, node)

    def evict_stale(self) -> int:
        """Drop entries whose backing file disappeared or changed.

        Returns the number of evicted paths.
        """
        with self._lock:
            paths = list(self._paths.items())

        stale: list[Path] = []
        for path, (signature, _digest) in paths:
            try:
                current = _signature(path)
            except OSError:
                stale.append(path)
                continue
            if current != signature:
                stale.append(path)

        with self._lock:
            for path in stale:
                self._paths.pop(path, None)
            live = {digest for _sig, digest in self._paths.values()}
            for digest in [d for d in self._documents if d not in live]:
                del self._documents[digest]

        if stale:
            logger.debug("Evicted %d stale reference(s)", len(stale))
        return len(stale)


def _signature(path: Path) -> tuple[int, int]:
    st = path.stat()
    return (st.st_mtime_ns, st.st_size)


def _retitle(document: ReferenceDocument, node: ReferenceNode) -> ReferenceDocument:
    # identical content may be declared under different paths or titles
    if document.path == node.path and document.title == node.title:
        return document
    return replace(document, path=node.path, title=node.title)
