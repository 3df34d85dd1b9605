"""Corpus discovery and loading from the filesystem."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from skillscope.core.errors import ConflictError, ParseError
from skillscope.core.logging import get_logger
from skillscope.manifests.parser import content_hash, manifest_kind, parse_manifest
from skillscope.manifests.types import Corpus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from skillscope.core.errors import SkillscopeError
    from skillscope.manifests.types import Manifest

logger = get_logger("manifests.loader")


@dataclass(frozen=True, slots=True)
class SourceFile:
    """Raw bytes of one manifest file plus the metadata the scan needs."""

    path: Path
    rel_path: PurePosixPath
    data: bytes
    content_hash: str
    mtime: float


def discover_manifest_files(root: Path) -> list[Path]:
    """Return every agent and skill manifest under *root*, sorted.

    Hidden directories are skipped.  Kind is decided by location:
    ``**/agents/*.md`` and ``**/skills/<name>/SKILL.md``.
    """
    resolved = root.expanduser().resolve()
    if not resolved.is_dir():
        logger.debug("Skipping non-existent corpus root: %s", resolved)
        return []

    found: list[Path] = []
    for path in resolved.rglob("*.md"):
        rel = PurePosixPath(path.relative_to(resolved).as_posix())
        if any(part.startswith(".") for part in rel.parts):
            continue
        if manifest_kind(rel) is not None and path.is_file():
            found.append(path)
    return sorted(found)


def read_source(path: Path, root: Path) -> SourceFile:
    """Read and hash one manifest file.

    Raises:
        ParseError: If the file cannot be read.
    """
    resolved_root = root.expanduser().resolve()
    rel = PurePosixPath(path.relative_to(resolved_root).as_posix())
    try:
        data = path.read_bytes()
        mtime = path.stat().st_mtime
    except OSError as exc:
        msg = f"Cannot read manifest {rel}: {exc}"
        raise ParseError(msg, source=rel.as_posix()) from exc
    return SourceFile(
        path=path,
        rel_path=rel,
        data=data,
        content_hash=content_hash(data),
        mtime=mtime,
    )


def load_source(source: SourceFile) -> Manifest:
    """Parse an already-read source file.

    Raises:
        ParseError: If the manifest is malformed.
    """
    return parse_manifest(
        source.data, source.path, source.rel_path, mtime=source.mtime
    )


def resolve_conflicts(
    manifests: Iterable[Manifest],
) -> tuple[list[Manifest], list[ConflictError]]:
    """Keep one manifest per id.

    The manifest whose path has more directory segments wins; equal depth
    falls back to the lexicographically smaller relative path.  Losers are
    returned as ConflictErrors.
    """
    by_id: dict[str, list[Manifest]] = {}
    for manifest in manifests:
        by_id.setdefault(manifest.id, []).append(manifest)

    winners: list[Manifest] = []
    conflicts: list[ConflictError] = []
    for manifest_id in sorted(by_id):
        candidates = sorted(by_id[manifest_id], key=lambda m: (-m.depth, m.rel_path))
        winner = candidates[0]
        winners.append(winner)
        for loser in candidates[1:]:
            logger.warning(
                "Duplicate manifest id '%s' at %s (keeping %s)",
                manifest_id,
                loser.rel_path,
                winner.rel_path,
            )
            conflicts.append(ConflictError(
                f"Duplicate manifest id '{manifest_id}': {loser.rel_path} "
                f"excluded in favour of {winner.rel_path}",
                source=loser.rel_path,
                manifest_id=manifest_id,
                winner=winner.rel_path,
            ))
    return winners, conflicts


class CorpusLoader:
    """Discovers and loads a corpus sequentially.

    The snapshot manager performs the same steps on a worker pool; this
    loader is the single-threaded path used by tooling and tests.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def load(self) -> Corpus:
        """Scan the root and build a Corpus.

        Files that fail to parse are logged and recorded as diagnostics;
        the scan never fails outright.
        """
        manifests: list[Manifest] = []
        diagnostics: list[SkillscopeError] = []

        for path in discover_manifest_files(self._root):
            try:
                manifests.append(load_source(read_source(path, self._root)))
            except ParseError as exc:
                logger.warning("Failed to load manifest from %s: %s", path, exc)
                diagnostics.append(exc)

        winners, conflicts = resolve_conflicts(manifests)
        logger.info("Loaded %d manifest(s)", len(winners))
        return Corpus.of(winners, conflicts, diagnostics)
