"""Immutable snapshots and the manager that rescans and publishes them.

A rescan reads every manifest file on a fixed-size thread pool.  Files
whose content hash is unchanged reuse the previously parsed manifest, and
the capability index is updated only for manifests that were added,
changed or removed.  The new snapshot is published with a single
assignment under a lock once every worker has finished; readers holding a
lease on an older snapshot keep using it until they release it.
"""
from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from skillscope.core.config import ResolverConfig
from skillscope.core.errors import InternalError, ParseError, SkillscopeError
from skillscope.core.logging import get_logger
from skillscope.index import CapabilityIndex
from skillscope.manifests.loader import (
    discover_manifest_files,
    load_source,
    read_source,
    resolve_conflicts,
)
from skillscope.manifests.types import Corpus
from skillscope.references import ReferenceGraph, ReferenceStore

if TYPE_CHECKING:
    from skillscope.manifests.types import Manifest

logger = get_logger("snapshot")


@dataclass(frozen=True, slots=True)
class ScannedFile:
    """Outcome of scanning one manifest file: a manifest or a parse error."""

    rel_path: str
    content_hash: str
    mtime: float
    manifest: Manifest | None = None
    error: ParseError | None = None


@dataclass(frozen=True, slots=True, eq=False)
class Snapshot:
    """A published, never-mutated view of the corpus and its index."""

    version: int
    corpus: Corpus
    index: CapabilityIndex
    references: ReferenceGraph
    files: Mapping[str, ScannedFile] = field(
        default_factory=lambda: MappingProxyType({})
    )
    created_at: float = 0.0

    @property
    def warnings(self) -> list[SkillscopeError]:
        return [*self.corpus.warnings, *self.references.diagnostics]


def scan_file(
    path: Path, root: Path, previous: Mapping[str, ScannedFile]
) -> ScannedFile:
    """Read one file and parse it unless its content hash is unchanged.

    Runs on a worker thread; never raises ParseError.
    """
    rel = path.relative_to(root).as_posix()
    try:
        source = read_source(path, root)
    except ParseError as exc:
        return ScannedFile(rel, "", 0.0, error=exc)

    prior = previous.get(rel)
    if prior is not None and prior.content_hash == source.content_hash:
        if prior.mtime == source.mtime:
            return prior
        manifest = prior.manifest
        if manifest is not None:
            manifest = replace(manifest, mtime=source.mtime)
        return replace(prior, mtime=source.mtime, manifest=manifest)

    try:
        manifest = load_source(source)
    except ParseError as exc:
        logger.warning("Failed to load manifest from %s: %s", rel, exc)
        return ScannedFile(rel, source.content_hash, source.mtime, error=exc)
    return ScannedFile(rel, source.content_hash, source.mtime, manifest=manifest)


class SnapshotManager:
    """Owns the current snapshot, the rescan pool and the reference cache."""

    def __init__(
        self,
        root: Path | str | None = None,
        config: ResolverConfig | None = None,
    ) -> None:
        self._config = config or ResolverConfig()
        self._root = Path(root) if root is not None else self._config.corpus_path
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.workers,
            thread_name_prefix="skillscope-scan",
        )
        self._store = ReferenceStore()
        self._rescan_lock = asyncio.Lock()
        self._lock = threading.Lock()
        self._current: Snapshot | None = None
        self._leases: dict[int, int] = {}
        self._retained: dict[int, Snapshot] = {}

    # ── Properties ───────────────────────────────────────────────────

    @property
    def root(self) -> Path:
        return self._root

    @property
    def config(self) -> ResolverConfig:
        return self._config

    @property
    def store(self) -> ReferenceStore:
        return self._store

    @property
    def current(self) -> Snapshot | None:
        return self._current

    def lease_count(self, version: int) -> int:
        with self._lock:
            return self._leases.get(version, 0)

    @property
    def retained_versions(self) -> tuple[int, ...]:
        """Superseded snapshots still held by at least one lease."""
        with self._lock:
            return tuple(sorted(self._retained))

    # ── Leases ───────────────────────────────────────────────────────

    @contextmanager
    def acquire(self) -> Iterator[Snapshot]:
        """Lease the current snapshot for the duration of the block.

        Raises:
            InternalError: If nothing has been published yet.
        """
        with self._lock:
            snapshot = self._current
            if snapshot is None:
                msg = "No snapshot has been published; run a rescan first"
                raise InternalError(msg)
            self._leases[snapshot.version] = self._leases.get(snapshot.version, 0) + 1
        try:
            yield snapshot
        finally:
            self._release(snapshot)

    def _release(self, snapshot: Snapshot) -> None:
        with self._lock:
            remaining = self._leases.get(snapshot.version, 1) - 1
            if remaining > 0:
                self._leases[snapshot.version] = remaining
                return
            self._leases.pop(snapshot.version, None)
            if self._retained.pop(snapshot.version, None) is not None:
                logger.debug("Released snapshot v%d", snapshot.version)

    def _publish(self, snapshot: Snapshot) -> None:
        with self._lock:
            previous = self._current
            self._current = snapshot
            if previous is not None and self._leases.get(previous.version, 0) > 0:
                self._retained[previous.version] = previous
        logger.info(
            "Published snapshot v%d (%d manifest(s), %d reference(s))",
            snapshot.version,
            len(snapshot.corpus),
            len(snapshot.references),
        )

    # ── Rescan ───────────────────────────────────────────────────────

    async def rescan(self) -> Snapshot:
        """Scan the corpus and publish a new snapshot if anything changed.

        Only one rescan runs at a time.  A rescan that exceeds the soft
        timeout is abandoned with a warning and the previous snapshot stays
        current.

        Raises:
            InternalError: If the index fails verification, the scan fails
                unexpectedly, or the very first scan times out.
        """
        async with self._rescan_lock:
            timeout = self._config.rescan_timeout_seconds
            try:
                return await asyncio.wait_for(self._rescan(), timeout=timeout)
            except TimeoutError as exc:
                if self._current is None:
                    msg = f"Initial scan of {self._root} did not finish within {timeout}s"
                    raise InternalError(msg) from exc
                logger.warning(
                    "Rescan of %s did not finish within %ss, keeping snapshot v%d",
                    self._root,
                    timeout,
                    self._current.version,
                )
                return self._current
            except InternalError:
                raise
            except Exception as exc:
                logger.exception("Rescan of %s failed", self._root)
                msg = f"Rescan of {self._root} failed: {exc}"
                raise InternalError(msg) from exc

    async def _rescan(self) -> Snapshot:
        loop = asyncio.get_running_loop()
        root = self._root.expanduser().resolve()
        previous = self._current
        previous_files = previous.files if previous is not None else MappingProxyType({})

        paths = await loop.run_in_executor(self._executor, discover_manifest_files, root)
        scanned = await asyncio.gather(*(
            loop.run_in_executor(self._executor, scan_file, path, root, previous_files)
            for path in paths
        ))
        files = {f.rel_path: f for f in sorted(scanned, key=lambda f: f.rel_path)}

        winners, conflicts = resolve_conflicts(
            f.manifest for f in files.values() if f.manifest is not None
        )
        diagnostics = [f.error for f in files.values() if f.error is not None]
        corpus = Corpus.of(winners, conflicts, diagnostics)

        references = await loop.run_in_executor(self._executor, ReferenceGraph.build, corpus)
        evicted = await loop.run_in_executor(self._executor, self._store.evict_stale)

        if previous is not None and _unchanged(previous, files, references):
            logger.debug("Corpus unchanged, keeping snapshot v%d", previous.version)
            return previous

        index = _update_index(previous, corpus)
        problems = index.verify()
        if problems:
            msg = f"Capability index failed verification: {'; '.join(problems[:5])}"
            raise InternalError(msg)

        snapshot = Snapshot(
            version=previous.version + 1 if previous is not None else 1,
            corpus=corpus,
            index=index,
            references=references,
            files=MappingProxyType(files),
            created_at=time.time(),
        )
        if evicted:
            logger.debug("Evicted %d cached reference(s) during rescan", evicted)
        self._publish(snapshot)
        return snapshot

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def _unchanged(
    previous: Snapshot, files: Mapping[str, ScannedFile], references: ReferenceGraph
) -> bool:
    def signature(entries: Mapping[str, ScannedFile]) -> dict[str, tuple[str, float]]:
        return {rel: (f.content_hash, f.mtime) for rel, f in entries.items()}

    return (
        signature(previous.files) == signature(files)
        and previous.references.nodes == references.nodes
    )


def _update_index(previous: Snapshot | None, corpus: Corpus) -> CapabilityIndex:
    """Apply only the manifest-level differences to the previous index."""
    if previous is None:
        return CapabilityIndex.build(corpus)

    index = previous.index
    old = previous.corpus
    removed = [manifest_id for manifest_id in old.ids if manifest_id not in corpus]
    for manifest_id in removed:
        index = index.without_manifest(manifest_id)

    changed = 0
    for manifest in corpus:
        prior = old.get(manifest.id)
        if (
            prior is None
            or prior.content_hash != manifest.content_hash
            or prior.rel_path != manifest.rel_path
        ):
            index = index.with_manifest(manifest)
            changed += 1

    logger.debug(
        "Index update: %d removed, %d added or changed, %d reused",
        len(removed),
        changed,
        len(corpus) - changed,
    )
    return index
