"""Tests for the snapshot manager: rescans, reuse, leases and timeouts."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path

import pytest
from conftest import ANGULAR_EXPERT, FIXED_MTIME, write_file

from skillscope.core.config import ResolverConfig
from skillscope.core.errors import InternalError
from skillscope.index import CapabilityIndex
from skillscope.snapshot import SnapshotManager


class TestRescan:
    async def test_initial_scan(self, manager: SnapshotManager) -> None:
        snapshot = await manager.rescan()

        assert snapshot.version == 1
        assert manager.current is snapshot
        assert snapshot.corpus.ids == ("angular-expert", "angular-state", "react-expert")
        assert len(snapshot.references) == 2
        assert snapshot.index.manifest_ids == snapshot.corpus.ids
        assert snapshot.warnings == []

    async def test_unchanged_corpus_keeps_snapshot(self, manager: SnapshotManager) -> None:
        first = await manager.rescan()
        second = await manager.rescan()
        assert second is first
        assert second.version == 1

    async def test_changed_file_is_reparsed_others_reused(
        self, manager: SnapshotManager, corpus_root: Path
    ) -> None:
        first = await manager.rescan()
        write_file(
            corpus_root / "agents" / "angular-expert.md",
            ANGULAR_EXPERT.replace("signals", "zoneless change detection"),
            mtime=FIXED_MTIME + 60,
        )

        second = await manager.rescan()

        assert second.version == 2
        assert second.corpus.get("react-expert") is first.corpus.get("react-expert")
        assert second.index.terms_for("react-expert") is first.index.terms_for("react-expert")
        assert second.corpus.get("angular-expert") is not first.corpus.get("angular-expert")
        assert {p.manifest_id for p in second.index.postings("zoneless")} == {"angular-expert"}
        assert second.index.verify() == []

    async def test_deleted_file_drops_out(
        self, manager: SnapshotManager, corpus_root: Path
    ) -> None:
        await manager.rescan()
        (corpus_root / "agents" / "react-expert.md").unlink()

        snapshot = await manager.rescan()

        assert "react-expert" not in snapshot.corpus
        assert "react-expert" not in snapshot.index
        assert snapshot.index.postings("hooks") == ()

    async def test_incremental_index_equals_full_build(
        self, manager: SnapshotManager, corpus_root: Path
    ) -> None:
        await manager.rescan()
        write_file(
            corpus_root / "agents" / "vue-expert.md",
            "---\nname: vue-expert\ndescription: Vue composition API\n---\nBody.\n",
        )
        (corpus_root / "agents" / "react-expert.md").unlink()

        snapshot = await manager.rescan()
        full = CapabilityIndex.build(snapshot.corpus)

        assert snapshot.index.manifest_ids == full.manifest_ids
        for term in ("vue", "angular", "composition", "signals"):
            assert snapshot.index.postings(term) == full.postings(term)

    async def test_parse_error_is_recorded(
        self, manager: SnapshotManager, corpus_root: Path
    ) -> None:
        write_file(corpus_root / "agents" / "broken.md", "---\nname: broken\n")
        snapshot = await manager.rescan()
        assert len(snapshot.corpus) == 3
        assert [w.code for w in snapshot.warnings] == ["parse_error"]

    async def test_concurrent_rescans_serialize(self, manager: SnapshotManager) -> None:
        first, second = await asyncio.gather(manager.rescan(), manager.rescan())
        assert first is second
        assert manager.current.version == 1

    async def test_touch_without_change_updates_mtime_only(
        self, manager: SnapshotManager, corpus_root: Path
    ) -> None:
        first = await manager.rescan()
        path = corpus_root / "agents" / "react-expert.md"
        later = FIXED_MTIME + 120
        os.utime(path, (later, later))
        second = await manager.rescan()

        assert second.version == 2
        assert second.corpus.get("react-expert").mtime == later
        assert second.index is first.index


class TestLeases:
    async def test_acquire_before_scan_fails(self, manager: SnapshotManager) -> None:
        with pytest.raises(InternalError), manager.acquire():
            pass

    async def test_lease_keeps_old_snapshot(
        self, manager: SnapshotManager, corpus_root: Path
    ) -> None:
        await manager.rescan()

        with manager.acquire() as held:
            assert manager.lease_count(1) == 1
            (corpus_root / "agents" / "react-expert.md").unlink()
            newer = await manager.rescan()

            assert newer.version == 2
            assert held.version == 1
            assert "react-expert" in held.corpus
            assert manager.retained_versions == (1,)

        assert manager.lease_count(1) == 0
        assert manager.retained_versions == ()

    async def test_nested_leases(self, manager: SnapshotManager) -> None:
        await manager.rescan()
        with manager.acquire() as a, manager.acquire() as b:
            assert a is b
            assert manager.lease_count(a.version) == 2
        assert manager.lease_count(1) == 0


class TestFailures:
    async def test_soft_timeout_keeps_previous(
        self, corpus_root: Path, monkeypatch: pytest.MonkeyPatch, caplog
    ) -> None:
        config = ResolverConfig(corpus_root=str(corpus_root), rescan_timeout_seconds=0.2)
        manager = SnapshotManager(config=config)
        try:
            first = await manager.rescan()

            def slow_discover(root: Path) -> list[Path]:
                time.sleep(1.0)
                return []

            monkeypatch.setattr("skillscope.snapshot.discover_manifest_files", slow_discover)
            with caplog.at_level(logging.WARNING, logger="skillscope.snapshot"):
                result = await manager.rescan()

            assert result is first
            assert manager.current is first
            assert "did not finish" in caplog.text
        finally:
            manager.close()

    async def test_initial_timeout_is_internal_error(
        self, corpus_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config = ResolverConfig(corpus_root=str(corpus_root), rescan_timeout_seconds=0.2)
        manager = SnapshotManager(config=config)

        def slow_discover(root: Path) -> list[Path]:
            time.sleep(1.0)
            return []

        monkeypatch.setattr("skillscope.snapshot.discover_manifest_files", slow_discover)
        try:
            with pytest.raises(InternalError, match="Initial scan"):
                await manager.rescan()
            assert manager.current is None
        finally:
            manager.close()

    async def test_index_verification_failure(
        self, manager: SnapshotManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(CapabilityIndex, "verify", lambda self: ["corrupt"])
        with pytest.raises(InternalError, match="verification"):
            await manager.rescan()
        assert manager.current is None

    async def test_unexpected_error_becomes_internal_error(
        self, manager: SnapshotManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def explode(root: Path) -> list[Path]:
            raise RuntimeError("disk on fire")

        monkeypatch.setattr("skillscope.snapshot.discover_manifest_files", explode)
        with pytest.raises(InternalError, match="disk on fire"):
            await manager.rescan()
