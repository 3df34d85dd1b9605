from __future__ import annotations

import os
import textwrap
from pathlib import Path

import pytest
import pytest_asyncio

from skillscope.core.config import ResolverConfig
from skillscope.index import CapabilityIndex
from skillscope.manifests.loader import CorpusLoader
from skillscope.references import ReferenceGraph
from skillscope.resolver import ContextResolver
from skillscope.snapshot import Snapshot, SnapshotManager

FIXED_MTIME = 1_700_000_000.0

ANGULAR_EXPERT = textwrap.dedent("""\
    ---
    name: angular-expert
    description: Expert in modern Angular development with signals, standalone components and the new control flow syntax. Use for "Migrate this module to standalone components".
    tools: Read, Write, Edit
    color: red
    ---
    # Angular Expert

    You build Angular applications with signals and standalone components.

    ## Control Flow

    Prefer @if and @for blocks over structural directives.
""")

REACT_EXPERT = textwrap.dedent("""\
    ---
    name: react-expert
    description: Expert in React development with hooks, server components and state libraries. Use for "Add a custom hook for fetching data".
    tools: Read, Write
    color: blue
    ---
    # React Expert

    You build React applications with hooks and component composition.
""")

ANGULAR_STATE = textwrap.dedent("""\
    ---
    name: angular-state
    description: Angular state management with signal stores and NgRx. Use when the user asks for "Angular state management" or a store migration.
    ---
    # Angular State

    Keep component state in signal stores and shared state in NgRx.

    ## Patterns

    Derive values with computed selectors.

    ## References

    - [Signal store patterns](references/signal-store.md)
    - [NgRx migration guide](references/ngrx-migration.md)
""")

SIGNAL_STORE_REF = textwrap.dedent("""\
    # Signal store patterns

    Use withState and withMethods to compose a store.
""")

NGRX_MIGRATION_REF = textwrap.dedent("""\
    # NgRx migration guide

    Replace reducers step by step.
""")


def write_file(path: Path, content: str, mtime: float = FIXED_MTIME) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    os.utime(path, (mtime, mtime))
    return path


def write_corpus(root: Path) -> Path:
    """Two agents and one skill with two references, all with the same mtime."""
    write_file(root / "agents" / "angular-expert.md", ANGULAR_EXPERT)
    write_file(root / "agents" / "react-expert.md", REACT_EXPERT)
    skill_dir = root / "skills" / "angular-state"
    write_file(skill_dir / "SKILL.md", ANGULAR_STATE)
    write_file(skill_dir / "references" / "signal-store.md", SIGNAL_STORE_REF)
    write_file(skill_dir / "references" / "ngrx-migration.md", NGRX_MIGRATION_REF)
    return root


def build_snapshot(root: Path, version: int = 1) -> Snapshot:
    corpus = CorpusLoader(root).load()
    return Snapshot(
        version=version,
        corpus=corpus,
        index=CapabilityIndex.build(corpus),
        references=ReferenceGraph.build(corpus),
    )


@pytest.fixture
def corpus_root(tmp_path: Path) -> Path:
    return write_corpus(tmp_path / "corpus")


@pytest.fixture
def snapshot(corpus_root: Path) -> Snapshot:
    return build_snapshot(corpus_root)


@pytest.fixture
def config(corpus_root: Path) -> ResolverConfig:
    return ResolverConfig(corpus_root=str(corpus_root), workers=2)


@pytest_asyncio.fixture
async def manager(config: ResolverConfig):
    mgr = SnapshotManager(config=config)
    yield mgr
    mgr.close()


@pytest_asyncio.fixture
async def resolver(manager: SnapshotManager) -> ContextResolver:
    await manager.rescan()
    return ContextResolver(manager)
