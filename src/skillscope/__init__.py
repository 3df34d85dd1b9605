"""skillscope: resolve agent and skill context for a task within a token budget."""
from __future__ import annotations

from skillscope._version import __version__
from skillscope.assembler import (
    AssembledContext,
    ContextAssembler,
    ContextBudget,
    ContextEntry,
    Deadline,
)
from skillscope.core import (
    BudgetExceeded,
    ConfigError,
    ConflictError,
    DeadlineExceeded,
    InternalError,
    ParseError,
    ReferenceNotFound,
    ResolverConfig,
    SkillscopeError,
    ValidationError,
)
from skillscope.index import CapabilityIndex
from skillscope.manifests import (
    AgentManifest,
    Corpus,
    CorpusLoader,
    ManifestKind,
    SkillManifest,
)
from skillscope.references import ReferenceDocument, ReferenceGraph, ReferenceStore
from skillscope.resolver import ContextResolver, parse_duration, resolve
from skillscope.router import CapabilityRouter, MatchResult, NoConfidentMatch, RankedMatches
from skillscope.snapshot import Snapshot, SnapshotManager

__all__ = [
    "AgentManifest",
    "AssembledContext",
    "BudgetExceeded",
    "CapabilityIndex",
    "CapabilityRouter",
    "ConfigError",
    "ConflictError",
    "ContextAssembler",
    "ContextBudget",
    "ContextEntry",
    "ContextResolver",
    "Corpus",
    "CorpusLoader",
    "Deadline",
    "DeadlineExceeded",
    "InternalError",
    "ManifestKind",
    "MatchResult",
    "NoConfidentMatch",
    "ParseError",
    "RankedMatches",
    "ReferenceDocument",
    "ReferenceGraph",
    "ReferenceNotFound",
    "ReferenceStore",
    "ResolverConfig",
    "SkillManifest",
    "SkillscopeError",
    "Snapshot",
    "SnapshotManager",
    "ValidationError",
    "__version__",
    "parse_duration",
    "resolve",
]
