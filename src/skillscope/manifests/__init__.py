"""Manifest loading: front matter parsing, manifest records, corpus discovery."""
from __future__ import annotations

from skillscope.manifests.frontmatter import parse_front_matter, split_front_matter
from skillscope.manifests.loader import (
    CorpusLoader,
    SourceFile,
    discover_manifest_files,
    load_source,
    read_source,
    resolve_conflicts,
)
from skillscope.manifests.parser import (
    extract_references,
    extract_trigger_phrases,
    manifest_id,
    manifest_kind,
    narrative_text,
    parse_manifest,
)
from skillscope.manifests.types import (
    AgentFrontMatter,
    AgentManifest,
    Corpus,
    FrontMatter,
    Manifest,
    ManifestKind,
    ReferenceDeclaration,
    SkillFrontMatter,
    SkillManifest,
)
from skillscope.manifests.validator import ManifestValidator

__all__ = [
    "AgentFrontMatter",
    "AgentManifest",
    "Corpus",
    "CorpusLoader",
    "FrontMatter",
    "Manifest",
    "ManifestKind",
    "ManifestValidator",
    "ReferenceDeclaration",
    "SkillFrontMatter",
    "SkillManifest",
    "SourceFile",
    "discover_manifest_files",
    "extract_references",
    "extract_trigger_phrases",
    "load_source",
    "manifest_id",
    "manifest_kind",
    "narrative_text",
    "parse_front_matter",
    "parse_manifest",
    "read_source",
    "resolve_conflicts",
    "split_front_matter",
]
