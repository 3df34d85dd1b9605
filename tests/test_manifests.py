"""Tests for manifest parsing, validation, discovery and conflict resolution."""
from __future__ import annotations

import textwrap
from pathlib import Path, PurePosixPath

import pytest
from conftest import ANGULAR_STATE, write_file

from skillscope.core.errors import ParseError
from skillscope.manifests.loader import CorpusLoader, discover_manifest_files, resolve_conflicts
from skillscope.manifests.parser import (
    extract_references,
    extract_trigger_phrases,
    manifest_kind,
    narrative_text,
    parse_manifest,
)
from skillscope.manifests.types import AgentManifest, ManifestKind, SkillManifest
from skillscope.manifests.validator import ManifestValidator

# ── Helpers ──────────────────────────────────────────────────────────


def _parse(text: str, rel: str, root: Path | None = None):
    root = root or Path("/corpus")
    return parse_manifest(text.encode("utf-8"), root / rel, PurePosixPath(rel))


# ── Kind & parsing ───────────────────────────────────────────────────


class TestManifestKind:
    @pytest.mark.parametrize(
        ("rel", "kind"),
        [
            ("agents/react-expert.md", ManifestKind.AGENT),
            ("pack/agents/react-expert.md", ManifestKind.AGENT),
            ("skills/angular-state/SKILL.md", ManifestKind.SKILL),
            ("pack/skills/angular-state/SKILL.md", ManifestKind.SKILL),
            ("skills/angular-state/references/x.md", None),
            ("agents/notes.txt", None),
            ("README.md", None),
        ],
    )
    def test_kind_by_location(self, rel: str, kind: ManifestKind | None) -> None:
        assert manifest_kind(PurePosixPath(rel)) is kind


class TestParseManifest:
    def test_agent(self) -> None:
        text = textwrap.dedent("""\
            ---
            name: react-expert
            description: React work. Try "Add a custom hook" or “Split this component”.
            tools: Read, Write
            color: blue
            ---
            # React Expert

            Body text.
        """)
        manifest = _parse(text, "agents/react-expert.md")

        assert isinstance(manifest, AgentManifest)
        assert manifest.kind is ManifestKind.AGENT
        assert manifest.id == "react-expert"
        assert manifest.tools == ("Read", "Write")
        assert manifest.color == "blue"
        assert manifest.trigger_phrases == ("Add a custom hook", "Split this component")
        assert manifest.body.startswith("# React Expert")
        assert manifest.warnings == ()
        assert not manifest.opaque
        assert len(manifest.content_hash) == 64

    def test_id_comes_from_path_not_name(self) -> None:
        text = "---\nname: something-else\ndescription: d\n---\nbody\n"
        manifest = _parse(text, "agents/react-expert.md")
        assert manifest.id == "react-expert"
        assert manifest.name == "something-else"

    def test_skill_with_references(self) -> None:
        manifest = _parse(ANGULAR_STATE, "skills/angular-state/SKILL.md")

        assert isinstance(manifest, SkillManifest)
        assert manifest.id == "angular-state"
        assert manifest.trigger_phrases == ("Angular state management",)
        assert [(r.path, r.title) for r in manifest.references] == [
            ("references/signal-store.md", "Signal store patterns"),
            ("references/ngrx-migration.md", "NgRx migration guide"),
        ]

    def test_opaque_manifest(self) -> None:
        manifest = _parse("# No front matter\n\nJust text.\n", "agents/plain.md")
        assert manifest.opaque
        assert manifest.name == "plain"
        assert manifest.description == "plain.md"
        assert manifest.body == "# No front matter\n\nJust text."
        assert manifest.warnings == ()

    def test_missing_field_is_recorded_not_raised(self) -> None:
        manifest = _parse("---\ndescription: d\n---\nbody\n", "skills/lonely/SKILL.md")
        assert manifest.name == "lonely"
        assert any(w.code == "validation_error" for w in manifest.warnings)

    def test_unclosed_front_matter_raises(self) -> None:
        with pytest.raises(ParseError):
            _parse("---\nname: x\nbody\n", "agents/x.md")

    def test_invalid_utf8_raises(self) -> None:
        with pytest.raises(ParseError, match="UTF-8"):
            parse_manifest(
                b"---\nname: x\n---\n\xff\xfe",
                Path("/corpus/agents/x.md"),
                PurePosixPath("agents/x.md"),
            )

    def test_not_a_manifest_location(self) -> None:
        with pytest.raises(ParseError, match="Not a manifest"):
            _parse("---\nname: x\ndescription: d\n---\n", "docs/x.md")


class TestTriggerPhrases:
    def test_straight_and_curly_quotes(self) -> None:
        text = 'Say "one thing" then “another thing” and "one thing" again'
        assert extract_trigger_phrases(text) == ("one thing", "another thing")

    def test_narrative_blanks_quotes(self) -> None:
        text = 'Handles "deploy service" tasks'
        assert "deploy" not in narrative_text(text)
        assert "Handles" in narrative_text(text)


class TestExtractReferences:
    def test_link_backtick_and_bare_forms(self) -> None:
        body = textwrap.dedent("""\
            # Skill

            ## References

            - [Links](references/links.md)
            - `references/backtick.md` - Backtick title
            - references/bare.md
            - [External](https://example.com/doc.md)
            - [Links again](references/links.md)

            ## After

            - [Not a reference](references/after.md)
        """)
        refs = extract_references(body)
        assert [(r.path, r.title) for r in refs] == [
            ("references/links.md", "Links"),
            ("references/backtick.md", "Backtick title"),
            ("references/bare.md", "bare"),
        ]

    def test_subheadings_stay_in_section(self) -> None:
        body = textwrap.dedent("""\
            ## References

            ### Core

            - [Core guide](references/core.md)

            ## Next
        """)
        assert [r.path for r in extract_references(body)] == ["references/core.md"]

    def test_bold_references_fallback(self) -> None:
        body = "Intro\n\n**References:**\n- [Guide](./references/guide.md)\n"
        refs = extract_references(body)
        assert [(r.path, r.title) for r in refs] == [("references/guide.md", "Guide")]

    def test_code_fence_heading_is_ignored(self) -> None:
        body = "```\n## References\n- [Fake](references/fake.md)\n```\n"
        assert extract_references(body) == ()


# ── Validation ───────────────────────────────────────────────────────


class TestManifestValidator:
    def test_valid_manifest(self) -> None:
        manifest = _parse(ANGULAR_STATE, "skills/angular-state/SKILL.md")
        assert ManifestValidator().validate(manifest) == []

    def test_bad_name_and_escaping_reference(self) -> None:
        text = textwrap.dedent("""\
            ---
            name: Bad_Name
            description: d
            ---
            ## References
            - [Secret](../../secret.md)
        """)
        manifest = _parse(text, "skills/bad/SKILL.md")
        problems = ManifestValidator().validate(manifest)
        assert any("lowercase" in p for p in problems)
        assert any("inside the skill directory" in p for p in problems)
        assert len(manifest.warnings) == len(problems)

    def test_opaque_is_not_linted(self) -> None:
        manifest = _parse("Plain\n", "agents/Not_Linted.md")
        assert ManifestValidator().validate(manifest) == []


# ── Discovery & conflicts ────────────────────────────────────────────


class TestCorpusLoader:
    def test_discover_skips_hidden_and_non_manifests(self, tmp_path: Path) -> None:
        write_file(tmp_path / "agents" / "a.md", "x")
        write_file(tmp_path / ".hidden" / "agents" / "b.md", "x")
        write_file(tmp_path / "skills" / "s" / "SKILL.md", "x")
        write_file(tmp_path / "skills" / "s" / "references" / "r.md", "x")
        write_file(tmp_path / "README.md", "x")

        found = discover_manifest_files(tmp_path)
        rel = [p.relative_to(tmp_path.resolve()).as_posix() for p in found]
        assert rel == ["agents/a.md", "skills/s/SKILL.md"]

    def test_missing_root(self, tmp_path: Path) -> None:
        assert discover_manifest_files(tmp_path / "nope") == []

    def test_load_fixture_corpus(self, corpus_root: Path) -> None:
        corpus = CorpusLoader(corpus_root).load()
        assert corpus.ids == ("angular-expert", "angular-state", "react-expert")
        assert [m.id for m in corpus.agents()] == ["angular-expert", "react-expert"]
        assert [m.id for m in corpus.skills()] == ["angular-state"]
        assert corpus.warnings == []

    def test_parse_error_is_a_diagnostic(self, corpus_root: Path) -> None:
        write_file(corpus_root / "agents" / "broken.md", "---\nname: broken\n")
        corpus = CorpusLoader(corpus_root).load()
        assert "broken" not in corpus
        assert len(corpus) == 3
        assert [d.code for d in corpus.diagnostics] == ["parse_error"]

    def test_deeper_path_wins(self, tmp_path: Path) -> None:
        shallow = "---\nname: dup\ndescription: shallow\n---\n"
        deep = "---\nname: dup\ndescription: deep\n---\n"
        write_file(tmp_path / "agents" / "dup.md", shallow)
        write_file(tmp_path / "team" / "agents" / "dup.md", deep)

        corpus = CorpusLoader(tmp_path).load()

        assert corpus.get("dup").description == "deep"
        assert len(corpus.conflicts) == 1
        conflict = corpus.conflicts[0]
        assert conflict.code == "conflict"
        assert conflict.source == "agents/dup.md"
        assert conflict.winner == "team/agents/dup.md"

    def test_equal_depth_uses_smaller_path(self, tmp_path: Path) -> None:
        write_file(tmp_path / "b" / "agents" / "dup.md", "---\nname: dup\ndescription: b\n---\n")
        write_file(tmp_path / "a" / "agents" / "dup.md", "---\nname: dup\ndescription: a\n---\n")
        corpus = CorpusLoader(tmp_path).load()
        assert corpus.get("dup").description == "a"

    def test_resolve_conflicts_is_order_independent(self, tmp_path: Path) -> None:
        first = _parse("---\nname: x\ndescription: 1\n---\n", "a/agents/x.md", tmp_path)
        second = _parse("---\nname: x\ndescription: 2\n---\n", "b/agents/x.md", tmp_path)
        winners_ab, _ = resolve_conflicts([first, second])
        winners_ba, _ = resolve_conflicts([second, first])
        assert winners_ab == winners_ba == [first]
