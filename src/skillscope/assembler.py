"""Budget-aware context assembly.

Turns ranked matches into an ordered payload in three stages:

1. The top match, always.  Truncated at a heading boundary when it alone
   exceeds the budget, with a ``BudgetExceeded`` warning.
2. Secondary matches in rank order, truncated or skipped to fit.
3. References of included skills that fit in full and were either
   requested by path or share enough tokens with the query.

The deadline is checked between stages and between entries.  Running out
of time returns what was assembled so far, flagged ``partial``.
"""
from __future__ import annotations

import json
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from skillscope.core.errors import (
    BudgetExceeded,
    DeadlineExceeded,
    ReferenceNotFound,
    SkillscopeError,
)
from skillscope.core.logging import get_logger
from skillscope.index import tokenize
from skillscope.manifests.types import SkillManifest
from skillscope.markdown import estimate_tokens, estimate_tokens_for_size, heading_boundaries

if TYPE_CHECKING:
    from skillscope.manifests.types import Manifest
    from skillscope.references import ReferenceNode, ReferenceStore
    from skillscope.router import MatchResult, RankedMatches
    from skillscope.snapshot import Snapshot

logger = get_logger("assembler")

REFERENCE_KIND = "reference"


# ── Per-query state ──────────────────────────────────────────────────


class ContextBudget:
    """Token counter owned by a single query."""

    def __init__(self, limit: int) -> None:
        if limit < 0:
            msg = f"Budget must be non-negative, got {limit}"
            raise ValueError(msg)
        self.limit = limit
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def fits(self, tokens: int) -> bool:
        return tokens <= self.remaining

    def consume(self, tokens: int) -> None:
        self.used += tokens


class Deadline:
    """Monotonic deadline; ``None`` seconds means it never expires."""

    def __init__(
        self,
        seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    @classmethod
    def never(cls) -> Deadline:
        return cls(None)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at


# ── Payload ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ContextEntry:
    source_id: str
    kind: str
    title: str
    body: str
    score: float
    truncated: bool = False
    truncated_at: int | None = None
    unavailable: bool = False
    references: tuple[tuple[str, str], ...] = ()

    @property
    def tokens(self) -> int:
        return estimate_tokens(self.body)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sourceId": self.source_id,
            "kind": self.kind,
            "title": self.title,
            "body": self.body,
            "truncated": self.truncated,
            "score": self.score,
            "truncatedAt": self.truncated_at,
            "unavailable": self.unavailable,
        }
        if self.references:
            data["references"] = [
                {"path": path, "title": title} for path, title in self.references
            ]
        return data


@dataclass(frozen=True, slots=True)
class AssembledContext:
    """Ordered, budget-respecting result of one query."""

    entries: tuple[ContextEntry, ...]
    budget_tokens: int
    used_tokens: int
    snapshot_version: int
    warnings: tuple[SkillscopeError, ...] = ()
    partial: bool = False

    def entries_payload(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": self.entries_payload(),
            "warnings": [w.to_dict() for w in self.warnings],
            "budgetTokens": self.budget_tokens,
            "usedTokens": self.used_tokens,
            "snapshotVersion": self.snapshot_version,
            "partial": self.partial,
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


def truncate_at_heading(text: str, max_tokens: int) -> tuple[str, int | None]:
    """Cut *text* at the last heading boundary that fits *max_tokens*.

    Returns the kept text and the cut's UTF-8 byte offset, or ``None`` as
    the offset when *text* fits untouched.  Offset 0 always fits.
    """
    if estimate_tokens(text) <= max_tokens:
        return text, None
    for boundary in reversed(heading_boundaries(text)):
        kept = text[:boundary]
        if estimate_tokens(kept) <= max_tokens:
            return kept, len(kept.encode("utf-8"))
    return "", 0


@dataclass
class _Assembly:
    budget: ContextBudget
    deadline: Deadline
    entries: list[ContextEntry] = field(default_factory=list)
    warnings: list[SkillscopeError] = field(default_factory=list)
    partial: bool = False

    def add(self, entry: ContextEntry) -> None:
        self.entries.append(entry)
        self.budget.consume(entry.tokens)

    def stop(self, stage: str) -> None:
        self.partial = True
        self.warnings.append(
            DeadlineExceeded(f"Deadline exceeded before {stage}; result is partial")
        )
        logger.info("Deadline exceeded before %s", stage)

    def out_of_time(self, stage: str) -> bool:
        if self.partial:
            return True
        if not self.deadline.expired():
            return False
        self.stop(stage)
        return True


# ── Assembler ────────────────────────────────────────────────────────


class ContextAssembler:
    """Builds an :class:`AssembledContext` from ranked matches."""

    def __init__(self, store: ReferenceStore, reference_overlap: float = 0.5) -> None:
        self._store = store
        self._reference_overlap = reference_overlap

    def assemble(
        self,
        ranked: RankedMatches,
        snapshot: Snapshot,
        query: str,
        budget: ContextBudget,
        deadline: Deadline | None = None,
        requested_references: Iterable[str] = (),
        warnings: Iterable[SkillscopeError] = (),
    ) -> AssembledContext:
        run = _Assembly(budget=budget, deadline=deadline or Deadline.never())
        run.warnings.extend(warnings)

        self._add_top(run, ranked.top, snapshot)
        if ranked.partial:
            run.stop("secondary matches")

        included: list[tuple[SkillManifest, float]] = []
        top_manifest = snapshot.corpus.get(ranked.top.manifest_id)
        if isinstance(top_manifest, SkillManifest):
            included.append((top_manifest, ranked.top.score))

        if not run.out_of_time("secondary matches"):
            for match in ranked.secondaries:
                if run.out_of_time(f"secondary match '{match.manifest_id}'"):
                    break
                skill = self._add_secondary(run, match, snapshot)
                if skill is not None:
                    included.append((skill, match.score))

        # nothing, not even an unavailable marker, follows an exhausted budget
        if included and run.budget.remaining and not run.out_of_time("references"):
            requested = _requested_nodes(snapshot, included, requested_references)
            self._add_references(run, included, snapshot, query, requested)

        return AssembledContext(
            entries=tuple(run.entries),
            budget_tokens=budget.limit,
            used_tokens=budget.used,
            snapshot_version=snapshot.version,
            warnings=tuple(run.warnings),
            partial=run.partial,
        )

    # ── Stages ───────────────────────────────────────────────────────

    def _add_top(self, run: _Assembly, match: MatchResult, snapshot: Snapshot) -> None:
        manifest = snapshot.corpus.get(match.manifest_id)
        if manifest is None:
            msg = f"Top match '{match.manifest_id}' missing from snapshot {snapshot.version}"
            raise KeyError(msg)
        body, cut = truncate_at_heading(manifest.body, run.budget.remaining)
        if cut is None and run.budget.limit == 0:
            cut = 0
        if cut is not None:
            run.warnings.append(BudgetExceeded(
                f"Top match '{manifest.id}' needs {estimate_tokens(manifest.body)} "
                f"tokens but the budget is {run.budget.limit}; truncated at byte {cut}",
                source=manifest.id,
            ))
        run.add(_manifest_entry(manifest, body, match.score, cut))

    def _add_secondary(
        self, run: _Assembly, match: MatchResult, snapshot: Snapshot
    ) -> SkillManifest | None:
        manifest = snapshot.corpus.get(match.manifest_id)
        if manifest is None:
            return None
        body, cut = truncate_at_heading(manifest.body, run.budget.remaining)
        if not body:
            logger.debug("Skipping secondary %s: no room", manifest.id)
            return None
        run.add(_manifest_entry(manifest, body, match.score, cut))
        return manifest if isinstance(manifest, SkillManifest) else None

    def _add_references(
        self,
        run: _Assembly,
        included: list[tuple[SkillManifest, float]],
        snapshot: Snapshot,
        query: str,
        requested: set[tuple[str, int]],
    ) -> None:
        query_tokens = set(tokenize(query))
        for skill, score in included:
            for node in snapshot.references.references_for(skill.id):
                if not run.budget.remaining:
                    return
                if run.out_of_time(f"reference '{node.source_id}'"):
                    return
                if not self._wanted(node, query_tokens, requested):
                    continue
                self._add_reference(run, node, score)

    def _add_reference(self, run: _Assembly, node: ReferenceNode, score: float) -> None:
        if not node.available:
            self._unavailable(run, node, node.not_found(), score)
            return
        # byte_size is known here; the loaded content is rechecked below
        if not run.budget.fits(estimate_tokens_for_size(node.byte_size or 0)):
            logger.debug("Reference %s does not fit the remaining budget", node.source_id)
            return
        try:
            document = self._store.load(node)
        except ReferenceNotFound as exc:
            self._unavailable(run, node, exc, score)
            return
        if not run.budget.fits(estimate_tokens(document.content)):
            logger.debug("Reference %s grew past the remaining budget", node.source_id)
            return
        run.add(ContextEntry(
            source_id=node.source_id,
            kind=REFERENCE_KIND,
            title=document.title,
            body=document.content,
            score=score,
        ))

    def _wanted(
        self,
        node: ReferenceNode,
        query_tokens: set[str],
        requested: set[tuple[str, int]],
    ) -> bool:
        if node.key in requested:
            return True
        title_tokens = set(tokenize(node.title))
        if not title_tokens:
            return False
        overlap = len(query_tokens & title_tokens) / len(title_tokens)
        return overlap >= self._reference_overlap

    @staticmethod
    def _unavailable(
        run: _Assembly, node: ReferenceNode, error: ReferenceNotFound, score: float
    ) -> None:
        logger.warning("%s", error.message)
        run.warnings.append(error)
        run.entries.append(ContextEntry(
            source_id=node.source_id,
            kind=REFERENCE_KIND,
            title=node.title,
            body="",
            score=score,
            unavailable=True,
        ))


def _manifest_entry(manifest: Manifest, body: str, score: float, cut: int | None) -> ContextEntry:
    references: tuple[tuple[str, str], ...] = ()
    if isinstance(manifest, SkillManifest):
        references = tuple((ref.path, ref.title) for ref in manifest.references)
    return ContextEntry(
        source_id=manifest.id,
        kind=manifest.kind.value,
        title=manifest.name,
        body=body,
        score=score,
        truncated=cut is not None,
        truncated_at=cut,
        references=references,
    )


def _requested_nodes(
    snapshot: Snapshot,
    included: list[tuple[SkillManifest, float]],
    paths: Iterable[str],
) -> set[tuple[str, int]]:
    """Arena keys for ``references/x.md`` or ``skill-id:references/x.md`` requests.

    A bare path applies to every included skill.  Requests naming no
    declared reference are ignored.
    """
    requested: set[tuple[str, int]] = set()
    for raw in paths:
        skill_id, sep, path = raw.partition(":")
        if sep and "/" not in skill_id:
            targets, wanted = [skill_id.strip()], path
        else:
            targets, wanted = [skill.id for skill, _ in included], raw
        for target in targets:
            node = snapshot.references.find(target, wanted)
            if node is not None:
                requested.add(node.key)
    return requested

