"""Query routing: scores and orders manifests for a task description."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from skillscope.core.logging import get_logger
from skillscope.index import query_terms, query_tokens, tokenize
from skillscope.manifests.types import ManifestKind

if TYPE_CHECKING:
    from skillscope.assembler import Deadline
    from skillscope.core.config import ResolverConfig
    from skillscope.manifests.types import Manifest
    from skillscope.snapshot import Snapshot

logger = get_logger("router")

# ── Scoring constants ─────────────────────────────────────────

DOMAIN_BOOST = 2.0
SCORE_PRECISION = 6

_KIND_RANK = {ManifestKind.AGENT: 0, ManifestKind.SKILL: 1}


# ── Results ───────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class MatchResult:
    """A manifest paired with its final score and the terms that matched."""

    manifest_id: str
    kind: ManifestKind
    score: float
    index_score: float = 0.0
    domain_boost: float = 0.0
    matched_tokens: tuple[str, ...] = ()
    mtime: float = 0.0

    def sort_key(self) -> tuple[float, int, float, str]:
        """Total order: score desc, agents first, newest first, id asc."""
        return (-self.score, _KIND_RANK[self.kind], -self.mtime, self.manifest_id)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.manifest_id,
            "kind": self.kind.value,
            "score": self.score,
            "matchedTokens": list(self.matched_tokens),
        }


@dataclass(frozen=True, slots=True)
class RankedMatches:
    """The winner plus secondaries within the relative margin."""

    top: MatchResult
    secondaries: tuple[MatchResult, ...] = ()
    candidates: tuple[MatchResult, ...] = ()
    terms: tuple[str, ...] = ()
    partial: bool = False

    @property
    def matches(self) -> tuple[MatchResult, ...]:
        return (self.top, *self.secondaries)


@dataclass(frozen=True, slots=True)
class NoConfidentMatch:
    """Typed result: the best score fell below the confidence threshold.

    Not an error.  The caller should ask for disambiguation, optionally
    using ``candidates`` to offer choices.
    """

    threshold: float
    top_score: float = 0.0
    reason: str = "top score below minimum confidence"
    candidates: tuple[MatchResult, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        return {
            "noConfidentMatch": True,
            "reason": self.reason,
            "topScore": self.top_score,
            "threshold": self.threshold,
            "candidates": [c.to_dict() for c in self.candidates],
        }


# ── Router ────────────────────────────────────────────────────


class CapabilityRouter:
    """Routes a task description to the best-fitting manifest(s).

    final score = index score + domain boost, where the boost (+2) applies
    once when any token of the manifest's ``name`` appears in the query.
    Results follow a fully deterministic total order; see
    :meth:`MatchResult.sort_key`.
    """

    def __init__(
        self,
        min_confidence: float = 0.2,
        relative_margin: float = 0.8,
        max_secondary_matches: int = 3,
    ) -> None:
        self._min_confidence = min_confidence
        self._relative_margin = relative_margin
        self._max_secondary = max_secondary_matches

    @classmethod
    def from_config(cls, config: ResolverConfig) -> CapabilityRouter:
        return cls(
            min_confidence=config.min_confidence,
            relative_margin=config.relative_margin,
            max_secondary_matches=config.max_secondary_matches,
        )

    def rank_all(self, query: str, snapshot: Snapshot) -> list[MatchResult]:
        """Score every manifest with a non-zero score, sorted by the total order."""
        terms = query_terms(query)
        unigrams = set(query_tokens(query))
        hits = snapshot.index.search(terms)

        results: list[MatchResult] = []
        for manifest in snapshot.corpus:
            hit = hits.get(manifest.id)
            boost = DOMAIN_BOOST if self._name_in_query(manifest, unigrams) else 0.0
            index_score = hit.score if hit is not None else 0.0
            if hit is None and boost == 0.0:
                continue
            results.append(MatchResult(
                manifest_id=manifest.id,
                kind=manifest.kind,
                score=round(index_score + boost, SCORE_PRECISION),
                index_score=round(index_score, SCORE_PRECISION),
                domain_boost=boost,
                matched_tokens=hit.matched_terms if hit is not None else (),
                mtime=manifest.mtime,
            ))

        results.sort(key=MatchResult.sort_key)
        return results

    def route(
        self,
        query: str,
        snapshot: Snapshot,
        explicit_agent: str | None = None,
        deadline: Deadline | None = None,
    ) -> RankedMatches | NoConfidentMatch:
        """Return the winner and its secondaries, or NoConfidentMatch.

        Args:
            query: The task description.
            snapshot: The snapshot to rank against.
            explicit_agent: Pins this manifest id as the winner regardless
                of confidence.  Unknown ids yield NoConfidentMatch.
            deadline: Checked once scoring is done.  When it has expired
                the winner is returned alone, flagged ``partial``.
        """
        ranked = self.rank_all(query, snapshot)
        terms = query_terms(query)

        if explicit_agent is not None:
            manifest = snapshot.corpus.get(explicit_agent)
            if manifest is None:
                logger.debug("Explicit agent %r not in snapshot", explicit_agent)
                return NoConfidentMatch(
                    threshold=self._min_confidence,
                    top_score=ranked[0].score if ranked else 0.0,
                    reason=f"unknown agent '{explicit_agent}'",
                    candidates=tuple(ranked[:5]),
                )
            top = next(
                (r for r in ranked if r.manifest_id == explicit_agent),
                MatchResult(
                    manifest_id=manifest.id,
                    kind=manifest.kind,
                    score=0.0,
                    mtime=manifest.mtime,
                ),
            )
        else:
            if not ranked or ranked[0].score < self._min_confidence:
                top_score = ranked[0].score if ranked else 0.0
                logger.debug(
                    "No confident match for %r (top=%.4f, min=%.4f)",
                    query,
                    top_score,
                    self._min_confidence,
                )
                return NoConfidentMatch(
                    threshold=self._min_confidence,
                    top_score=top_score,
                    candidates=tuple(ranked[:5]),
                )
            top = ranked[0]

        if deadline is not None and deadline.expired():
            logger.info("Deadline exceeded after scoring; skipping secondary matches")
            return RankedMatches(
                top=top, candidates=tuple(ranked), terms=terms, partial=True
            )

        cutoff = self._relative_margin * top.score
        secondaries = tuple(
            r for r in ranked
            if r.manifest_id != top.manifest_id and r.score > 0 and r.score >= cutoff
        )[: self._max_secondary]

        logger.debug(
            "Best match for %r: %s (score=%.4f, secondaries=%s)",
            query,
            top.manifest_id,
            top.score,
            [s.manifest_id for s in secondaries],
        )
        return RankedMatches(
            top=top,
            secondaries=secondaries,
            candidates=tuple(ranked),
            terms=terms,
        )

    @staticmethod
    def _name_in_query(manifest: Manifest, unigrams: set[str]) -> bool:
        return any(token in unigrams for token in tokenize(manifest.name))
