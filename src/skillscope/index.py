"""Capability index: a weighted inverted index over manifest tokens.

Every manifest contributes postings in four fields with fixed weights:

- name tokens: 5
- trigger-phrase tokens (quoted text in the description): 4
- narrative tokens (the rest of the description, examples included): 2
- body tokens: 1

Trigger phrases are additionally indexed as whole 2-6 token n-grams so an
exact phrase outscores the same words in any order.  A manifest's index
score for a query is ``sum(weight * count) / sqrt(total unigram tokens)``.

Indexes are immutable.  ``with_manifest`` and ``without_manifest`` return a
new index and only rebuild the posting tuples of the terms that manifest
touches.
"""
from __future__ import annotations

import enum
import math
import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from skillscope.manifests.parser import narrative_text

if TYPE_CHECKING:
    from skillscope.manifests.types import Manifest

# Dropped from query unigrams only; documents keep every token
QUERY_STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
    "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
    "to", "was", "will", "with", "this", "but", "they", "have",
    "had", "what", "when", "where", "who", "which", "why", "how",
})
_TOKEN = re.compile(r"[^\W_]+")

MIN_NGRAM = 2
MAX_NGRAM = 6


class IndexField(enum.Enum):
    NAME = "name"
    TRIGGER = "trigger"
    NARRATIVE = "narrative"
    BODY = "body"


FIELD_WEIGHTS: Mapping[IndexField, int] = MappingProxyType({
    IndexField.NAME: 5,
    IndexField.TRIGGER: 4,
    IndexField.NARRATIVE: 2,
    IndexField.BODY: 1,
})


def tokenize(text: str) -> list[str]:
    """Lowercase and split on non-alphanumeric boundaries."""
    return _TOKEN.findall(text.lower())


def query_tokens(text: str) -> list[str]:
    """Query unigrams: *text* tokenized, minus :data:`QUERY_STOPWORDS`."""
    return [t for t in tokenize(text) if t not in QUERY_STOPWORDS]


def ngrams(tokens: list[str], low: int = MIN_NGRAM, high: int = MAX_NGRAM) -> list[str]:
    """All contiguous n-grams of *tokens* for ``low <= n <= high``, space-joined."""
    grams: list[str] = []
    for n in range(low, high + 1):
        for i in range(len(tokens) - n + 1):
            grams.append(" ".join(tokens[i : i + n]))
    return grams


def query_terms(text: str) -> tuple[str, ...]:
    """Unique, sorted lookup terms for a query.

    Unigrams skip stopwords.  N-grams are built from the full token stream
    so a query quoting a trigger phrase verbatim matches all of its n-grams.
    """
    return tuple(sorted(set(query_tokens(text)) | set(ngrams(tokenize(text)))))


@dataclass(frozen=True, slots=True)
class Posting:
    manifest_id: str
    field: IndexField
    weight: int
    count: int

    @property
    def contribution(self) -> int:
        return self.weight * self.count


@dataclass(frozen=True, slots=True)
class ManifestTerms:
    """Everything one manifest contributes to the index."""

    manifest_id: str
    postings: Mapping[str, tuple[Posting, ...]]
    total_tokens: int

    @classmethod
    def from_manifest(cls, manifest: Manifest) -> ManifestTerms:
        counts: dict[IndexField, Counter[str]] = {f: Counter() for f in IndexField}
        total = 0

        def add(index_field: IndexField, tokens: list[str]) -> None:
            nonlocal total
            counts[index_field].update(tokens)
            total += len(tokens)

        add(IndexField.NAME, tokenize(manifest.name))
        for phrase in manifest.trigger_phrases:
            tokens = tokenize(phrase)
            add(IndexField.TRIGGER, tokens)
            # n-grams score but are not counted as indexed tokens
            counts[IndexField.TRIGGER].update(ngrams(tokens))
        add(IndexField.NARRATIVE, tokenize(narrative_text(manifest.description)))
        add(IndexField.BODY, tokenize(manifest.body))

        postings: dict[str, list[Posting]] = {}
        for index_field in IndexField:
            weight = FIELD_WEIGHTS[index_field]
            for term, count in counts[index_field].items():
                postings.setdefault(term, []).append(
                    Posting(manifest.id, index_field, weight, count)
                )
        return cls(
            manifest_id=manifest.id,
            postings=MappingProxyType({
                term: tuple(sorted(found, key=_posting_key))
                for term, found in sorted(postings.items())
            }),
            total_tokens=total,
        )


@dataclass(frozen=True, slots=True)
class IndexHit:
    """Per-manifest result of an index lookup."""

    manifest_id: str
    raw_score: int
    score: float
    matched_terms: tuple[str, ...]


@dataclass(frozen=True, slots=True, eq=False)
class CapabilityIndex:
    """Immutable token -> posting-list index over a corpus."""

    _postings: Mapping[str, tuple[Posting, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    _terms: Mapping[str, ManifestTerms] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def build(cls, manifests: Iterable[Manifest]) -> CapabilityIndex:
        """Pure build function over a list of manifests."""
        return cls.from_terms(ManifestTerms.from_manifest(m) for m in manifests)

    @classmethod
    def from_terms(cls, all_terms: Iterable[ManifestTerms]) -> CapabilityIndex:
        postings: dict[str, list[Posting]] = {}
        by_id: dict[str, ManifestTerms] = {}
        for terms in sorted(all_terms, key=lambda t: t.manifest_id):
            if terms.manifest_id in by_id:
                msg = f"Manifest indexed twice: {terms.manifest_id}"
                raise ValueError(msg)
            by_id[terms.manifest_id] = terms
            for term, found in terms.postings.items():
                postings.setdefault(term, []).extend(found)
        return cls(
            _postings=MappingProxyType({t: tuple(p) for t, p in postings.items()}),
            _terms=MappingProxyType(by_id),
        )

    # ── Incremental updates ──────────────────────────────────────────

    def with_manifest(self, manifest: Manifest | ManifestTerms) -> CapabilityIndex:
        """Return a new index with *manifest* added (or replaced)."""
        terms = (
            manifest if isinstance(manifest, ManifestTerms)
            else ManifestTerms.from_manifest(manifest)
        )
        base = (
            self.without_manifest(terms.manifest_id)
            if terms.manifest_id in self._terms else self
        )
        postings = dict(base._postings)
        for term, found in terms.postings.items():
            merged = (*postings.get(term, ()), *found)
            postings[term] = tuple(sorted(merged, key=_posting_key))
        by_id = dict(base._terms)
        by_id[terms.manifest_id] = terms
        return CapabilityIndex(
            _postings=MappingProxyType(postings),
            _terms=MappingProxyType(by_id),
        )

    def without_manifest(self, manifest_id: str) -> CapabilityIndex:
        """Return a new index with every posting of *manifest_id* removed."""
        terms = self._terms.get(manifest_id)
        if terms is None:
            return self
        postings = dict(self._postings)
        for term in terms.postings:
            remaining = tuple(
                p for p in postings.get(term, ()) if p.manifest_id != manifest_id
            )
            if remaining:
                postings[term] = remaining
            else:
                postings.pop(term, None)
        by_id = dict(self._terms)
        del by_id[manifest_id]
        return CapabilityIndex(
            _postings=MappingProxyType(postings),
            _terms=MappingProxyType(by_id),
        )

    # ── Lookups ──────────────────────────────────────────────────────

    def __contains__(self, manifest_id: object) -> bool:
        return manifest_id in self._terms

    def __len__(self) -> int:
        return len(self._terms)

    @property
    def manifest_ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._terms))

    def postings(self, term: str) -> tuple[Posting, ...]:
        return self._postings.get(term, ())

    def total_tokens(self, manifest_id: str) -> int:
        terms = self._terms.get(manifest_id)
        return terms.total_tokens if terms is not None else 0

    def terms_for(self, manifest_id: str) -> ManifestTerms | None:
        return self._terms.get(manifest_id)

    def search(self, terms: Iterable[str]) -> dict[str, IndexHit]:
        """Score every manifest that shares at least one term with the query.

        *terms* are deduplicated and visited in sorted order so floating
        point sums are identical across runs.
        """
        raw: dict[str, int] = {}
        matched: dict[str, set[str]] = {}
        for term in sorted(set(terms)):
            for posting in self._postings.get(term, ()):
                raw[posting.manifest_id] = raw.get(posting.manifest_id, 0) + posting.contribution
                matched.setdefault(posting.manifest_id, set()).add(term)

        hits: dict[str, IndexHit] = {}
        for manifest_id in sorted(raw):
            total = self.total_tokens(manifest_id)
            norm = 1.0 / math.sqrt(total) if total > 0 else 1.0
            hits[manifest_id] = IndexHit(
                manifest_id=manifest_id,
                raw_score=raw[manifest_id],
                score=raw[manifest_id] * norm,
                matched_terms=tuple(sorted(matched[manifest_id])),
            )
        return hits

    def verify(self) -> list[str]:
        """Check that posting lists and per-manifest terms agree."""
        problems: list[str] = []
        expected: dict[str, set[tuple[str, IndexField]]] = {}
        for manifest_id, terms in self._terms.items():
            for term, found in terms.postings.items():
                for p in found:
                    expected.setdefault(term, set()).add((manifest_id, p.field))
        for term, found in self._postings.items():
            actual = {(p.manifest_id, p.field) for p in found}
            if actual != expected.get(term, set()):
                problems.append(f"posting list for '{term}' is inconsistent")
        missing = set(expected) - set(self._postings)
        problems.extend(f"posting list for '{term}' is missing" for term in sorted(missing))
        return problems


def _posting_key(p: Posting) -> tuple[str, str]:
    return (p.manifest_id, p.field.value)
