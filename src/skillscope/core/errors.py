from __future__ import annotations

from typing import Any


class SkillscopeError(Exception):
    """Base exception for all skillscope errors.

    Recoverable errors are never raised past the component that detects
    them; instances are attached to manifests, snapshots and assembled
    results as warnings instead.  ``code`` is the stable identifier used
    when a warning is serialized.
    """

    code = "error"

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.source is not None:
            data["source"] = self.source
        return data


# ── Corpus Errors ────────────────────────────────────────────────────

class ParseError(SkillscopeError):
    """Manifest file is malformed and was skipped."""

    code = "parse_error"


class ValidationError(SkillscopeError):
    """Front matter is present but incomplete or inconsistent."""

    code = "validation_error"


class ConflictError(SkillscopeError):
    """Two files derive the same manifest id; the loser is excluded."""

    code = "conflict"

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        manifest_id: str = "",
        winner: str = "",
    ) -> None:
        super().__init__(message, source=source)
        self.manifest_id = manifest_id
        self.winner = winner


# ── Query Errors ─────────────────────────────────────────────────────

class ReferenceNotFound(SkillscopeError):
    """A declared reference document is missing or outside its skill."""

    code = "reference_not_found"


class BudgetExceeded(SkillscopeError):
    """The forced top match did not fit the requested budget."""

    code = "budget_exceeded"


class DeadlineExceeded(SkillscopeError):
    """The query deadline expired; the result is partial."""

    code = "deadline_exceeded"


# ── Fatal Errors ─────────────────────────────────────────────────────

class InternalError(SkillscopeError):
    """Index corruption or snapshot-swap failure; aborts one query or rescan."""

    code = "internal_error"


class ConfigError(SkillscopeError):
    """Invalid or missing configuration."""

    code = "config_error"
