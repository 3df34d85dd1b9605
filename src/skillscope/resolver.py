"""Query API: rank a task description and assemble its context."""
from __future__ import annotations

import asyncio
import re
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from skillscope.assembler import AssembledContext, ContextAssembler, ContextBudget, Deadline
from skillscope.core.config import ResolverConfig
from skillscope.core.errors import InternalError, SkillscopeError
from skillscope.core.logging import get_logger
from skillscope.router import CapabilityRouter, NoConfidentMatch
from skillscope.snapshot import SnapshotManager

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = get_logger("resolver")

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(text: str) -> float:
    """Parse ``250ms``, ``2s``, ``1.5m``, ``1h`` or plain seconds.

    Raises:
        ValueError: If *text* is not a duration.
    """
    match = _DURATION.match(text)
    if match is None:
        msg = f"Invalid duration: {text!r} (expected e.g. 250ms, 2s, 1.5m)"
        raise ValueError(msg)
    return float(match.group(1)) * _DURATION_UNITS[match.group(2) or "s"]


def _as_deadline(deadline: Deadline | timedelta | float | None) -> Deadline:
    if isinstance(deadline, Deadline):
        return deadline
    if isinstance(deadline, timedelta):
        return Deadline(deadline.total_seconds())
    return Deadline(deadline)


class ContextResolver:
    """Answers queries against whatever snapshot is current when they start.

    The resolver holds no corpus state of its own.  Each call leases a
    snapshot, owns a fresh budget and deadline, and releases the lease on
    the way out, so concurrent calls never share mutable state.
    """

    def __init__(
        self,
        manager: SnapshotManager,
        config: ResolverConfig | None = None,
    ) -> None:
        self._manager = manager
        self._config = config or manager.config
        self._router = CapabilityRouter.from_config(self._config)
        self._assembler = ContextAssembler(
            manager.store, reference_overlap=self._config.reference_overlap
        )

    @classmethod
    async def open(
        cls,
        root: Path | str | None = None,
        config: ResolverConfig | None = None,
    ) -> ContextResolver:
        """Create a manager for *root*, run the initial scan, return a resolver."""
        manager = SnapshotManager(root, config)
        await manager.rescan()
        return cls(manager, config)

    @property
    def manager(self) -> SnapshotManager:
        return self._manager

    @property
    def router(self) -> CapabilityRouter:
        return self._router

    def resolve(
        self,
        task_description: str,
        budget_tokens: int | None = None,
        explicit_agent: str | None = None,
        deadline: Deadline | timedelta | float | None = None,
        requested_references: Iterable[str] = (),
    ) -> AssembledContext | NoConfidentMatch:
        """Select the best manifest(s) for *task_description* and load them.

        Args:
            task_description: Free-text task.
            budget_tokens: Token budget; defaults to ``default_budget_tokens``.
            explicit_agent: Manifest id to pin as the top match.
            deadline: Seconds, a ``timedelta`` or a :class:`Deadline`.
                Defaults to ``default_deadline_seconds`` (no deadline).
            requested_references: Reference paths to load when they fit,
                as ``references/x.md`` or ``skill-id:references/x.md``.

        Returns:
            The assembled context, or NoConfidentMatch when nothing scored
            above the confidence threshold.

        Raises:
            ValueError: If *budget_tokens* is negative.
            InternalError: If the snapshot is missing or inconsistent.
        """
        limit = self._config.default_budget_tokens if budget_tokens is None else budget_tokens
        budget = ContextBudget(limit)
        query_deadline = _as_deadline(
            deadline if deadline is not None else self._config.default_deadline_seconds
        )

        with self._manager.acquire() as snapshot:
            try:
                ranked = self._router.route(
                    task_description, snapshot, explicit_agent, deadline=query_deadline
                )
                if isinstance(ranked, NoConfidentMatch):
                    logger.info("No confident match: %s", ranked.reason)
                    return ranked
                return self._assembler.assemble(
                    ranked,
                    snapshot,
                    task_description,
                    budget,
                    deadline=query_deadline,
                    requested_references=requested_references,
                )
            except SkillscopeError:
                raise
            except Exception as exc:
                logger.exception("Query against snapshot v%d failed", snapshot.version)
                msg = f"Query failed against snapshot v{snapshot.version}: {exc}"
                raise InternalError(msg) from exc


def resolve(
    task_description: str,
    budget_tokens: int | None = None,
    explicit_agent: str | None = None,
    deadline: Deadline | timedelta | float | None = None,
    *,
    corpus_root: Path | str | None = None,
    requested_references: Iterable[str] = (),
    config: ResolverConfig | None = None,
) -> AssembledContext | NoConfidentMatch:
    """One-shot convenience: scan *corpus_root* and answer a single query.

    Configuration is loaded from the usual files and environment when
    *config* is not given.  Long-lived callers should keep a
    :class:`ContextResolver` instead, so rescans can reuse parsed files.
    """
    config = config or ResolverConfig.load()
    manager = SnapshotManager(corpus_root, config)
    try:
        asyncio.run(manager.rescan())
        return ContextResolver(manager, config).resolve(
            task_description,
            budget_tokens=budget_tokens,
            explicit_agent=explicit_agent,
            deadline=deadline,
            requested_references=requested_references,
        )
    finally:
        manager.close()
