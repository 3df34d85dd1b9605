"""Skillscope core: config, errors, and logging."""
from __future__ import annotations

from skillscope.core.config import ResolverConfig
from skillscope.core.errors import (
    BudgetExceeded,
    ConfigError,
    ConflictError,
    DeadlineExceeded,
    InternalError,
    ParseError,
    ReferenceNotFound,
    SkillscopeError,
    ValidationError,
)
from skillscope.core.logging import get_logger, setup_logging

__all__ = [
    "BudgetExceeded",
    "ConfigError",
    "ConflictError",
    "DeadlineExceeded",
    "InternalError",
    "ParseError",
    "ReferenceNotFound",
    "ResolverConfig",
    "SkillscopeError",
    "ValidationError",
    "get_logger",
    "setup_logging",
]
