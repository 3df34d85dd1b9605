from __future__ import annotations

import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path

from skillscope.core.errors import ConfigError
from skillscope.core.logging import LEVELS

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    msg = f"not a boolean: {value!r}"
    raise ValueError(msg)


# Environment variable -> (field name, converter)
_ENV_OVERRIDES: dict[str, tuple[str, Callable[[str], object]]] = {
    "CORPUS_ROOT": ("corpus_root", str),
    "DEFAULT_BUDGET_TOKENS": ("default_budget_tokens", int),
    "MIN_CONFIDENCE": ("min_confidence", float),
    "RELATIVE_MARGIN": ("relative_margin", float),
    "SKILLSCOPE_LOG_LEVEL": ("log_level", str),
    "SKILLSCOPE_LOG_JSON": ("log_json", _parse_bool),
}


def _load_toml(path: Path) -> dict:
    """Load a TOML file, returning empty dict if missing."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        msg = f"Cannot read config file {path}: {exc}"
        raise ConfigError(msg, source=str(path)) from exc


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base (1 level deep for TOML sections)."""
    merged = dict(base)
    for key, val in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(val, dict)
        ):
            merged[key] = {**merged[key], **val}
        else:
            merged[key] = val
    return merged


@dataclass(frozen=True, slots=True)
class ResolverConfig:
    """Resolver settings, parsed from skillscope.toml and the environment."""
    corpus_root: str = "."
    default_budget_tokens: int = 8000
    min_confidence: float = 0.2
    relative_margin: float = 0.8
    max_secondary_matches: int = 3
    reference_overlap: float = 0.5
    workers: int = 4
    rescan_timeout_seconds: float = 30.0
    default_deadline_seconds: float | None = None
    log_level: str = "WARNING"
    log_json: bool = False

    def __post_init__(self) -> None:
        problems: list[str] = []
        if self.default_budget_tokens < 0:
            problems.append("default_budget_tokens must be >= 0")
        if self.min_confidence < 0:
            problems.append("min_confidence must be >= 0")
        if not 0 < self.relative_margin <= 1:
            problems.append("relative_margin must be in (0, 1]")
        if self.max_secondary_matches < 0:
            problems.append("max_secondary_matches must be >= 0")
        if not 0 <= self.reference_overlap <= 1:
            problems.append("reference_overlap must be in [0, 1]")
        if self.workers < 1:
            problems.append("workers must be >= 1")
        if self.rescan_timeout_seconds <= 0:
            problems.append("rescan_timeout_seconds must be > 0")
        if not isinstance(self.log_level, str) or self.log_level.upper() not in LEVELS:
            problems.append(f"log_level must be one of {', '.join(LEVELS)}")
        if not isinstance(self.log_json, bool):
            problems.append("log_json must be true or false")
        if problems:
            raise ConfigError("Invalid resolver config: " + "; ".join(problems))

    @property
    def corpus_path(self) -> Path:
        return Path(self.corpus_root).expanduser()

    @classmethod
    def from_toml(
        cls, path: Path | str = "skillscope.toml"
    ) -> ResolverConfig:
        path = Path(path)
        raw = _load_toml(path)
        return cls._from_raw(raw)

    @classmethod
    def load(
        cls,
        project_dir: Path | str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ResolverConfig:
        """Load config with global → project → environment layering.

        Resolution order (later wins):
        1. Built-in defaults
        2. ~/.skillscope/config.toml (global)
        3. .skillscope/config.toml or skillscope.toml (project)
        4. Environment variables (CORPUS_ROOT, DEFAULT_BUDGET_TOKENS,
           MIN_CONFIDENCE, RELATIVE_MARGIN, SKILLSCOPE_LOG_LEVEL,
           SKILLSCOPE_LOG_JSON)
        """
        global_path = Path.home() / ".skillscope" / "config.toml"

        project_dir = (
            Path.cwd() if project_dir is None else Path(project_dir)
        )

        # Project config: .skillscope/config.toml takes priority
        project_path = project_dir / ".skillscope" / "config.toml"
        if not project_path.exists():
            project_path = project_dir / "skillscope.toml"

        global_raw = _load_toml(global_path)
        project_raw = _load_toml(project_path)
        merged = _deep_merge(global_raw, project_raw)

        config = cls._from_raw(merged)
        return config.with_env(os.environ if environ is None else environ)

    def with_env(self, environ: Mapping[str, str]) -> ResolverConfig:
        """Return a copy with environment variable overrides applied."""
        updates: dict[str, object] = {}
        for var, (name, convert) in _ENV_OVERRIDES.items():
            value = environ.get(var)
            if value is None or value.strip() == "":
                continue
            try:
                updates[name] = convert(value.strip())
            except ValueError as exc:
                msg = f"Invalid value for {var}: {value!r}"
                raise ConfigError(msg, source=var) from exc
        return replace(self, **updates) if updates else self

    @classmethod
    def _from_raw(cls, raw: dict) -> ResolverConfig:
        """Build ResolverConfig from a raw TOML dict."""
        section = raw.get("resolver", {})
        known = {f.name for f in fields(cls)}
        picked = {k: v for k, v in section.items() if k in known}
        try:
            return cls(**picked)
        except TypeError as exc:
            raise ConfigError(f"Invalid [resolver] section: {exc}") from exc
