"""bimcontext configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (BIMCONTEXT_DB, BIMCONTEXT_LANGUAGE,
                             BIMCONTEXT_MAX_CONTEXT_TOKENS)
  3. Per-project bimcontext.yaml  (in the working directory)
  4. Global ~/.bimcontext/config.yaml
  5. Hardcoded defaults

All YAML reads use yaml.safe_load(), never yaml.load().
The CLI commands pass sections of the loaded object explicitly to
SmartChunker, ContextSelector and CachedChunkStore; there is no
module-level instance.
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from bimcontext.chunking.base import SizeOptions

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".bimcontext"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "bimcontext.yaml"

LANGUAGES: frozenset[str] = frozenset(["de", "en"])

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(["chunking", "selection", "cache", "storage"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file or override contains an invalid value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ChunkingCfg:
    """Chunk size targets in estimated tokens (bimcontext.yaml: chunking:).

    Attributes:
        target_token_size: Fill target when packing entities into a chunk.
        max_token_size: Chunks above this are split by the orchestrator.
        overlap_tokens: Trailing context repeated between split parts.
    """

    target_token_size: int = 3000
    max_token_size: int = 4000
    overlap_tokens: int = 200

    def size_options(self) -> SizeOptions:
        return SizeOptions(
            target_token_size=self.target_token_size,
            max_token_size=self.max_token_size,
            overlap_tokens=self.overlap_tokens,
        )


@dataclass
class SelectionCfg:
    """Context selection settings (bimcontext.yaml: selection:).

    Attributes:
        max_context_tokens: Default total token limit for a query.
        batch_size: Chunks loaded and scored per batch.
        high_quality_score: Score above which a candidate counts toward early stop.
        early_stop_factor: Stop loading once high-quality tokens exceed
            this multiple of the token limit ...
        early_stop_min_chunks: ... and more than this many such chunks are ranked.
        compact_threshold: Use compact rendering above this many selected chunks.
        language: Output language of the assembled context (de | en).
    """

    max_context_tokens: int = 4000
    batch_size: int = 50
    high_quality_score: float = 0.7
    early_stop_factor: float = 1.5
    early_stop_min_chunks: int = 10
    compact_threshold: int = 10
    language: str = "de"


@dataclass
class CacheCfg:
    """Persistence result cache (bimcontext.yaml: cache:)."""

    capacity: int = 100
    ttl_seconds: float = 300.0


@dataclass
class StorageCfg:
    """SQLite store location (bimcontext.yaml: storage:)."""

    db_path: str = ".bimcontext.db"


@dataclass
class BimContextConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    selection: SelectionCfg = field(default_factory=SelectionCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}', ignored.",
                UserWarning,
                stacklevel=4,
            )


def validate_config(cfg: BimContextConfig) -> None:
    """Raise ConfigError for the first out-of-range value found."""
    ch = cfg.chunking
    if ch.target_token_size < 1:
        raise ConfigError(
            f"chunking.target_token_size must be >= 1, got {ch.target_token_size}"
        )
    if ch.max_token_size < ch.target_token_size:
        raise ConfigError(
            f"chunking.max_token_size ({ch.max_token_size}) must be >= "
            f"chunking.target_token_size ({ch.target_token_size})"
        )
    if not 0 <= ch.overlap_tokens < ch.target_token_size:
        raise ConfigError(
            f"chunking.overlap_tokens must be in [0, {ch.target_token_size}), "
            f"got {ch.overlap_tokens}"
        )
    if cfg.selection.language not in LANGUAGES:
        raise ConfigError(
            f"selection.language must be one of {sorted(LANGUAGES)}, "
            f"got '{cfg.selection.language}'"
        )
    if cfg.selection.batch_size < 1:
        raise ConfigError(f"selection.batch_size must be >= 1, got {cfg.selection.batch_size}")
    if cfg.cache.capacity < 1:
        raise ConfigError(f"cache.capacity must be >= 1, got {cfg.cache.capacity}")
    if cfg.cache.ttl_seconds <= 0:
        raise ConfigError(f"cache.ttl_seconds must be > 0, got {cfg.cache.ttl_seconds}")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> BimContextConfig:
    """Build a *BimContextConfig* from a merged raw YAML dict."""
    cfg = BimContextConfig()

    try:
        if "chunking" in data:
            c = data["chunking"] or {}
            cfg.chunking = ChunkingCfg(
                target_token_size=int(c.get("target_token_size", cfg.chunking.target_token_size)),
                max_token_size=int(c.get("max_token_size", cfg.chunking.max_token_size)),
                overlap_tokens=int(c.get("overlap_tokens", cfg.chunking.overlap_tokens)),
            )

        if "selection" in data:
            s = data["selection"] or {}
            d = cfg.selection
            cfg.selection = SelectionCfg(
                max_context_tokens=int(s.get("max_context_tokens", d.max_context_tokens)),
                batch_size=int(s.get("batch_size", d.batch_size)),
                high_quality_score=float(s.get("high_quality_score", d.high_quality_score)),
                early_stop_factor=float(s.get("early_stop_factor", d.early_stop_factor)),
                early_stop_min_chunks=int(s.get("early_stop_min_chunks", d.early_stop_min_chunks)),
                compact_threshold=int(s.get("compact_threshold", d.compact_threshold)),
                language=str(s.get("language", d.language)),
            )

        if "cache" in data:
            ca = data["cache"] or {}
            cfg.cache = CacheCfg(
                capacity=int(ca.get("capacity", cfg.cache.capacity)),
                ttl_seconds=float(ca.get("ttl_seconds", cfg.cache.ttl_seconds)),
            )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    if "storage" in data:
        st = data["storage"] or {}
        cfg.storage = StorageCfg(db_path=str(st.get("db_path", cfg.storage.db_path)))

    return cfg


def _apply_env_overrides(cfg: BimContextConfig) -> BimContextConfig:
    """Apply BIMCONTEXT_* environment variable overrides."""
    if db := os.environ.get("BIMCONTEXT_DB"):
        cfg.storage.db_path = db
    if language := os.environ.get("BIMCONTEXT_LANGUAGE"):
        cfg.selection.language = language.lower()
    if limit := os.environ.get("BIMCONTEXT_MAX_CONTEXT_TOKENS"):
        try:
            cfg.selection.max_context_tokens = int(limit)
        except ValueError as exc:
            raise ConfigError(
                f"BIMCONTEXT_MAX_CONTEXT_TOKENS must be an integer, got '{limit}'"
            ) from exc
    return cfg


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse '{path}': {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"'{path}' must contain a mapping at the top level")
    return raw


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> BimContextConfig:
    """Load and return a merged *BimContextConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *bimcontext.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged and validated *BimContextConfig*.

    Raises:
        ConfigError: If a file cannot be parsed or a value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    validate_config(cfg)
    return cfg
