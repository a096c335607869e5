"""Centralized configuration loading."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

_config_cache: Optional[dict] = None
_CONFIG_FILENAME = "configs/config.yaml"

DISABLED_SOURCES_ENV = "SCHOLAR_SEARCH_DISABLED_SOURCES"


def _find_project_root() -> Path:
    """Walk up from this file to find the directory containing configs/."""
    current = Path(__file__).resolve().parent
    for _ in range(10):  # safety limit
        if (current / "configs").is_dir():
            return current
        current = current.parent
    # Fallback: assume CWD
    return Path.cwd()


def load_config(config_path: Optional[str] = None, *, use_cache: bool = True) -> dict:
    """Load and cache the YAML configuration.

    Args:
        config_path: Override path. If None, auto-discovers configs/config.yaml.
        use_cache: If True (default), returns cached result on subsequent calls.
    """
    global _config_cache
    if use_cache and _config_cache is not None and config_path is None:
        return _config_cache

    if config_path:
        path = Path(config_path)
    else:
        path = _find_project_root() / _CONFIG_FILENAME

    if not path.exists():
        logger.debug(f"Config file not found: {path}")
        result = {}
    else:
        try:
            with path.open("r", encoding="utf-8") as f:
                result = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            result = {}

    if config_path is None:
        _config_cache = result
    return result


def clear_config_cache():
    """Clear the cached config (useful for testing)."""
    global _config_cache
    _config_cache = None


def parse_source_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated id list, dropping blanks."""
    if not value:
        return []
    return [part.strip().lower() for part in value.split(",") if part.strip()]


def disabled_sources_from_env() -> List[str]:
    """Adapter ids disabled through SCHOLAR_SEARCH_DISABLED_SOURCES."""
    return parse_source_list(os.environ.get(DISABLED_SOURCES_ENV))


def merge_deny_lists(*lists: Iterable[str]) -> Tuple[str, ...]:
    """Union of deny-lists, lower-cased, in first-seen order."""
    merged: List[str] = []
    for ids in lists:
        for source_id in ids or ():
            source_id = source_id.strip().lower()
            if source_id and source_id not in merged:
                merged.append(source_id)
    return tuple(merged)


@dataclass
class SearchSettings:
    """Typed defaults derived from the config file and environment."""

    max_results: int = 20
    min_results: int = 5
    from_year: Optional[int] = 2000
    timeout_ms: int = 15000
    fast_timeout_ms: int = 8000
    concurrency_limit: int = 5
    fast_concurrency_limit: int = 3
    contact_email: str = "research@example.com"
    disabled_sources: Tuple[str, ...] = ()
    cache_ttl_seconds: float = 60
    global_cache_size: int = 100
    ingest_max_cost_usd: float = 5.0
    ingest_cost_per_paper_usd: float = 0.00002
    ingest_workers: int = 2
    ingest_queue_size: int = 200
    api_keys: dict = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "SearchSettings":
        """Build settings from a loaded config dict plus environment."""
        config = config if config is not None else load_config()
        search = config.get("search") or {}
        sources = config.get("sources") or {}
        cache = config.get("cache") or {}
        ingest = config.get("ingest") or {}
        defaults = cls()

        api_keys = {
            "semantic_scholar": (sources.get("semantic_scholar") or {}).get("api_key")
            or os.environ.get("SEMANTIC_SCHOLAR_API_KEY"),
            "core": (sources.get("core") or {}).get("api_key")
            or os.environ.get("CORE_API_KEY"),
        }

        max_cost = os.environ.get("MAX_INGEST_COST_USD")
        try:
            ingest_max_cost = float(max_cost) if max_cost else float(
                ingest.get("max_cost_usd", defaults.ingest_max_cost_usd)
            )
        except ValueError:
            logger.warning(f"Ignoring invalid MAX_INGEST_COST_USD={max_cost!r}")
            ingest_max_cost = float(ingest.get("max_cost_usd", defaults.ingest_max_cost_usd))

        return cls(
            max_results=int(search.get("max_results", defaults.max_results)),
            min_results=int(search.get("min_results", defaults.min_results)),
            from_year=search.get("from_year", defaults.from_year),
            timeout_ms=int(search.get("timeout_ms", defaults.timeout_ms)),
            fast_timeout_ms=int(search.get("fast_timeout_ms", defaults.fast_timeout_ms)),
            concurrency_limit=int(search.get("concurrency_limit", defaults.concurrency_limit)),
            fast_concurrency_limit=int(
                search.get("fast_concurrency_limit", defaults.fast_concurrency_limit)
            ),
            contact_email=os.environ.get("CONTACT_EMAIL")
            or search.get("contact_email", defaults.contact_email),
            disabled_sources=merge_deny_lists(
                sources.get("disabled") or [], disabled_sources_from_env()
            ),
            cache_ttl_seconds=float(cache.get("ttl_seconds", defaults.cache_ttl_seconds)),
            global_cache_size=int(cache.get("global_max_size", defaults.global_cache_size)),
            ingest_max_cost_usd=ingest_max_cost,
            ingest_cost_per_paper_usd=float(
                ingest.get("cost_per_paper_usd", defaults.ingest_cost_per_paper_usd)
            ),
            ingest_workers=int(ingest.get("workers", defaults.ingest_workers)),
            ingest_queue_size=int(ingest.get("queue_size", defaults.ingest_queue_size)),
            api_keys=api_keys,
        )
