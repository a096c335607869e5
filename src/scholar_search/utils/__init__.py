"""Shared utilities: caching, config, text processing, retries, observability."""

from .cache import (
    TTLCache,
    clear_search_cache,
    current_search_cache,
    get_global_cache,
    make_cache_key,
    request_cache_scope,
)
from .config import SearchSettings, clear_config_cache, load_config
from .observability import get_request_id, new_request_id, set_request_id, timed
from .retry import retry_with_backoff
from .text import normalize_query, term_combinations, tokenize_query

__all__ = [
    "TTLCache",
    "clear_search_cache",
    "current_search_cache",
    "get_global_cache",
    "make_cache_key",
    "request_cache_scope",
    "SearchSettings",
    "clear_config_cache",
    "load_config",
    "get_request_id",
    "new_request_id",
    "set_request_id",
    "timed",
    "retry_with_backoff",
    "normalize_query",
    "term_combinations",
    "tokenize_query",
]
