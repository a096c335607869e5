"""Scholar Search package.

Multi-source academic paper search: provider adapters, deduplication,
ranking and the orchestrator that ties them together.

Symbols are loaded lazily via ``__getattr__`` so that importing the package
does not pull in the HTTP or NLP stacks until they are actually used.
"""

from importlib import import_module
from typing import Any

__all__ = [
    "SearchOrchestrator",
    "SearchOptions",
    "SearchResult",
    "unified_search",
    "AcademicPaper",
    "CanonicalPaper",
    "SourceAdapter",
    "default_adapters",
    "SQLitePaperStore",
    "IngestionQueue",
    "CostPolicy",
    "request_cache_scope",
]

_EXPORT_MAP = {
    "SearchOrchestrator": ("scholar_search.search", "SearchOrchestrator"),
    "SearchOptions": ("scholar_search.models", "SearchOptions"),
    "SearchResult": ("scholar_search.models", "SearchResult"),
    "unified_search": ("scholar_search.search", "unified_search"),
    "AcademicPaper": ("scholar_search.models", "AcademicPaper"),
    "CanonicalPaper": ("scholar_search.models", "CanonicalPaper"),
    "SourceAdapter": ("scholar_search.sources", "SourceAdapter"),
    "default_adapters": ("scholar_search.sources", "default_adapters"),
    "SQLitePaperStore": ("scholar_search.db", "SQLitePaperStore"),
    "IngestionQueue": ("scholar_search.processors", "IngestionQueue"),
    "CostPolicy": ("scholar_search.processors", "CostPolicy"),
    "request_cache_scope": ("scholar_search.utils.cache", "request_cache_scope"),
}


def __getattr__(name: str) -> Any:
    """Lazy-load exported package symbols on first access."""
    if name not in _EXPORT_MAP:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, attr_name = _EXPORT_MAP[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
