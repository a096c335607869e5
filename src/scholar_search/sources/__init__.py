"""Academic source adapters."""

import logging
from typing import List, Optional

from .arxiv import ArxivAdapter
from .base import (
    HttpSourceAdapter,
    RateLimiter,
    Reliability,
    SourceAdapter,
    SourceQuery,
    order_adapters,
    select_adapters,
)
from .circuit_breaker import CircuitBreaker, CircuitState
from .core import CoreAdapter
from .crossref import CrossrefAdapter
from .openalex import OpenAlexAdapter
from .semantic_scholar import SemanticScholarAdapter

logger = logging.getLogger(__name__)


def default_adapters(settings=None) -> List[SourceAdapter]:
    """
    Build the standard provider list in priority order.

    Args:
        settings: SearchSettings (or None to load from config). CORE is only
            included when an API key is available.
    """
    if settings is None:
        from scholar_search.utils.config import SearchSettings

        settings = SearchSettings.from_config()

    email: Optional[str] = settings.contact_email
    keys = settings.api_keys or {}
    adapters: List[SourceAdapter] = [
        OpenAlexAdapter(contact_email=email),
        CrossrefAdapter(contact_email=email),
        SemanticScholarAdapter(contact_email=email, api_key=keys.get("semantic_scholar")),
        ArxivAdapter(contact_email=email),
        CoreAdapter(contact_email=email, api_key=keys.get("core")),
    ]
    enabled = [adapter for adapter in adapters if adapter.enabled]
    logger.debug(f"Default sources: {[adapter.id for adapter in enabled]}")
    return order_adapters(enabled)


__all__ = [
    "ArxivAdapter",
    "CircuitBreaker",
    "CircuitState",
    "CoreAdapter",
    "CrossrefAdapter",
    "HttpSourceAdapter",
    "OpenAlexAdapter",
    "RateLimiter",
    "Reliability",
    "SemanticScholarAdapter",
    "SourceAdapter",
    "SourceQuery",
    "default_adapters",
    "order_adapters",
    "select_adapters",
]
