"""Search orchestration: deduplication, ranking and the fallback chain."""

from .context import SearchContext
from .dedup import (
    canonical_key,
    dedupe_papers,
    deterministic_author_id,
    deterministic_paper_id,
    link_preprints,
    normalize_doi,
    normalize_title,
    to_canonical,
)
from .orchestrator import SearchOrchestrator, unified_search
from .scoring import (
    ScoringWeights,
    apply_regional_boost,
    citation_factor,
    combined_score,
    harmonic_mean,
    rank_papers,
    recency_factor,
)

__all__ = [
    "SearchContext",
    "SearchOrchestrator",
    "ScoringWeights",
    "apply_regional_boost",
    "canonical_key",
    "citation_factor",
    "combined_score",
    "dedupe_papers",
    "deterministic_author_id",
    "deterministic_paper_id",
    "harmonic_mean",
    "link_preprints",
    "normalize_doi",
    "normalize_title",
    "rank_papers",
    "recency_factor",
    "to_canonical",
    "unified_search",
]
