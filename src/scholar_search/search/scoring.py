"""
Ranking of merged papers.

    citation factor   1 + log10(1 + citations)
    recency factor    0.1 per year after 2015, 0 for older or undated work
    combined          harmonic mean of the weighted factors when both are
                      non-zero, otherwise their sum; times the source weight
"""

import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from scholar_search.models.paper import CanonicalPaper

RECENCY_BASE_YEAR = 2015
RECENCY_STEP = 0.1


@dataclass(frozen=True)
class ScoringWeights:
    authority_weight: float = 1.0
    recency_weight: float = 1.0
    source_weights: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_options(cls, options) -> "ScoringWeights":
        return cls(
            authority_weight=options.authority_weight,
            recency_weight=options.recency_weight,
            source_weights=dict(options.source_weights or {}),
        )


def citation_factor(citation_count: Optional[int]) -> float:
    return 1.0 + math.log10(1 + max(citation_count or 0, 0))


def recency_factor(year: Optional[int]) -> float:
    if not year:
        return 0.0
    return max(0, year - RECENCY_BASE_YEAR) * RECENCY_STEP


def harmonic_mean(a: float, b: float) -> float:
    if a <= 0 or b <= 0:
        return 0.0
    return 2 * a * b / (a + b)


def combined_score(paper: CanonicalPaper, weights: ScoringWeights = ScoringWeights()) -> float:
    """Score one paper. Always finite and non-negative."""
    c = weights.authority_weight * citation_factor(paper.citation_count)
    r = weights.recency_weight * recency_factor(paper.year)
    if c > 0 and r > 0:
        base = harmonic_mean(c, r)
    else:
        base = c + r
    return base * weights.source_weights.get(paper.source, 1.0)


def rank_papers(
    papers: Sequence[CanonicalPaper], weights: ScoringWeights = ScoringWeights()
) -> List[CanonicalPaper]:
    """Copies of ``papers`` with ``score`` set, sorted best first (stable)."""
    scored = [replace(paper, score=combined_score(paper, weights)) for paper in papers]
    scored.sort(key=lambda paper: paper.score, reverse=True)
    return scored


def apply_regional_boost(
    papers: Sequence[CanonicalPaper], region: Optional[str]
) -> Tuple[List[CanonicalPaper], int]:
    """
    Move papers from ``region`` to the front without filtering anything.

    Relative order is preserved inside both groups.

    Returns:
        (reordered papers, number of regional papers)
    """
    if not region:
        return list(papers), 0

    wanted = region.strip().lower()
    local: List[CanonicalPaper] = []
    other: List[CanonicalPaper] = []
    for paper in papers:
        paper_region = paper.metadata.get("region")
        if isinstance(paper_region, str) and paper_region.strip().lower() == wanted:
            local.append(paper)
        else:
            other.append(paper)
    return local + other, len(local)
