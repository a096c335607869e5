"""Paper dataclasses shared by adapters, the store and the orchestrator.

AcademicPaper is the raw, source-specific record an adapter produces. It is
frozen: the pipeline never edits it, it only converts it into a
CanonicalPaper (see ``scholar_search.search.dedup.to_canonical``).
"""

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class Author:
    """A paper author. ``id`` is filled in during canonicalisation."""

    name: str
    affiliation: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


# Sources disagree on author shape: plain names, {"name", "affiliation"}
# dicts, or Author instances.
RawAuthor = Union[str, Author, Dict[str, Any]]


@dataclass(frozen=True)
class AcademicPaper:
    """Paper as returned by one provider, before merging."""

    title: str
    source: str
    abstract: Optional[str] = None
    authors: List[RawAuthor] = field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    doi: Optional[str] = None
    url: Optional[str] = None
    pdf_url: Optional[str] = None
    citation_count: Optional[int] = None
    relevance_score: Optional[float] = None
    authority_score: Optional[float] = None
    recency_score: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    def __str__(self) -> str:
        return f"{self.title} ({self.year}) - {self.citation_count or 0} citations [{self.source}]"


@dataclass
class CanonicalPaper:
    """
    Unified post-merge paper with a deterministic identity.

    ``id`` is a UUID derived from the DOI when present, otherwise from the
    normalised (title, first author, year) tuple, so the same work gets the
    same id across sources and across separate searches.
    """

    id: str
    canonical_key: str
    title: str
    source: str
    abstract: str = ""
    authors: List[Author] = field(default_factory=list)
    author_names: List[str] = field(default_factory=list)
    year: Optional[int] = None
    publication_date: Optional[str] = None
    venue: str = ""
    doi: str = ""
    url: str = ""
    pdf_url: str = ""
    citation_count: int = 0
    score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def region(self) -> Optional[str]:
        return self.metadata.get("region")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    def __str__(self) -> str:
        return f"{self.title} ({self.year}) - {self.citation_count} citations"


# Name used by callers that think of the merged record as "a paper with authors".
PaperWithAuthors = CanonicalPaper
