"""
Canonical identity and deduplication of papers coming from many sources.

Identity rules:
- a paper with a DOI is identified by its normalised DOI
- otherwise by (normalised title, first author, year)

Ids are UUID v5 values over that identity in fixed namespaces, so the same
work gets the same id in every search and every process.
"""

import logging
import re
import uuid
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set, Union

from scholar_search.models.paper import AcademicPaper, Author, CanonicalPaper, RawAuthor

logger = logging.getLogger(__name__)

PAPER_NAMESPACE = uuid.UUID("6ba7b810-9dad-11d1-80b4-00c04fd430c8")
AUTHOR_NAMESPACE = uuid.UUID("6ba7b811-9dad-11d1-80b4-00c04fd430c8")

_DOI_PREFIX = re.compile(r"^(?:https?://(?:dx\.)?doi\.org/|doi:)", re.IGNORECASE)
_NON_WORD = re.compile(r"[^\w\s]")

AnyPaper = Union[AcademicPaper, CanonicalPaper]


def normalize_doi(doi: Optional[str]) -> str:
    """``https://doi.org/10.1/ABC`` -> ``10.1/abc``; empty string for None."""
    if not doi:
        return ""
    return _DOI_PREFIX.sub("", doi.strip()).strip().lower()


def normalize_title(title: Optional[str]) -> str:
    if not title:
        return ""
    return " ".join(_NON_WORD.sub("", title.lower()).split())


def author_name(author: RawAuthor) -> str:
    if isinstance(author, Author):
        return author.name or ""
    if isinstance(author, dict):
        return author.get("name") or ""
    return str(author or "")


def first_author_name(paper: AnyPaper) -> str:
    for author in paper.authors or []:
        name = author_name(author).strip()
        if name:
            return name
    return ""


def canonical_key(paper: AnyPaper) -> str:
    """Identity key: ``doi:<doi>`` or ``title:<title>|<first author>|<year>``."""
    doi = normalize_doi(paper.doi)
    if doi:
        return f"doi:{doi}"
    year = paper.year if paper.year else ""
    return f"title:{normalize_title(paper.title)}|{first_author_name(paper).lower()}|{year}"


def deterministic_paper_id(paper: AnyPaper) -> str:
    return str(uuid.uuid5(PAPER_NAMESPACE, canonical_key(paper)))


def deterministic_author_id(name: str) -> str:
    """Author ids depend on the name only, so affiliation changes don't split them."""
    return str(uuid.uuid5(AUTHOR_NAMESPACE, " ".join(name.lower().split())))


def _to_author(raw: RawAuthor) -> Optional[Author]:
    name = author_name(raw).strip()
    if not name:
        return None
    affiliation = None
    if isinstance(raw, Author):
        affiliation = raw.affiliation
    elif isinstance(raw, dict):
        affiliation = raw.get("affiliation")
    return Author(name=name, affiliation=affiliation, id=deterministic_author_id(name))


def to_canonical(paper: AnyPaper) -> CanonicalPaper:
    """Convert a raw provider record into a CanonicalPaper."""
    if isinstance(paper, CanonicalPaper):
        return paper

    authors = [a for a in (_to_author(raw) for raw in paper.authors or []) if a is not None]

    metadata = dict(paper.metadata or {})
    metadata["api_source"] = paper.source
    for name in ("relevance_score", "authority_score", "recency_score"):
        value = getattr(paper, name)
        if value is not None:
            metadata[name] = value

    return CanonicalPaper(
        id=deterministic_paper_id(paper),
        canonical_key=canonical_key(paper),
        title=" ".join((paper.title or "").split()),
        source=paper.source,
        abstract=paper.abstract or "",
        authors=authors,
        author_names=[a.name for a in authors],
        year=paper.year or None,
        publication_date=f"{paper.year}-01-01" if paper.year else None,
        venue=paper.venue or "",
        doi=normalize_doi(paper.doi),
        url=paper.url or "",
        pdf_url=paper.pdf_url or "",
        citation_count=max(paper.citation_count or 0, 0),
        metadata=metadata,
    )


def exclusion_keys(exclude_ids: Iterable[str]) -> Set[str]:
    """Seed set for ``dedupe_papers`` from caller-supplied ids or DOIs."""
    keys: Set[str] = set()
    for raw_id in exclude_ids or ():
        if not raw_id:
            continue
        keys.add(raw_id)
        doi = normalize_doi(raw_id)
        if doi.startswith("10."):
            keys.add(f"doi:{doi}")
    return keys


def dedupe_papers(
    papers: Iterable[AnyPaper], seen: Optional[Set[str]] = None
) -> List[CanonicalPaper]:
    """
    Single-pass deduplication; the first paper seen for an identity wins.

    Args:
        papers: Raw or canonical papers in priority order
        seen: Keys/ids already taken (earlier stages, exclusions). Updated
            in place so successive calls dedupe against each other.

    Returns:
        Canonical papers, first occurrence per identity, input order kept
    """
    if seen is None:
        seen = set()

    unique: List[CanonicalPaper] = []
    for paper in papers:
        canonical = to_canonical(paper)
        if canonical.canonical_key in seen or canonical.id in seen:
            continue
        seen.add(canonical.canonical_key)
        seen.add(canonical.id)
        unique.append(canonical)
    return unique


def link_preprints(papers: List[CanonicalPaper]) -> List[CanonicalPaper]:
    """
    Fold arXiv preprints into the published record with the same title.

    The published (DOI-bearing, non-arXiv) record keeps its own metadata and
    gains ``metadata["preprint_url"]``; the preprint record is dropped.
    """
    published: Dict[str, int] = {}
    for index, paper in enumerate(papers):
        if paper.doi and paper.source != "arxiv":
            published.setdefault(normalize_title(paper.title), index)

    if not published:
        return list(papers)

    preprint_urls: Dict[int, str] = {}
    folded: Set[int] = set()
    for index, paper in enumerate(papers):
        if paper.source != "arxiv":
            continue
        target = published.get(normalize_title(paper.title))
        if target is None or target == index:
            continue
        preprint_urls.setdefault(target, paper.pdf_url or paper.url)
        folded.add(index)

    linked: List[CanonicalPaper] = []
    for index, paper in enumerate(papers):
        if index in folded:
            continue
        if index in preprint_urls and preprint_urls[index]:
            paper = replace(paper, metadata={**paper.metadata, "preprint_url": preprint_urls[index]})
        linked.append(paper)

    if folded:
        logger.debug(f"Linked {len(folded)} preprints to published versions")
    return linked
