"""OpenAlex works search. Fully open, no API key needed."""

import logging
from typing import Dict, List, Optional

import httpx

from scholar_search.models.paper import AcademicPaper
from scholar_search.sources.base import HttpSourceAdapter, Reliability, SourceQuery

logger = logging.getLogger(__name__)

OPENALEX_API = "https://api.openalex.org"
WORK_TYPES = "type:journal-article|preprint|proceedings-article"


def reconstruct_abstract(inverted_index: Optional[Dict[str, List[int]]]) -> Optional[str]:
    """
    Reconstruct abstract from OpenAlex inverted index format.

    OpenAlex stores abstracts as {word: [positions]} for compression.
    """
    if not inverted_index:
        return None

    word_positions = []
    for word, positions in inverted_index.items():
        for pos in positions or []:
            if isinstance(pos, int):
                word_positions.append((pos, word))

    word_positions.sort()
    return " ".join(word for _, word in word_positions) or None


class OpenAlexAdapter(HttpSourceAdapter):
    """OpenAlex /works search, sorted by citation count."""

    id = "openalex"
    reliability = Reliability.HIGH
    rate_limit_rps = 10.0
    max_retries = 1
    base_delay = 0.2
    max_delay = 2.0

    async def _search(
        self, client: httpx.AsyncClient, query: str, options: SourceQuery
    ) -> List[AcademicPaper]:
        params = {
            "search": query,
            "per_page": min(options.limit, 200),  # API max is 200
            "sort": "cited_by_count:desc",
            "mailto": self.contact_email,
        }

        filters = [WORK_TYPES]
        if options.from_year:
            filters.append(f"from_publication_date:{options.from_year}-01-01")
        if options.to_year:
            filters.append(f"to_publication_date:{options.to_year}-12-31")
        params["filter"] = ",".join(filters)

        response = await self._send(
            lambda: client.get(f"{OPENALEX_API}/works", params=params),
            fast_mode=options.fast_mode,
        )
        data = self._json(response)
        return [
            paper
            for paper in (self._parse_work(item) for item in data.get("results") or [])
            if paper is not None
        ]

    def _parse_work(self, item: dict) -> Optional[AcademicPaper]:
        title = item.get("display_name") or item.get("title")
        if not title:
            return None

        authors = []
        for authorship in item.get("authorships") or []:
            author = authorship.get("author") or {}
            if author.get("display_name"):
                institutions = authorship.get("institutions") or []
                affiliation = institutions[0].get("display_name") if institutions else None
                authors.append({"name": author["display_name"], "affiliation": affiliation})

        venue = None
        landing_url = None
        primary_location = item.get("primary_location") or {}
        if primary_location:
            source = primary_location.get("source") or {}
            venue = source.get("display_name")
            landing_url = primary_location.get("landing_page_url")

        oa_info = item.get("open_access") or {}
        doi = item.get("doi")
        if doi:
            doi = doi.replace("https://doi.org/", "")

        metadata = {"paper_id": (item.get("id") or "").replace("https://openalex.org/", "")}
        country = _first_country(item.get("authorships") or [])
        if country:
            metadata["region"] = country

        return AcademicPaper(
            title=title,
            source=self.id,
            abstract=reconstruct_abstract(item.get("abstract_inverted_index")),
            authors=authors,
            year=item.get("publication_year"),
            venue=venue,
            doi=doi,
            url=landing_url or item.get("id"),
            pdf_url=oa_info.get("oa_url"),
            citation_count=item.get("cited_by_count"),
            metadata=metadata,
        )


def _first_country(authorships: List[dict]) -> Optional[str]:
    for authorship in authorships:
        countries = authorship.get("countries") or []
        if countries:
            return countries[0]
    return None
