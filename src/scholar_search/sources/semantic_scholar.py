"""
Semantic Scholar Graph API search.

Free tier is roughly 100 requests per 5 minutes; an API key raises that, but
the adapter keeps the conservative budget either way.
"""

import logging
from typing import List, Optional

import httpx

from scholar_search.models.paper import AcademicPaper
from scholar_search.sources.base import HttpSourceAdapter, Reliability, SourceQuery

logger = logging.getLogger(__name__)

SEMANTIC_SCHOLAR_API = "https://api.semanticscholar.org/graph/v1"
SEARCH_FIELDS = (
    "paperId,title,abstract,year,citationCount,authors,venue,openAccessPdf,externalIds,url"
)


class SemanticScholarAdapter(HttpSourceAdapter):
    """Semantic Scholar /paper/search."""

    id = "semantic_scholar"
    reliability = Reliability.MEDIUM
    rate_limit_rps = 0.33
    max_retries = 1
    base_delay = 0.3
    max_delay = 3.0

    def _default_headers(self) -> dict:
        headers = super()._default_headers()
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def _search(
        self, client: httpx.AsyncClient, query: str, options: SourceQuery
    ) -> List[AcademicPaper]:
        params = {
            "query": query,
            "limit": min(options.limit, 100),  # API max is 100
            "fields": SEARCH_FIELDS,
        }
        if options.from_year or options.to_year:
            params["year"] = f"{options.from_year or ''}-{options.to_year or ''}"

        response = await self._send(
            lambda: client.get(f"{SEMANTIC_SCHOLAR_API}/paper/search", params=params),
            fast_mode=options.fast_mode,
        )
        data = self._json(response)
        return [
            paper
            for paper in (self._parse_item(item) for item in data.get("data") or [])
            if paper is not None
        ]

    def _parse_item(self, item: dict) -> Optional[AcademicPaper]:
        if not item.get("title"):
            return None

        # Extract DOI from external IDs
        external_ids = item.get("externalIds") or {}
        doi = external_ids.get("DOI")

        pdf_url = None
        if item.get("openAccessPdf"):
            pdf_url = item["openAccessPdf"].get("url")

        paper_id = item.get("paperId", "")
        return AcademicPaper(
            title=item["title"],
            source=self.id,
            abstract=item.get("abstract"),
            authors=[a.get("name", "") for a in (item.get("authors") or []) if a.get("name")],
            year=item.get("year"),
            venue=item.get("venue") or None,
            doi=doi,
            url=item.get("url") or f"https://www.semanticscholar.org/paper/{paper_id}",
            pdf_url=pdf_url,
            citation_count=item.get("citationCount"),
            metadata={"paper_id": paper_id},
        )
