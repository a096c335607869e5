"""CORE open-access aggregator search. Requires an API key."""

import logging
from datetime import date
from typing import List, Optional

import httpx

from scholar_search.models.paper import AcademicPaper
from scholar_search.sources.base import HttpSourceAdapter, Reliability, SourceQuery

logger = logging.getLogger(__name__)

CORE_API = "https://api.core.ac.uk/v3"


class CoreAdapter(HttpSourceAdapter):
    """CORE v3 works search. Disabled unless an API key is configured."""

    id = "core"
    reliability = Reliability.LOW
    rate_limit_rps = 1.0
    max_retries = 1
    base_delay = 0.2
    max_delay = 2.0

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.enabled = bool(self.api_key)
        if not self.enabled:
            logger.debug("CORE_API_KEY not set, CORE source disabled")

    def _default_headers(self) -> dict:
        headers = super()._default_headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _search(
        self, client: httpx.AsyncClient, query: str, options: SourceQuery
    ) -> List[AcademicPaper]:
        search_query = f'title:"{query}" OR abstract:"{query}"'
        if options.from_year or options.to_year:
            start = options.from_year or 1900
            end = options.to_year or date.today().year
            search_query = f"({search_query}) AND yearPublished>={start} AND yearPublished<={end}"

        body = {"q": search_query, "limit": options.limit, "offset": 0}
        response = await self._send(
            lambda: client.post(f"{CORE_API}/search/works", json=body),
            fast_mode=options.fast_mode,
        )
        data = self._json(response)
        return [
            paper
            for paper in (self._parse_work(item) for item in data.get("results") or [])
            if paper is not None
        ]

    def _parse_work(self, item: dict) -> Optional[AcademicPaper]:
        if not item.get("title"):
            return None
        download_url = item.get("downloadUrl")
        if not download_url:
            # Fall back to the first full-text mirror
            fulltext_urls = item.get("sourceFulltextUrls") or []
            download_url = fulltext_urls[0] if fulltext_urls else None

        doi = item.get("doi")
        if doi:
            doi = doi.replace("https://doi.org/", "")

        return AcademicPaper(
            title=item["title"],
            source=self.id,
            abstract=item.get("abstract"),
            authors=[a.get("name") for a in (item.get("authors") or []) if a.get("name")],
            year=item.get("yearPublished"),
            venue=item.get("publisher") or None,
            doi=doi,
            url=download_url,
            pdf_url=download_url,
            citation_count=item.get("citationCount") or 0,
            metadata={"paper_id": str(item.get("id", ""))},
        )
