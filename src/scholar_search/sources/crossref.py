"""Crossref works search (DOI metadata)."""

import logging
import re
from typing import List, Optional

import httpx

from scholar_search.models.paper import AcademicPaper
from scholar_search.sources.base import HttpSourceAdapter, Reliability, SourceQuery

logger = logging.getLogger(__name__)

CROSSREF_API = "https://api.crossref.org"

_JATS_TAG = re.compile(r"<[^>]+>")


class CrossrefAdapter(HttpSourceAdapter):
    """Crossref bibliographic search ordered by relevance score."""

    id = "crossref"
    reliability = Reliability.HIGH
    rate_limit_rps = 5.0
    max_retries = 1
    base_delay = 0.2
    max_delay = 2.0

    async def _search(
        self, client: httpx.AsyncClient, query: str, options: SourceQuery
    ) -> List[AcademicPaper]:
        params = {
            "query.bibliographic": query,
            "rows": min(options.limit, 1000),
            "sort": "score",
            "order": "desc",
            "mailto": self.contact_email,
        }
        if options.from_year or options.to_year:
            start = f"{options.from_year}-01-01" if options.from_year else "1000-01-01"
            end = f"{options.to_year}-12-31" if options.to_year else "3000-12-31"
            params["filter"] = f"from-pub-date:{start},until-pub-date:{end}"

        response = await self._send(
            lambda: client.get(f"{CROSSREF_API}/works", params=params),
            fast_mode=options.fast_mode,
        )
        data = self._json(response)
        items = (data.get("message") or {}).get("items") or []
        return [paper for paper in (self._parse_item(item) for item in items) if paper is not None]

    def _parse_item(self, item: dict) -> Optional[AcademicPaper]:
        titles = item.get("title") or []
        title = titles[0] if isinstance(titles, list) and titles else titles
        if not title:
            return None

        authors = []
        for author in item.get("author") or []:
            name = f"{author.get('given', '')} {author.get('family', '')}".strip()
            if not name:
                name = author.get("name", "")
            if name:
                affiliations = author.get("affiliation") or []
                affiliation = affiliations[0].get("name") if affiliations else None
                authors.append({"name": name, "affiliation": affiliation})

        containers = item.get("container-title") or []
        abstract = item.get("abstract")
        if abstract:
            abstract = " ".join(_JATS_TAG.sub(" ", abstract).split())

        return AcademicPaper(
            title=" ".join(str(title).split()),
            source=self.id,
            abstract=abstract or None,
            authors=authors,
            year=_published_year(item),
            venue=containers[0] if containers else None,
            doi=item.get("DOI"),
            url=item.get("URL"),
            citation_count=item.get("is-referenced-by-count"),
            metadata={"paper_id": item.get("DOI", ""), "type": item.get("type")},
        )


def _published_year(item: dict) -> Optional[int]:
    for key in ("published", "published-print", "published-online", "issued"):
        parts = (item.get(key) or {}).get("date-parts") or []
        if parts and parts[0] and parts[0][0]:
            return int(parts[0][0])
    return None
