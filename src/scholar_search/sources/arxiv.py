"""arXiv preprint search over the Atom export API."""

import logging
import re
from datetime import date
from typing import List, Optional
from xml.etree.ElementTree import ParseError

import defusedxml.ElementTree as ET  # Security: prevent XML attacks
from defusedxml.common import DefusedXmlException
import httpx

from scholar_search.exceptions import SourceResponseError
from scholar_search.models.paper import AcademicPaper
from scholar_search.sources.base import HttpSourceAdapter, Reliability, SourceQuery

logger = logging.getLogger(__name__)

ARXIV_API = "http://export.arxiv.org/api/query"

ATOM_NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "arxiv": "http://arxiv.org/schemas/atom",
}

_ARXIV_ID = re.compile(r"arxiv\.org/abs/(.+)")


def _text(entry, path: str) -> str:
    elem = entry.find(path, ATOM_NS)
    if elem is None or not elem.text:
        return ""
    return " ".join(elem.text.split())


class ArxivAdapter(HttpSourceAdapter):
    """arXiv search; every record carries a PDF link and venue ``arXiv``."""

    id = "arxiv"
    reliability = Reliability.LOW
    rate_limit_rps = 0.33
    max_retries = 1
    base_delay = 0.3
    max_delay = 3.0

    async def _search(
        self, client: httpx.AsyncClient, query: str, options: SourceQuery
    ) -> List[AcademicPaper]:
        search_query = f'all:"{query}"'
        if options.from_year or options.to_year:
            start = options.from_year or 1991
            end = options.to_year or date.today().year
            search_query += f" AND submittedDate:[{start}01010000 TO {end}12312359]"

        params = {
            "search_query": search_query,
            "start": 0,
            "max_results": options.limit,
            "sortBy": "relevance",
            "sortOrder": "descending",
        }
        response = await self._send(
            lambda: client.get(ARXIV_API, params=params),
            fast_mode=options.fast_mode,
        )
        return self.parse_feed(response.text)

    def parse_feed(self, xml_text: str) -> List[AcademicPaper]:
        """Parse an Atom feed into papers."""
        try:
            root = ET.fromstring(xml_text)
        except (ParseError, DefusedXmlException) as e:
            raise SourceResponseError(self.id, f"invalid Atom feed: {e}") from e

        papers = []
        for entry in root.findall("atom:entry", ATOM_NS):
            title = _text(entry, "atom:title")
            if not title:
                continue

            entry_id = _text(entry, "atom:id")
            match = _ARXIV_ID.search(entry_id)
            arxiv_id = match.group(1) if match else ""

            authors = []
            for author in entry.findall("atom:author", ATOM_NS):
                name = _text(author, "atom:name")
                if name:
                    authors.append(name)

            year: Optional[int] = None
            published = _text(entry, "atom:published")
            if len(published) >= 4 and published[:4].isdigit():
                year = int(published[:4])

            pdf_url = None
            for link in entry.findall("atom:link", ATOM_NS):
                if link.get("title") == "pdf" or link.get("type") == "application/pdf":
                    pdf_url = link.get("href")
                    break

            categories = [c.get("term") for c in entry.findall("atom:category", ATOM_NS) if c.get("term")]

            papers.append(
                AcademicPaper(
                    title=title,
                    source=self.id,
                    abstract=_text(entry, "atom:summary") or None,
                    authors=authors,
                    year=year,
                    venue="arXiv",
                    doi=_text(entry, "arxiv:doi") or None,
                    url=entry_id or None,
                    pdf_url=pdf_url,
                    citation_count=0,
                    metadata={"paper_id": arxiv_id, "categories": categories},
                )
            )
        return papers
