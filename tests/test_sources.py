"""Tests for the academic source adapters and shared HTTP plumbing."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from scholar_search.exceptions import SourceRateLimited, SourceResponseError
from scholar_search.sources import (
    ArxivAdapter,
    CoreAdapter,
    CrossrefAdapter,
    OpenAlexAdapter,
    RateLimiter,
    Reliability,
    SemanticScholarAdapter,
    SourceQuery,
    default_adapters,
    order_adapters,
    select_adapters,
)
from scholar_search.sources.openalex import reconstruct_abstract
from scholar_search.utils.config import SearchSettings
from scholar_search.utils.retry import retry_with_backoff


def _response(payload=None, status_code=200, text=None, headers=None):
    mock_resp = MagicMock()
    mock_resp.status_code = status_code
    mock_resp.json.return_value = payload
    mock_resp.text = text
    mock_resp.headers = headers or {}
    return mock_resp


def _client(response, method="get"):
    client = AsyncMock()
    setattr(client, method, AsyncMock(return_value=response))
    return client


SAMPLE_OPENALEX_RESPONSE = {
    "results": [
        {
            "id": "https://openalex.org/W123",
            "display_name": "Arctic Sea Ice Decline",
            "publication_year": 2021,
            "doi": "https://doi.org/10.1234/ice.2021",
            "cited_by_count": 42,
            "abstract_inverted_index": {"Sea": [0], "ice": [1], "declines": [2]},
            "authorships": [
                {
                    "author": {"display_name": "Ingrid Olsen"},
                    "institutions": [{"display_name": "UiT The Arctic University"}],
                    "countries": ["NO"],
                },
                {"author": {"display_name": "Jon Smith"}, "institutions": [], "countries": []},
            ],
            "primary_location": {
                "landing_page_url": "https://example.org/ice",
                "source": {"display_name": "Polar Research"},
            },
            "open_access": {"oa_url": "https://example.org/ice.pdf"},
        },
        {"id": "https://openalex.org/W999", "display_name": None},
    ]
}

SAMPLE_CROSSREF_RESPONSE = {
    "message": {
        "items": [
            {
                "DOI": "10.5555/graph.2019",
                "title": ["Graph   Neural Networks"],
                "author": [
                    {"given": "Ada", "family": "Lovelace", "affiliation": [{"name": "Analytical"}]},
                    {"name": "GNN Consortium"},
                ],
                "container-title": ["Journal of Graphs"],
                "abstract": "<jats:p>Message <jats:italic>passing</jats:italic> works.</jats:p>",
                "published-print": {"date-parts": [[2019, 5]]},
                "is-referenced-by-count": 7,
                "URL": "https://doi.org/10.5555/graph.2019",
                "type": "journal-article",
            },
            {"DOI": "10.5555/untitled", "title": []},
        ]
    }
}

SAMPLE_S2_RESPONSE = {
    "data": [
        {
            "paperId": "abc123",
            "title": "Learning to Rank Papers",
            "abstract": "We rank papers.",
            "year": 2022,
            "citationCount": 3,
            "authors": [{"name": "Grace Hopper"}, {"name": ""}],
            "venue": "",
            "openAccessPdf": {"url": "https://example.org/rank.pdf"},
            "externalIds": {"DOI": "10.1/rank"},
            "url": None,
        }
    ]
}

SAMPLE_CORE_RESPONSE = {
    "totalHits": 2,
    "results": [
        {
            "id": 12345,
            "title": "Indigenous Knowledge Systems in the Arctic",
            "abstract": "This paper examines indigenous knowledge systems...",
            "yearPublished": 2021,
            "authors": [{"name": "Kramvig, B."}, {"name": "Kristoffersen, B."}],
            "doi": "https://doi.org/10.1234/test.2021",
            "downloadUrl": "https://core.ac.uk/download/pdf/12345.pdf",
            "citationCount": 15,
            "publisher": "Arctic Research Journal",
            "sourceFulltextUrls": [],
        },
        {
            "id": 67890,
            "title": "Climate Adaptation in Northern Communities",
            "yearPublished": 2020,
            "authors": [{"name": "Harvey, D."}],
            "doi": "10.5678/climate.2020",
            "downloadUrl": None,
            "citationCount": None,
            "publisher": None,
            "sourceFulltextUrls": ["https://example.com/paper.pdf"],
        },
    ],
}

SAMPLE_ARXIV_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom" xmlns:arxiv="http://arxiv.org/schemas/atom">
  <entry>
    <id>http://arxiv.org/abs/1710.10903v3</id>
    <published>2017-10-30T17:51:21Z</published>
    <title>Graph Attention
      Networks</title>
    <summary>  We present graph attention networks.  </summary>
    <author><name>Petar Velickovic</name></author>
    <author><name>Guillem Cucurull</name></author>
    <arxiv:doi>10.48550/arXiv.1710.10903</arxiv:doi>
    <link href="http://arxiv.org/abs/1710.10903v3" rel="alternate" type="text/html"/>
    <link title="pdf" href="http://arxiv.org/pdf/1710.10903v3" rel="related" type="application/pdf"/>
    <category term="stat.ML"/>
    <category term="cs.LG"/>
  </entry>
  <entry>
    <id>http://arxiv.org/abs/0000.00000v1</id>
    <title></title>
  </entry>
</feed>
"""


# ============================================
# Provider parsing
# ============================================

class TestOpenAlex:
    @pytest.mark.asyncio
    async def test_returns_papers(self):
        adapter = OpenAlexAdapter(contact_email="me@uni.edu")
        with patch.object(adapter, "_get_client") as mock_client:
            client = _client(_response(SAMPLE_OPENALEX_RESPONSE))
            mock_client.return_value = client
            papers = await adapter.search("sea ice", SourceQuery(limit=5, from_year=2015, to_year=2022))

        assert len(papers) == 1
        paper = papers[0]
        assert paper.title == "Arctic Sea Ice Decline"
        assert paper.source == "openalex"
        assert paper.doi == "10.1234/ice.2021"
        assert paper.abstract == "Sea ice declines"
        assert paper.authors[0] == {"name": "Ingrid Olsen", "affiliation": "UiT The Arctic University"}
        assert paper.venue == "Polar Research"
        assert paper.url == "https://example.org/ice"
        assert paper.pdf_url == "https://example.org/ice.pdf"
        assert paper.metadata == {"paper_id": "W123", "region": "NO"}

        params = client.get.call_args.kwargs["params"]
        assert params["per_page"] == 5
        assert params["mailto"] == "me@uni.edu"
        assert "from_publication_date:2015-01-01" in params["filter"]
        assert "to_publication_date:2022-12-31" in params["filter"]

    def test_reconstruct_abstract(self):
        assert reconstruct_abstract({"world": [1], "hello": [0]}) == "hello world"
        assert reconstruct_abstract(None) is None
        assert reconstruct_abstract({}) is None


class TestCrossref:
    @pytest.mark.asyncio
    async def test_returns_papers(self):
        adapter = CrossrefAdapter()
        with patch.object(adapter, "_get_client") as mock_client:
            client = _client(_response(SAMPLE_CROSSREF_RESPONSE))
            mock_client.return_value = client
            papers = await adapter.search("graph neural", SourceQuery(limit=3, from_year=2018))

        assert len(papers) == 1
        paper = papers[0]
        assert paper.title == "Graph Neural Networks"
        assert paper.year == 2019
        assert paper.abstract == "Message passing works."
        assert [a["name"] for a in paper.authors] == ["Ada Lovelace", "GNN Consortium"]
        assert paper.authors[0]["affiliation"] == "Analytical"
        assert paper.venue == "Journal of Graphs"
        assert paper.citation_count == 7

        params = client.get.call_args.kwargs["params"]
        assert params["query.bibliographic"] == "graph neural"
        assert params["filter"] == "from-pub-date:2018-01-01,until-pub-date:3000-12-31"


class TestSemanticScholar:
    @pytest.mark.asyncio
    async def test_returns_papers(self):
        adapter = SemanticScholarAdapter(api_key="s2-key")
        with patch.object(adapter, "_get_client") as mock_client:
            client = _client(_response(SAMPLE_S2_RESPONSE))
            mock_client.return_value = client
            papers = await adapter.search("ranking", SourceQuery(limit=500, from_year=2020))

        paper = papers[0]
        assert paper.doi == "10.1/rank"
        assert paper.pdf_url == "https://example.org/rank.pdf"
        assert paper.authors == ["Grace Hopper"]
        assert paper.venue is None
        assert paper.url == "https://www.semanticscholar.org/paper/abc123"

        params = client.get.call_args.kwargs["params"]
        assert params["limit"] == 100
        assert params["year"] == "2020-"

    def test_api_key_header(self):
        assert SemanticScholarAdapter(api_key="s2-key")._default_headers()["x-api-key"] == "s2-key"
        assert "x-api-key" not in SemanticScholarAdapter()._default_headers()


class TestCore:
    @pytest.mark.asyncio
    async def test_returns_papers(self):
        adapter = CoreAdapter(api_key="test-key")
        with patch.object(adapter, "_get_client") as mock_client:
            client = _client(_response(SAMPLE_CORE_RESPONSE), method="post")
            mock_client.return_value = client
            papers = await adapter.search("arctic indigenous knowledge", SourceQuery())

        assert len(papers) == 2
        assert papers[0].doi == "10.1234/test.2021"  # stripped https://doi.org/
        assert papers[0].pdf_url == "https://core.ac.uk/download/pdf/12345.pdf"
        assert papers[1].doi == "10.5678/climate.2020"
        assert papers[1].pdf_url == "https://example.com/paper.pdf"
        assert papers[1].citation_count == 0
        assert client.post.call_args.kwargs["json"]["limit"] == 20

    def test_disabled_without_key(self):
        assert CoreAdapter().enabled is False
        assert CoreAdapter(api_key="k").enabled is True
        assert CoreAdapter(api_key="k")._default_headers()["Authorization"] == "Bearer k"


class TestArxiv:
    def test_parse_feed(self):
        papers = ArxivAdapter().parse_feed(SAMPLE_ARXIV_FEED)
        assert len(papers) == 1
        paper = papers[0]
        assert paper.title == "Graph Attention Networks"
        assert paper.abstract == "We present graph attention networks."
        assert paper.authors == ["Petar Velickovic", "Guillem Cucurull"]
        assert paper.year == 2017
        assert paper.venue == "arXiv"
        assert paper.citation_count == 0
        assert paper.pdf_url == "http://arxiv.org/pdf/1710.10903v3"
        assert paper.doi == "10.48550/arXiv.1710.10903"
        assert paper.metadata == {"paper_id": "1710.10903v3", "categories": ["stat.ML", "cs.LG"]}

    def test_invalid_feed_raises(self):
        with pytest.raises(SourceResponseError, match="arxiv: invalid Atom feed"):
            ArxivAdapter().parse_feed("<feed><entry>")

    @pytest.mark.asyncio
    async def test_query_has_date_range(self):
        adapter = ArxivAdapter()
        with patch.object(adapter, "_get_client") as mock_client:
            client = _client(_response(text=SAMPLE_ARXIV_FEED))
            mock_client.return_value = client
            await adapter.search("graph attention", SourceQuery(from_year=2016, to_year=2018))

        params = client.get.call_args.kwargs["params"]
        assert params["search_query"] == (
            'all:"graph attention" AND submittedDate:[201601010000 TO 201812312359]'
        )


# ============================================
# Error mapping
# ============================================

class TestHttpErrors:
    @pytest.mark.asyncio
    async def test_client_error_raises_response_error(self):
        adapter = OpenAlexAdapter()
        with patch.object(adapter, "_get_client") as mock_client:
            mock_client.return_value = _client(_response(status_code=404))
            with pytest.raises(SourceResponseError) as exc_info:
                await adapter.search("q", SourceQuery())
        assert exc_info.value.status_code == 404
        assert str(exc_info.value) == "openalex: HTTP 404"

    @pytest.mark.asyncio
    async def test_invalid_json_raises_response_error(self):
        adapter = CrossrefAdapter()
        bad = _response()
        bad.json.side_effect = ValueError("Expecting value")
        with patch.object(adapter, "_get_client") as mock_client:
            mock_client.return_value = _client(bad)
            with pytest.raises(SourceResponseError, match="invalid JSON"):
                await adapter.search("q", SourceQuery())

    @pytest.mark.asyncio
    async def test_persistent_429_raises_rate_limited(self):
        func = AsyncMock(return_value=_response(status_code=429, headers={"Retry-After": "0"}))
        with pytest.raises(SourceRateLimited):
            await retry_with_backoff(func, source_id="crossref", max_retries=2,
                                     base_delay=0, jitter=False)
        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        func = AsyncMock(side_effect=[_response(status_code=503), _response({"ok": True})])
        response = await retry_with_backoff(func, max_retries=2, base_delay=0, jitter=False)
        assert response.status_code == 200
        assert func.call_count == 2

    @pytest.mark.asyncio
    async def test_no_retry_on_client_error(self):
        func = AsyncMock(return_value=_response(status_code=400))
        with pytest.raises(SourceResponseError):
            await retry_with_backoff(func, max_retries=3, base_delay=0, jitter=False)
        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_transport_error_becomes_response_error(self):
        func = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(SourceResponseError, match="request failed"):
            await retry_with_backoff(func, source_id="core", max_retries=1,
                                     base_delay=0, jitter=False)
        assert func.call_count == 2


# ============================================
# Adapter registry helpers
# ============================================

class TestRateLimiter:
    def test_from_rps(self):
        fast = RateLimiter.from_rps(10)
        assert (fast.max_calls, fast.window_seconds) == (10, 1.0)
        slow = RateLimiter.from_rps(0.5)
        assert (slow.max_calls, slow.window_seconds) == (1, 2.0)

    @pytest.mark.asyncio
    async def test_acquire_reports_wait_when_full(self):
        limiter = RateLimiter(max_calls=2, window_seconds=60)
        assert await limiter.acquire() == 0
        assert await limiter.acquire() == 0
        assert await limiter.acquire() > 0
        assert limiter.calls_remaining == 0


class TestAdapterSelection:
    def test_order_by_tier_then_budget(self, make_adapter):
        adapters = [
            make_adapter("low", reliability=Reliability.LOW, rps=5),
            make_adapter("high_slow", reliability=Reliability.HIGH, rps=1),
            make_adapter("medium", reliability=Reliability.MEDIUM),
            make_adapter("high_fast", reliability=Reliability.HIGH, rps=10),
        ]
        assert [a.id for a in order_adapters(adapters)] == ["high_fast", "high_slow", "medium", "low"]

    def test_select_applies_allow_and_deny(self, make_adapter):
        adapters = [
            make_adapter("openalex"),
            make_adapter("crossref"),
            make_adapter("arxiv", reliability=Reliability.LOW),
            make_adapter("core", enabled=False),
        ]
        assert [a.id for a in select_adapters(adapters, deny=["CrossRef"])] == ["openalex", "arxiv"]
        assert [a.id for a in select_adapters(adapters, allow=["arxiv", "core"])] == ["arxiv"]
        assert select_adapters(adapters, allow=[]) == []

    def test_default_adapters(self):
        settings = SearchSettings(api_keys={})
        ids = [a.id for a in default_adapters(settings)]
        assert ids == ["openalex", "crossref", "semantic_scholar", "arxiv"]

        # CORE has the larger budget of the two low-tier sources
        with_core = [a.id for a in default_adapters(SearchSettings(api_keys={"core": "k"}))]
        assert with_core == ["openalex", "crossref", "semantic_scholar", "core", "arxiv"]
