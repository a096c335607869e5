"""
Pytest configuration and fixtures for Scholar Search tests.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

import pytest

from scholar_search.db.paper_store import IngestResult
from scholar_search.models.paper import AcademicPaper
from scholar_search.search.dedup import to_canonical
from scholar_search.sources.base import Reliability, SourceAdapter, SourceQuery
from scholar_search.utils.cache import reset_global_cache
from scholar_search.utils.config import SearchSettings, clear_config_cache


# ============================================
# Isolation
# ============================================

@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch):
    """Fresh global cache/config and no deny-list from the environment."""
    monkeypatch.delenv("SCHOLAR_SEARCH_DISABLED_SOURCES", raising=False)
    monkeypatch.delenv("MAX_INGEST_COST_USD", raising=False)
    reset_global_cache()
    clear_config_cache()
    yield
    reset_global_cache()
    clear_config_cache()


@pytest.fixture
def settings():
    """Built-in defaults, independent of configs/config.yaml."""
    return SearchSettings()


# ============================================
# Paper Factory
# ============================================

def _make_paper(
    title: str,
    *,
    source: str = "openalex",
    doi: Optional[str] = None,
    year: Optional[int] = 2020,
    citations: Optional[int] = 10,
    authors: Sequence = ("Ada Lovelace",),
    region: Optional[str] = None,
    abstract: Optional[str] = None,
    venue: Optional[str] = None,
    pdf_url: Optional[str] = None,
    url: Optional[str] = None,
) -> AcademicPaper:
    metadata = {"region": region} if region else {}
    return AcademicPaper(
        title=title,
        source=source,
        abstract=abstract,
        authors=list(authors),
        year=year,
        venue=venue,
        doi=doi,
        url=url,
        pdf_url=pdf_url,
        citation_count=citations,
        metadata=metadata,
    )


@pytest.fixture
def make_paper():
    """Factory for AcademicPaper records."""
    return _make_paper


@pytest.fixture
def make_papers():
    """``make_papers("openalex", 3)`` -> three distinct papers from one source."""
    def factory(source: str, count: int, **kwargs) -> List[AcademicPaper]:
        return [
            _make_paper(f"{source} paper {i}", source=source, doi=f"10.1000/{source}.{i}", **kwargs)
            for i in range(count)
        ]
    return factory


# ============================================
# Fake Source Adapter
# ============================================

class FakeAdapter(SourceAdapter):
    """Adapter returning canned papers and counting its calls."""

    def __init__(
        self,
        source_id: str,
        papers: Optional[List[AcademicPaper]] = None,
        *,
        reliability: Reliability = Reliability.HIGH,
        rps: float = 1.0,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        enabled: bool = True,
    ):
        self.id = source_id
        self.papers = papers or []
        self.reliability = reliability
        self.rate_limit_rps = rps
        self.delay = delay
        self.error = error
        self.enabled = enabled
        self.calls = 0
        self.queries: List[str] = []
        self.closed = False

    async def search(self, query: str, options: SourceQuery) -> List[AcademicPaper]:
        self.calls += 1
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.papers)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_adapter():
    """Factory for FakeAdapter instances."""
    return FakeAdapter


# ============================================
# Fake Paper Store
# ============================================

class FakeStore:
    """In-memory PaperStore returning canned results per query."""

    def __init__(
        self,
        hybrid: Optional[Dict[str, List]] = None,
        keyword: Optional[List] = None,
        *,
        hybrid_error: Optional[Exception] = None,
        keyword_error: Optional[Exception] = None,
        ingest_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.hybrid = hybrid or {}
        self.keyword = keyword or []
        self.hybrid_error = hybrid_error
        self.keyword_error = keyword_error
        self.ingest_error = ingest_error
        self.delay = delay
        self.hybrid_calls: List[str] = []
        self.keyword_calls: List[str] = []
        self.keyword_excludes: List[List[str]] = []
        self.ingested: List = []

    async def hybrid_search(
        self, query, *, limit=20, exclude_ids=(), from_year=None, to_year=None,
        semantic_weight=0.7,
    ):
        self.hybrid_calls.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.hybrid_error is not None:
            raise self.hybrid_error
        return list(self.hybrid.get(query, []))[:limit]

    async def keyword_search(self, query, *, limit=20, exclude_ids=()):
        self.keyword_calls.append(query)
        self.keyword_excludes.append(list(exclude_ids))
        if self.keyword_error is not None:
            raise self.keyword_error
        return list(self.keyword)[:limit]

    async def ingest_paper(self, paper, **options):
        if self.ingest_error is not None:
            raise self.ingest_error
        self.ingested.append(paper)
        return IngestResult(paper_id=to_canonical(paper).id, is_new_paper=True)


@pytest.fixture
def make_store():
    """Factory for FakeStore instances."""
    return FakeStore


# ============================================
# Markers
# ============================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (hits real APIs)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
