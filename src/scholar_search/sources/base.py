"""
Source adapter contract shared by every academic provider.

Adapters are stateless per search: the only state they hold is their HTTP
client and a private rate limiter. Anything the orchestrator needs to know
about an adapter (id, reliability tier, rate budget, enabled flag) is a
plain attribute.
"""

import asyncio
import enum
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

import httpx

from scholar_search.exceptions import SourceResponseError
from scholar_search.models.paper import AcademicPaper
from scholar_search.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_CONTACT_EMAIL = "research@example.com"


class Reliability(enum.Enum):
    """Reliability tier of a provider. Higher tiers are queried first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _RELIABILITY_RANK[self]


_RELIABILITY_RANK = {Reliability.HIGH: 0, Reliability.MEDIUM: 1, Reliability.LOW: 2}


@dataclass(frozen=True)
class SourceQuery:
    """Per-source slice of the search options."""

    limit: int = 20
    from_year: Optional[int] = None
    to_year: Optional[int] = None
    fast_mode: bool = False


class RateLimiter:
    """
    Sliding window rate limiter for API calls.

    Tracks calls within a sliding window and enforces rate limits.
    """

    def __init__(self, max_calls: int = 100, window_seconds: float = 300):
        """
        Initialize rate limiter.

        Args:
            max_calls: Maximum calls allowed in the window (default: 100)
            window_seconds: Time window in seconds (default: 300 = 5 minutes)
        """
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._calls: List[float] = []
        self._lock = asyncio.Lock()

    @classmethod
    def from_rps(cls, rps: float) -> "RateLimiter":
        """Limiter allowing ``rps`` requests per second on average."""
        if rps >= 1:
            return cls(max_calls=int(rps), window_seconds=1.0)
        # Sub-1 rps budgets become one call per 1/rps seconds
        return cls(max_calls=1, window_seconds=1.0 / rps)

    async def acquire(self) -> float:
        """
        Acquire permission to make a call.

        Returns:
            Wait time in seconds (0 if no wait needed)
        """
        async with self._lock:
            now = time.monotonic()

            # Remove calls outside the window
            self._calls = [t for t in self._calls if now - t < self.window_seconds]

            if len(self._calls) >= self.max_calls:
                # Calculate wait time until oldest call expires
                oldest = min(self._calls)
                wait_time = self.window_seconds - (now - oldest) + 0.01
                return max(wait_time, 0)

            # Record this call
            self._calls.append(now)
            return 0

    async def wait_if_needed(self):
        """Wait until a call is allowed, then record it."""
        wait_time = await self.acquire()
        while wait_time > 0:
            logger.info(f"Rate limit reached, waiting {wait_time:.1f}s")
            await asyncio.sleep(wait_time)
            wait_time = await self.acquire()

    @property
    def calls_remaining(self) -> int:
        """Get number of calls remaining in current window."""
        now = time.monotonic()
        recent_calls = [t for t in self._calls if now - t < self.window_seconds]
        return max(0, self.max_calls - len(recent_calls))


class SourceAdapter(ABC):
    """
    One academic provider.

    ``search`` returns raw AcademicPaper records or raises a SourceError
    subclass; it never returns partial results for a failed call.
    """

    id: str = ""
    reliability: Reliability = Reliability.MEDIUM
    rate_limit_rps: float = 1.0
    enabled: bool = True

    @abstractmethod
    async def search(self, query: str, options: SourceQuery) -> List[AcademicPaper]:
        """Search the provider."""

    async def close(self) -> None:
        """Release network resources. No-op by default."""

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} id={self.id} reliability={self.reliability.value} "
            f"rps={self.rate_limit_rps} enabled={self.enabled}>"
        )


class HttpSourceAdapter(SourceAdapter):
    """Base for providers reached over HTTP with a shared httpx client."""

    # Per-provider retry tuning; fast mode shortens the delays
    max_retries: int = 1
    base_delay: float = 0.5
    max_delay: float = 3.0

    def __init__(
        self,
        *,
        contact_email: Optional[str] = None,
        api_key: Optional[str] = None,
        rate_limit_rps: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 30.0,
    ):
        self.contact_email = contact_email or DEFAULT_CONTACT_EMAIL
        self.api_key = api_key
        if rate_limit_rps is not None:
            self.rate_limit_rps = rate_limit_rps
        self.request_timeout = request_timeout
        self._client = client
        self._owns_client = client is None
        self._rate_limiter = RateLimiter.from_rps(self.rate_limit_rps)

    def _default_headers(self) -> dict:
        return {"User-Agent": f"ScholarSearch/1.0 (mailto:{self.contact_email})"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.request_timeout,
                headers=self._default_headers(),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _send(
        self, request: Callable[[], Awaitable[httpx.Response]], fast_mode: bool = False
    ) -> httpx.Response:
        return await retry_with_backoff(
            request,
            source_id=self.id,
            max_retries=self.max_retries,
            base_delay=self.base_delay / 2 if fast_mode else self.base_delay,
            max_delay=self.max_delay / 2 if fast_mode else self.max_delay,
        )

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise SourceResponseError(self.id, f"invalid JSON payload: {e}") from e
        if not isinstance(data, dict):
            raise SourceResponseError(self.id, "unexpected payload shape")
        return data

    async def search(self, query: str, options: SourceQuery) -> List[AcademicPaper]:
        await self._rate_limiter.wait_if_needed()
        client = await self._get_client()
        papers = await self._search(client, query, options)
        logger.info(f"{self.id} found {len(papers)} papers for: {query}")
        return papers

    @abstractmethod
    async def _search(
        self, client: httpx.AsyncClient, query: str, options: SourceQuery
    ) -> List[AcademicPaper]:
        """Provider-specific request and payload parsing."""


def order_adapters(adapters: Iterable[SourceAdapter]) -> List[SourceAdapter]:
    """Order by reliability tier, then by descending request budget."""
    return sorted(adapters, key=lambda a: (a.reliability.rank, -a.rate_limit_rps))


def select_adapters(
    adapters: Iterable[SourceAdapter],
    allow: Optional[Sequence[str]] = None,
    deny: Sequence[str] = (),
) -> List[SourceAdapter]:
    """
    Filter adapters for one search and return them in priority order.

    Disabled adapters, ids on the deny-list and ids outside a non-None
    allow-list are dropped.
    """
    denied = {source_id.lower() for source_id in deny}
    allowed = None if allow is None else {source_id.lower() for source_id in allow}

    selected = []
    for adapter in adapters:
        if not adapter.enabled:
            logger.debug(f"Skipping disabled source {adapter.id}")
            continue
        if adapter.id.lower() in denied:
            continue
        if allowed is not None and adapter.id.lower() not in allowed:
            continue
        selected.append(adapter)
    return order_adapters(selected)
