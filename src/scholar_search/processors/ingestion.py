"""
Background Ingestion

Adds papers found by a search to the paper library after the search has
returned:
- A cost policy vetoes batches whose estimated embedding cost is too high
- A bounded queue decouples ingestion from the request
- Worker failures are logged and kept on the queue, never raised to callers
"""

import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MAX_COST_USD = 5.00
# Embedding cost for ~1K tokens, roughly one paper's title + abstract
DEFAULT_COST_PER_PAPER_USD = 0.00002
MAX_KEPT_FAILURES = 100


@dataclass(frozen=True)
class IngestCostCheck:
    allowed: bool
    estimated_cost: float
    reason: Optional[str] = None


class CostPolicy:
    """Veto ingestion batches whose estimated cost exceeds a ceiling."""

    def __init__(
        self,
        max_cost_usd: Optional[float] = None,
        cost_per_paper_usd: float = DEFAULT_COST_PER_PAPER_USD,
    ):
        if max_cost_usd is None:
            max_cost_usd = float(os.environ.get("MAX_INGEST_COST_USD", DEFAULT_MAX_COST_USD))
        self.max_cost_usd = max_cost_usd
        self.cost_per_paper_usd = cost_per_paper_usd

    @classmethod
    def from_settings(cls, settings) -> "CostPolicy":
        return cls(
            max_cost_usd=settings.ingest_max_cost_usd,
            cost_per_paper_usd=settings.ingest_cost_per_paper_usd,
        )

    def validate_ingest_cost(self, paper_count: int) -> IngestCostCheck:
        estimated = paper_count * self.cost_per_paper_usd
        if estimated > self.max_cost_usd:
            return IngestCostCheck(
                allowed=False,
                estimated_cost=estimated,
                reason=(
                    f"Estimated cost ${estimated:.4f} exceeds limit ${self.max_cost_usd:.2f}"
                ),
            )
        return IngestCostCheck(allowed=True, estimated_cost=estimated)


@dataclass
class _IngestJob:
    paper: Any
    search_query: str


class IngestionQueue:
    """
    Bounded fire-and-forget ingestion into a paper store.

    Example:
        queue = IngestionQueue(store, workers=2)
        queued = queue.submit(result.papers, search_query="graph networks")
        ...
        await queue.join()   # wait for the backlog (tests, CLI shutdown)
        await queue.close()
    """

    def __init__(
        self, store, workers: int = 2, max_pending: int = 200, max_failures: int = MAX_KEPT_FAILURES
    ):
        self.store = store
        self.workers = workers
        self.max_pending = max_pending
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        # most recent failures only; the total is counted separately
        self.failures: Deque[Tuple[str, str]] = deque(maxlen=max_failures)
        self._failed = 0
        self._ingested = 0
        self._new = 0
        self._dropped = 0

    def _ensure_workers(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.max_pending)
        self._tasks = [task for task in self._tasks if not task.done()]
        while len(self._tasks) < self.workers:
            self._tasks.append(asyncio.create_task(self._worker()))
        return self._queue

    def submit(self, papers: Sequence[Any], search_query: str = "") -> int:
        """
        Queue papers for ingestion without waiting.

        Returns:
            Number of papers accepted; papers beyond the queue capacity are
            dropped and logged.
        """
        queue = self._ensure_workers()
        accepted = 0
        for paper in papers:
            try:
                queue.put_nowait(_IngestJob(paper=paper, search_query=search_query))
                accepted += 1
            except asyncio.QueueFull:
                self._dropped += len(papers) - accepted
                logger.warning(
                    f"Ingestion queue full, dropped {len(papers) - accepted} papers"
                )
                break
        return accepted

    async def _worker(self) -> None:
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                result = await self.store.ingest_paper(job.paper, search_query=job.search_query)
                self._ingested += 1
                if getattr(result, "is_new_paper", False):
                    self._new += 1
            except Exception as e:
                title = getattr(job.paper, "title", "?")
                self._failed += 1
                self.failures.append((title, str(e)))
                logger.error(f"Background ingestion failed for '{title}': {e}")
            finally:
                queue.task_done()

    async def join(self) -> None:
        """Wait until every queued paper has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Stop the workers. Pending papers are discarded."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def stats(self) -> dict:
        return {
            "pending": self.pending,
            "ingested": self._ingested,
            "new_papers": self._new,
            "failed": self._failed,
            "dropped": self._dropped,
        }
