"""Per-request state threaded through one orchestrated search."""

import math
import time
from dataclasses import dataclass, field
from typing import List, Optional

from scholar_search.utils.cache import TTLCache, current_search_cache
from scholar_search.utils.observability import elapsed_ms


@dataclass
class SearchContext:
    """
    Mutable bookkeeping for one search call.

    Holds the cache resolved for this request (scoped or global), the global
    time budget, the deadline of the stage in progress, and the counters that
    end up in SearchMetadata.
    """

    cache: TTLCache
    time_budget_ms: float
    request_id: str = ""
    started_at: float = field(default_factory=time.perf_counter)
    cache_hits: int = 0
    found: int = 0
    errors: List[str] = field(default_factory=list)
    skipped_sources: List[str] = field(default_factory=list)
    budget_exhausted: bool = False
    stage_deadline_ms: Optional[float] = None

    @classmethod
    def create(
        cls, time_budget_ms: float, request_id: str = "", cache: Optional[TTLCache] = None
    ) -> "SearchContext":
        return cls(
            cache=cache if cache is not None else current_search_cache(),
            time_budget_ms=time_budget_ms,
            request_id=request_id,
        )

    def elapsed_ms(self) -> int:
        return elapsed_ms(self.started_at)

    def _elapsed(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000

    def remaining_ms(self) -> float:
        return self.time_budget_ms - self._elapsed()

    def start_stage(self, timeout_ms: float) -> None:
        """Bound every call made until ``end_stage()`` by one shared deadline."""
        self.stage_deadline_ms = self._elapsed() + timeout_ms

    def end_stage(self) -> None:
        self.stage_deadline_ms = None

    def stage_remaining_ms(self) -> float:
        if self.stage_deadline_ms is None:
            return math.inf
        return self.stage_deadline_ms - self._elapsed()

    def call_timeout_ms(self, timeout_ms: float) -> float:
        """Per-call timeout, shortened to the stage deadline and the budget left."""
        return min(timeout_ms, self.remaining_ms(), self.stage_remaining_ms())

    def check_budget(self, stage: str) -> bool:
        """True if ``stage`` may run; records exhaustion once otherwise."""
        if self.remaining_ms() > 0:
            return True
        if not self.budget_exhausted:
            self.budget_exhausted = True
            self.errors.append(
                f"Time budget of {self.time_budget_ms:.0f}ms exhausted before {stage}"
            )
        return False
