"""
Circuit breaker for academic sources.

Tracks failures per source id in a sliding window and fails fast while a
source is unhealthy.

States:
- closed: normal operation, requests pass through
- open: too many recent failures, requests are skipped
- half_open: cooldown elapsed, requests are let through to test recovery;
  a success closes the circuit, a failure reopens it
"""

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

FAILURE_THRESHOLD = 3
WINDOW_SECONDS = 5 * 60
COOLDOWN_SECONDS = 5 * 60


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failures: List[float] = field(default_factory=list)
    opened_at: Optional[float] = None


class CircuitBreaker:
    """
    Per-source circuit breaker.

    Example:
        breaker = CircuitBreaker()
        if breaker.is_available("openalex"):
            try:
                papers = await adapter.search(query, options)
                breaker.record_success("openalex")
            except SourceError:
                breaker.record_failure("openalex")
    """

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        window_seconds: float = WINDOW_SECONDS,
        cooldown_seconds: float = COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._circuits: Dict[str, _Circuit] = {}
        self._lock = threading.Lock()

    def _circuit(self, source_id: str) -> _Circuit:
        circuit = self._circuits.get(source_id)
        if circuit is None:
            circuit = self._circuits[source_id] = _Circuit()
        return circuit

    def _prune(self, circuit: _Circuit, now: float) -> None:
        cutoff = now - self.window_seconds
        circuit.failures = [t for t in circuit.failures if t > cutoff]

    def state(self, source_id: str) -> CircuitState:
        with self._lock:
            return self._circuit(source_id).state

    def is_available(self, source_id: str) -> bool:
        """True if a request to ``source_id`` may proceed."""
        with self._lock:
            circuit = self._circuit(source_id)
            now = self._clock()
            self._prune(circuit, now)

            if circuit.state is CircuitState.OPEN:
                if circuit.opened_at is not None and now - circuit.opened_at >= self.cooldown_seconds:
                    circuit.state = CircuitState.HALF_OPEN
                    logger.info(f"Circuit {source_id}: open -> half_open (testing recovery)")
                    return True
                return False
            return True

    def record_success(self, source_id: str) -> None:
        with self._lock:
            circuit = self._circuit(source_id)
            if circuit.state is CircuitState.HALF_OPEN:
                circuit.state = CircuitState.CLOSED
                circuit.failures = []
                circuit.opened_at = None
                logger.info(f"Circuit {source_id}: half_open -> closed (recovered)")

    def record_failure(self, source_id: str) -> None:
        with self._lock:
            circuit = self._circuit(source_id)
            now = self._clock()
            self._prune(circuit, now)
            circuit.failures.append(now)

            if circuit.state is CircuitState.HALF_OPEN:
                circuit.state = CircuitState.OPEN
                circuit.opened_at = now
                logger.warning(f"Circuit {source_id}: half_open -> open (recovery failed)")
            elif (
                circuit.state is CircuitState.CLOSED
                and len(circuit.failures) >= self.failure_threshold
            ):
                circuit.state = CircuitState.OPEN
                circuit.opened_at = now
                logger.warning(
                    f"Circuit {source_id}: closed -> open "
                    f"({len(circuit.failures)} failures in {self.window_seconds:.0f}s)"
                )

    def reset(self, source_id: Optional[str] = None) -> None:
        """Forget state for one source, or for all of them."""
        with self._lock:
            if source_id is None:
                self._circuits.clear()
            else:
                self._circuits.pop(source_id, None)

    @property
    def stats(self) -> Dict[str, dict]:
        with self._lock:
            return {
                source_id: {"state": c.state.value, "recent_failures": len(c.failures)}
                for source_id, c in self._circuits.items()
            }
