"""Tests for the per-source circuit breaker."""

from scholar_search.sources.circuit_breaker import CircuitBreaker, CircuitState


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _breaker(clock, **kwargs):
    return CircuitBreaker(failure_threshold=3, window_seconds=300, cooldown_seconds=300,
                          clock=clock, **kwargs)


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = _breaker(FakeClock())
        for _ in range(2):
            breaker.record_failure("openalex")
        assert breaker.is_available("openalex")
        breaker.record_failure("openalex")
        assert breaker.state("openalex") is CircuitState.OPEN
        assert not breaker.is_available("openalex")

    def test_sources_are_independent(self):
        breaker = _breaker(FakeClock())
        for _ in range(3):
            breaker.record_failure("openalex")
        assert breaker.is_available("crossref")

    def test_old_failures_leave_the_window(self):
        clock = FakeClock()
        breaker = _breaker(clock)
        breaker.record_failure("arxiv")
        breaker.record_failure("arxiv")
        clock.now += 301
        breaker.record_failure("arxiv")
        assert breaker.state("arxiv") is CircuitState.CLOSED
        assert breaker.stats["arxiv"]["recent_failures"] == 1

    def test_half_open_after_cooldown_then_recovers(self):
        clock = FakeClock()
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure("core")
        clock.now += 300
        assert breaker.is_available("core")
        assert breaker.state("core") is CircuitState.HALF_OPEN
        breaker.record_success("core")
        assert breaker.state("core") is CircuitState.CLOSED
        assert breaker.stats["core"]["recent_failures"] == 0

    def test_failure_while_half_open_reopens(self):
        clock = FakeClock()
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure("core")
        clock.now += 300
        breaker.is_available("core")
        breaker.record_failure("core")
        assert breaker.state("core") is CircuitState.OPEN
        clock.now += 299
        assert not breaker.is_available("core")

    def test_success_while_closed_keeps_failures(self):
        breaker = _breaker(FakeClock())
        breaker.record_failure("s2")
        breaker.record_success("s2")
        assert breaker.stats["s2"] == {"state": "closed", "recent_failures": 1}

    def test_reset(self):
        breaker = _breaker(FakeClock())
        for _ in range(3):
            breaker.record_failure("a")
            breaker.record_failure("b")
        breaker.reset("a")
        assert breaker.is_available("a")
        assert not breaker.is_available("b")
        breaker.reset()
        assert breaker.is_available("b")
