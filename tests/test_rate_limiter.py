import threading

import pytest

from enrichment.rate_limiter import RateLimiter, client_key


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_denies_only_the_request_over_the_limit() -> None:
    clock = FakeClock()
    limiter = RateLimiter(window_ms=60_000, max_requests=5, clock=clock)

    results = []
    for _ in range(6):
        results.append(limiter.allow('1.2.3.4'))
        clock.now += 1

    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
    assert results[-1].remaining == 0
    # First request was at t=1000, so the window frees up at 1060
    assert results[-1].reset_at == pytest.approx(1_060.0)


def test_allows_again_after_window_elapses() -> None:
    clock = FakeClock()
    limiter = RateLimiter(window_ms=1_000, max_requests=2, clock=clock)

    assert limiter.allow('k').allowed
    assert limiter.allow('k').allowed
    assert not limiter.allow('k').allowed

    clock.now += 1.001
    assert limiter.allow('k').allowed


def test_keys_are_independent() -> None:
    limiter = RateLimiter(window_ms=60_000, max_requests=1, clock=FakeClock())

    assert limiter.allow('a').allowed
    assert not limiter.allow('a').allowed
    assert limiter.allow('b').allowed


def test_sweep_removes_stale_keys() -> None:
    clock = FakeClock()
    limiter = RateLimiter(window_ms=1_000, max_requests=10, clock=clock)
    limiter.allow('old')
    clock.now += 0.5
    limiter.allow('fresh')
    clock.now += 0.6

    removed = limiter.sweep()

    assert removed == 1
    assert limiter.tracked_keys() == 1
    assert 'fresh' in limiter.requests


def test_background_sweep_runs_on_interval() -> None:
    clock = FakeClock()
    limiter = RateLimiter(window_ms=1_000, max_requests=10, cleanup_interval=0.01, clock=clock)
    limiter.allow('k')
    clock.now += 5

    limiter.start()
    try:
        for _ in range(200):
            if limiter.tracked_keys() == 0:
                break
            threading.Event().wait(0.01)
    finally:
        limiter.stop()

    assert limiter.tracked_keys() == 0


def test_concurrent_callers_never_exceed_limit() -> None:
    limiter = RateLimiter(window_ms=60_000, max_requests=50)
    allowed = []
    lock = threading.Lock()

    def hammer() -> None:
        for _ in range(20):
            if limiter.allow('shared').allowed:
                with lock:
                    allowed.append(1)

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(allowed) == 50


def test_denied_result_headers_include_retry_after() -> None:
    clock = FakeClock()
    limiter = RateLimiter(window_ms=10_000, max_requests=1, clock=clock)
    limiter.allow('k')
    denied = limiter.allow('k')

    headers = denied.headers(now=clock.now)

    assert headers['X-RateLimit-Limit'] == '1'
    assert headers['X-RateLimit-Remaining'] == '0'
    assert headers['Retry-After'] == '10'


def test_rejects_non_positive_config() -> None:
    with pytest.raises(ValueError):
        RateLimiter(window_ms=0, max_requests=1)


@pytest.mark.parametrize(
    'headers, expected',
    [
        ({'X-Forwarded-For': '10.0.0.1, 172.16.0.1'}, '10.0.0.1'),
        ({'x-vercel-forwarded-for': '10.0.0.2'}, '10.0.0.2'),
        ({'cf-connecting-ip': '10.0.0.3'}, '10.0.0.3'),
        ({'x-real-ip': '10.0.0.4'}, '10.0.0.4'),
        ({}, 'unknown'),
    ],
)
def test_client_key_header_precedence(headers, expected) -> None:
    assert client_key(headers) == expected
