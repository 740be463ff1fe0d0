"""SlidingWindowRateLimiter のユニットテスト

時計を差し替えてウィンドウの境界を検証する。
"""

import pytest

from notekeep.services.rate_limiter import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestHit:
    """hit() の許可・拒否"""

    def test_allows_up_to_max_requests(self, clock):
        # Arrange
        limiter = SlidingWindowRateLimiter(60, 3, clock=clock)

        # Act
        decisions = [limiter.hit("user-1") for _ in range(3)]

        # Assert
        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == [2, 1, 0]

    def test_rejects_over_limit_with_retry_after(self, clock):
        # Arrange
        limiter = SlidingWindowRateLimiter(60, 2, clock=clock)
        limiter.hit("user-1")
        clock.advance(10.5)
        limiter.hit("user-1")
        clock.advance(5)

        # Act
        decision = limiter.hit("user-1")

        # Assert: 最古の記録がウィンドウから外れるまで 60 - 15.5 = 44.5 → 45 秒
        assert decision.allowed is False
        assert decision.retry_after == 45

    def test_window_slides(self, clock):
        limiter = SlidingWindowRateLimiter(60, 1, clock=clock)
        assert limiter.hit("user-1").allowed is True
        assert limiter.hit("user-1").allowed is False

        clock.advance(60)

        assert limiter.hit("user-1").allowed is True

    def test_rejected_requests_are_not_counted(self, clock):
        limiter = SlidingWindowRateLimiter(60, 1, clock=clock)
        limiter.hit("user-1")
        for _ in range(5):
            clock.advance(1)
            limiter.hit("user-1")

        clock.advance(55)

        assert limiter.hit("user-1").allowed is True

    def test_keys_are_independent(self, clock):
        limiter = SlidingWindowRateLimiter(60, 1, clock=clock)
        limiter.hit("user-1")

        assert limiter.hit("user-2").allowed is True


class TestKeyTable:
    """追跡キー数の上限"""

    def test_stale_keys_pruned_before_eviction(self, clock):
        # Arrange
        limiter = SlidingWindowRateLimiter(60, 5, max_keys=2, clock=clock)
        limiter.hit("old")
        clock.advance(61)
        limiter.hit("a")

        # Act
        limiter.hit("b")

        # Assert
        assert len(limiter) == 2
        assert limiter.hit("a").remaining == 3

    def test_least_recently_used_key_evicted(self, clock):
        # Arrange
        limiter = SlidingWindowRateLimiter(60, 1, max_keys=2, clock=clock)
        limiter.hit("a")
        limiter.hit("b")
        limiter.hit("a")  # a を最近使用に

        # Act
        limiter.hit("c")

        # Assert: b が捨てられ、a の記録は残る
        assert len(limiter) == 2
        assert limiter.hit("a").allowed is False
        assert limiter.hit("b").allowed is True


@pytest.mark.parametrize(
    ("window", "max_requests", "max_keys"),
    [(0, 1, 1), (60, 0, 1), (60, 1, 0)],
)
def test_invalid_configuration(window, max_requests, max_keys):
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(window, max_requests, max_keys=max_keys)
