"""スライディングウィンドウ方式のレート制限

キー（ユーザーID / クライアントIP）ごとにウィンドウ内のリクエスト時刻を保持する。
追跡するキー数は max_keys で上限を設け、上限到達時はまずウィンドウが空になった
キーを掃除し、それでも溢れる場合は最も長く使われていないキーから捨てる。

FastAPI の同期 Depends はスレッドプールで動くため、テーブルはロックで保護する。
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0  # 秒（切り上げ）
    remaining: int = 0


class SlidingWindowRateLimiter:
    """キー単位のスライディングウィンドウ・レートリミッター"""

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            window_seconds: ウィンドウ幅（秒）
            max_requests: ウィンドウ内で許可する最大リクエスト数
            max_keys: 追跡するキー数の上限
            clock: 単調増加する秒単位の時計（テスト用に差し替え可能）
        """
        if window_seconds <= 0 or max_requests < 1 or max_keys < 1:
            raise ValueError("window_seconds, max_requests and max_keys must be positive")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.max_keys = max_keys
        self._clock = clock
        self._hits: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = threading.Lock()

    def hit(self, key: str) -> RateLimitDecision:
        """1リクエスト分を記録し、許可されるかどうかを返す"""
        now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            hits = self._hits.get(key)
            if hits is None:
                hits = deque()
                self._hits[key] = hits
            self._hits.move_to_end(key)

            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= self.max_requests:
                retry_after = max(0, math.ceil(hits[0] + self.window_seconds - now))
                return RateLimitDecision(allowed=False, retry_after=retry_after)

            hits.append(now)
            if len(self._hits) > self.max_keys:
                self._evict(window_start)
            return RateLimitDecision(
                allowed=True, remaining=self.max_requests - len(hits)
            )

    def __len__(self) -> int:
        return len(self._hits)

    def _prune_locked(self, window_start: float) -> int:
        stale = [k for k, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for k in stale:
            del self._hits[k]
        return len(stale)

    def _evict(self, window_start: float) -> None:
        pruned = self._prune_locked(window_start)
        evicted = 0
        while len(self._hits) > self.max_keys:
            self._hits.popitem(last=False)
            evicted += 1
        if pruned or evicted:
            logger.debug(
                "Rate limiter table trimmed: pruned=%d, evicted=%d, size=%d",
                pruned,
                evicted,
                len(self),
            )
