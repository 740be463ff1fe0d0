"""Services layer - ビジネスロジック（純粋関数）"""

from notekeep.services.rate_limiter import RateLimitDecision, SlidingWindowRateLimiter
from notekeep.services.user_directory import resolve_user

__all__ = [
    "SlidingWindowRateLimiter",
    "RateLimitDecision",
    "resolve_user",
]
