"""
Rate limiting tracker for LLM API providers.

Sliding-window request and token counting per provider, shared by every
LLMManager in the process. Limits come from Config.PROVIDER_RATE_LIMITS;
a provider with no limits (or not configured at all) is never throttled.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


@dataclass
class UsageWindow:
    """Request timestamps and (timestamp, tokens) pairs inside the window."""

    requests: Deque[float] = field(default_factory=deque)
    tokens: Deque[Tuple[float, int]] = field(default_factory=deque)


@dataclass
class ProviderLimits:
    """Rate limits for a provider."""

    requests_per_minute: Optional[int] = None
    tokens_per_minute: Optional[int] = None

    def has_limits(self) -> bool:
        return self.requests_per_minute is not None or self.tokens_per_minute is not None


class RateLimitTracker:
    """Sliding window rate limiter, safe to share between threads.

    Example:
        tracker = RateLimitTracker({"anthropic": {"requests_per_minute": 50}})

        # Before making request
        tracker.wait_if_needed("anthropic")

        # After request completes
        tracker.record_request("anthropic", tokens_used=150)
    """

    def __init__(
        self,
        provider_limits: Dict[str, Dict],
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.limits = {name: ProviderLimits(**limits) for name, limits in provider_limits.items()}
        self.usage: Dict[str, UsageWindow] = {}
        self.lock = threading.RLock()
        self._clock = clock
        self._sleep = sleep

    def _window(self, provider: str) -> UsageWindow:
        if provider not in self.usage:
            self.usage[provider] = UsageWindow()
        window = self.usage[provider]

        cutoff_time = self._clock() - WINDOW_SECONDS
        while window.requests and window.requests[0] < cutoff_time:
            window.requests.popleft()
        while window.tokens and window.tokens[0][0] < cutoff_time:
            window.tokens.popleft()
        return window

    def check_limit(self, provider: str) -> bool:
        """True if another request to the provider stays within its limits."""
        with self.lock:
            limits = self.limits.get(provider)
            if limits is None or not limits.has_limits():
                return True

            window = self._window(provider)
            if limits.requests_per_minute is not None:
                if len(window.requests) >= limits.requests_per_minute:
                    return False
            if limits.tokens_per_minute is not None:
                if sum(count for _, count in window.tokens) >= limits.tokens_per_minute:
                    return False
            return True

    def record_request(self, provider: str, tokens_used: int = 0):
        """Record a completed request (and its token usage, if known)."""
        with self.lock:
            if provider not in self.limits:
                return

            window = self._window(provider)
            now = self._clock()
            window.requests.append(now)
            if tokens_used > 0:
                window.tokens.append((now, tokens_used))

    def wait_if_needed(self, provider: str) -> float:
        """Block until the provider is back under its limits.

        Returns:
            Time waited in seconds (0 if no wait needed)
        """
        with self.lock:
            if self.check_limit(provider):
                return 0.0

            window = self._window(provider)
            timestamps = []
            if window.requests:
                timestamps.append(window.requests[0])
            if window.tokens:
                timestamps.append(window.tokens[0][0])
            if not timestamps:
                return 0.0

            # Wait until the oldest entry leaves the window
            wait_time = WINDOW_SECONDS - (self._clock() - min(timestamps)) + 0.1
            if wait_time <= 0:
                return 0.0

            logger.info(f"Rate limit reached for '{provider}', waiting {wait_time:.1f}s")
            self._sleep(wait_time)
            return wait_time

    def get_usage_stats(self, provider: str) -> Dict[str, Any]:
        """Current usage against limits for one provider."""
        with self.lock:
            limits = self.limits.get(provider)
            if limits is None:
                return {"provider": provider, "has_limits": False}

            window = self._window(provider)
            return {
                "provider": provider,
                "has_limits": limits.has_limits(),
                "requests": {"limit": limits.requests_per_minute, "used": len(window.requests)},
                "tokens": {
                    "limit": limits.tokens_per_minute,
                    "used": sum(count for _, count in window.tokens),
                },
            }

    def reset(self, provider: str):
        with self.lock:
            self.usage.pop(provider, None)
