"""Fixed-window rate gate for tool invocations.

The quota is written as ``"<limit>/<amount><unit>"`` where ``unit`` is one of
``h``, ``m`` or ``s`` (``"100/1h"``, ``"3/1s"``). Parsing happens when the
configuration is loaded so that a bad value stops the server at startup rather
than on the first tool call.

The gate itself is pure accounting: it never sleeps and never performs I/O, so
``check_and_increment`` completes between two suspension points and needs no
lock under asyncio.
"""
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

_RATE_LIMIT_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*([hms])\s*$")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}


@dataclass(frozen=True)
class RateLimitSpec:
    """Parsed quota: at most ``limit`` calls per ``period`` seconds."""
    limit: int
    period: float

    def __str__(self) -> str:
        return f"{self.limit}/{self.period:g}s"


def parse_rate_limit(text: str) -> RateLimitSpec:
    """Parse a compact rate-limit string.

    Args:
        text: Quota such as ``"100/1h"``

    Returns:
        The parsed RateLimitSpec

    Raises:
        ValueError: If the text is malformed or describes an empty quota
    """
    match = _RATE_LIMIT_RE.match(text or "")
    if not match:
        raise ValueError(
            f"Invalid rate limit '{text}': expected '<limit>/<amount><unit>' with unit h, m or s (e.g. '100/1h')"
        )
    limit, amount, unit = int(match.group(1)), int(match.group(2)), match.group(3)
    if limit <= 0 or amount <= 0:
        raise ValueError(f"Invalid rate limit '{text}': limit and period must be positive")
    return RateLimitSpec(limit=limit, period=float(amount * _UNIT_SECONDS[unit]))


@dataclass
class RateWindow:
    """Counter for the current window."""
    limit: int
    period: float
    count: int = 0
    window_started_at: float = 0.0


@dataclass(frozen=True)
class RateDecision:
    """Outcome of a gate check; ``retry_after`` is 0 when the call is allowed."""
    allowed: bool
    retry_after: float = 0.0


ALLOWED = RateDecision(allowed=True)


class RateGate:
    """Fixed-window quota shared by every tool call in the process."""

    def __init__(self, spec: Optional[RateLimitSpec] = None, clock: Callable[[], float] = time.monotonic):
        self.spec = spec
        self._clock = clock
        self.window: Optional[RateWindow] = None
        if spec is not None:
            self.window = RateWindow(limit=spec.limit, period=spec.period, window_started_at=clock())

    @property
    def enabled(self) -> bool:
        return self.window is not None

    def check_and_increment(self) -> RateDecision:
        """Count one call against the quota.

        The window resets (count to 0, start to now) exactly when a full period
        has elapsed since it started; the count is never decremented otherwise.
        """
        window = self.window
        if window is None:
            return ALLOWED

        now = self._clock()
        if now - window.window_started_at >= window.period:
            window.count = 0
            window.window_started_at = now

        if window.count >= window.limit:
            retry_after = window.period - (now - window.window_started_at)
            return RateDecision(allowed=False, retry_after=max(retry_after, 0.0))

        window.count += 1
        return ALLOWED

    def describe(self) -> str:
        """Human-readable description of the quota for logs and stats."""
        if self.window is None:
            return "unlimited"
        return f"{self.window.count}/{self.window.limit} calls used in current {self.window.period:g}s window"
