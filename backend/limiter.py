# limiter.py
import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional, Tuple

from error_handler import BudgetExceededError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class TokenWindowLimiter:
    """
    Process-wide admission control for generation calls.

    Enforces a token budget over a trailing window, a minimum gap between
    dispatches and a cap on calls in flight. The check-then-record step runs
    under one lock with no await inside it, so concurrent callers cannot both
    see the same free room.
    """

    def __init__(self, tokens_per_minute: int, min_interval: float = 0.0,
                 max_in_flight: int = 4, window_seconds: float = 60.0,
                 clock: Clock = time.monotonic, sleep: Sleeper = asyncio.sleep):
        if tokens_per_minute <= 0:
            raise ValueError("tokens_per_minute must be positive")
        self.budget = tokens_per_minute
        self.min_interval = max(0.0, min_interval)
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._window: Deque[Tuple[float, int]] = deque()
        self._last_dispatch: Optional[float] = None
        self._lock = asyncio.Lock()
        self._in_flight = asyncio.Semaphore(max(1, max_in_flight))
        self.max_in_flight = max(1, max_in_flight)

    def _prune(self, now: float) -> None:
        while self._window and now - self._window[0][0] >= self.window_seconds:
            self._window.popleft()

    def _used(self) -> int:
        return sum(cost for _, cost in self._window)

    def _wait_time(self, now: float, cost: int) -> float:
        wait = 0.0
        if self._last_dispatch is not None:
            wait = max(wait, self._last_dispatch + self.min_interval - now)
        if self._window and self._used() + cost > self.budget:
            # the oldest entry has to leave the window before anything changes
            wait = max(wait, self._window[0][0] + self.window_seconds - now)
        return wait

    async def reserve(self, cost: int) -> None:
        """Block until a call of `cost` tokens may be dispatched, then record it"""
        if cost > self.budget:
            raise BudgetExceededError(
                "Request is larger than the per-minute token budget; split the input",
                {"estimated_tokens": cost, "tokens_per_minute": self.budget},
            )

        await self._in_flight.acquire()
        try:
            while True:
                async with self._lock:
                    now = self._clock()
                    self._prune(now)
                    needed = self._wait_time(now, cost)
                    if needed <= 0:
                        self._window.append((now, cost))
                        self._last_dispatch = now
                        return
                    used = self._used()
                logger.info(
                    f"Admission wait {needed:.2f}s for {cost} tokens "
                    f"({used}/{self.budget} used in window)"
                )
                await self._sleep(needed)
        except BaseException:
            self._in_flight.release()
            raise

    def release(self) -> None:
        self._in_flight.release()

    def snapshot(self) -> Dict:
        """Current window usage, for status endpoints"""
        now = self._clock()
        live = [(ts, cost) for ts, cost in self._window if now - ts < self.window_seconds]
        used = sum(cost for _, cost in live)
        return {
            "tokens_per_minute": self.budget,
            "window_seconds": self.window_seconds,
            "used_tokens": used,
            "remaining_tokens": max(0, self.budget - used),
            "calls_in_window": len(live),
            "min_interval_seconds": self.min_interval,
            "max_in_flight": self.max_in_flight,
        }
