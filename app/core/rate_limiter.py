"""
In-memory rate limiter with a long window and a 1-second burst window.

Each (client, category) pair owns a RateLimitEntry guarded by its own lock,
so the check and the increment for one request happen under a single
acquisition. The table lock is only held for lookup, creation and removal.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple
from app.config import RateLimitRule
from app.core.exceptions import RateLimitExceededException

logger = logging.getLogger(__name__)

BURST_WINDOW_SECONDS = 1.0
DEFAULT_CATEGORY = "default"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    category: str
    limit: int
    remaining: int
    reset_in: float
    reason: Optional[str] = None  # "window" or "burst" when denied

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(max(0, int(round(self.reset_in)))),
            "X-RateLimit-Category": self.category,
        }
        if not self.allowed:
            # Round up so clients never retry before the window reopens
            retry_after = int(self.reset_in) + (0 if self.reset_in == int(self.reset_in) else 1)
            headers["Retry-After"] = str(max(1, retry_after))
        return headers


@dataclass
class RateLimitEntry:
    window_start: float
    burst_window_start: float
    last_seen: float
    window_count: int = 0
    burst_count: int = 0
    removed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class RateLimiter:
    """
    Per-client, per-category admission control.

    Usage:
        limiter = RateLimiter(default_rule, {"authentication": RateLimitRule(...)})
        decision = limiter.check("ip:10.0.0.1", "authentication")
        limiter.enforce("ip:10.0.0.1", "authentication")  # raises on denial
    """

    def __init__(
        self,
        default_rule: Optional[RateLimitRule] = None,
        categories: Optional[Mapping[str, RateLimitRule]] = None,
        clock: Optional[Callable[[], float]] = None,
        grace_period_seconds: Optional[float] = None,
        enabled: bool = True
    ):
        """
        Args:
            default_rule: Rule for categories without an explicit entry
            categories: Named category rules
            clock: Returns seconds as float (defaults to time.monotonic)
            grace_period_seconds: Idle time before sweep removes an entry
                (defaults to twice the longest configured window)
            enabled: When False every request is admitted without state
        """
        self.default_rule = default_rule or RateLimitRule()
        self.categories: Dict[str, RateLimitRule] = dict(categories or {})
        self.enabled = enabled
        self._clock = clock or time.monotonic
        longest_window = max(
            [self.default_rule.window_size_seconds]
            + [rule.window_size_seconds for rule in self.categories.values()]
        )
        self.grace_period_seconds = (
            grace_period_seconds if grace_period_seconds is not None else 2.0 * longest_window
        )
        self._entries: Dict[Tuple[str, str], RateLimitEntry] = {}
        self._table_lock = threading.Lock()

    def get_rule(self, category: str) -> RateLimitRule:
        """Rule for a category; unknown categories use the default rule."""
        return self.categories.get(category, self.default_rule)

    def _acquire_entry(self, key: Tuple[str, str], now: float) -> RateLimitEntry:
        """Return the live entry for key with its lock held."""
        while True:
            with self._table_lock:
                entry = self._entries.get(key)
                if entry is None:
                    entry = RateLimitEntry(window_start=now, burst_window_start=now, last_seen=now)
                    self._entries[key] = entry
            entry.lock.acquire()
            if not entry.removed:
                return entry
            # Swept between lookup and lock; resolve again
            entry.lock.release()

    def check(self, client_id: str, category: str) -> RateLimitDecision:
        """Decide admission for one request and consume quota when admitted."""
        rule = self.get_rule(category)
        if not self.enabled:
            return RateLimitDecision(
                allowed=True,
                category=category,
                limit=rule.requests_per_minute,
                remaining=rule.requests_per_minute,
                reset_in=float(rule.window_size_seconds),
            )

        entry = self._acquire_entry((client_id, category), self._clock())
        try:
            # Read the clock under the entry lock so decisions follow arrival order
            now = self._clock()
            window = float(rule.window_size_seconds)
            entry.last_seen = max(entry.last_seen, now)

            elapsed = max(0.0, now - entry.window_start)
            if elapsed >= window:
                entry.window_start = now
                entry.window_count = 0
                elapsed = 0.0
            if entry.window_count >= rule.requests_per_minute:
                return RateLimitDecision(
                    allowed=False,
                    category=category,
                    limit=rule.requests_per_minute,
                    remaining=0,
                    reset_in=window - elapsed,
                    reason="window",
                )

            burst_elapsed = max(0.0, now - entry.burst_window_start)
            if burst_elapsed >= BURST_WINDOW_SECONDS:
                entry.burst_window_start = now
                entry.burst_count = 0
                burst_elapsed = 0.0
            if entry.burst_count >= rule.burst_limit:
                return RateLimitDecision(
                    allowed=False,
                    category=category,
                    limit=rule.requests_per_minute,
                    remaining=0,
                    reset_in=BURST_WINDOW_SECONDS - burst_elapsed,
                    reason="burst",
                )

            entry.window_count += 1
            entry.burst_count += 1
            return RateLimitDecision(
                allowed=True,
                category=category,
                limit=rule.requests_per_minute,
                remaining=rule.requests_per_minute - entry.window_count,
                reset_in=window - elapsed,
            )
        finally:
            entry.lock.release()

    def enforce(self, client_id: str, category: str) -> RateLimitDecision:
        """
        Like check(), but raise on denial.

        Raises:
            RateLimitExceededException: carrying the denial decision
        """
        decision = self.check(client_id, category)
        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded: category={category}, reason={decision.reason}, "
                f"reset_in={decision.reset_in:.2f}s"
            )
            raise RateLimitExceededException(decision)
        return decision

    def sweep(self, now: Optional[float] = None) -> int:
        """
        Remove entries idle for longer than the grace period.

        Entries whose lock is held by an in-flight decision are skipped.

        Returns:
            Number of entries removed
        """
        now = self._clock() if now is None else now
        removed = 0
        with self._table_lock:
            for key, entry in list(self._entries.items()):
                if now - entry.last_seen <= self.grace_period_seconds:
                    continue
                if not entry.lock.acquire(blocking=False):
                    continue
                try:
                    if now - entry.last_seen > self.grace_period_seconds:
                        entry.removed = True
                        del self._entries[key]
                        removed += 1
                finally:
                    entry.lock.release()
        if removed:
            logger.debug(f"Rate limiter sweep removed {removed} idle entries")
        return removed

    def get_entry(self, client_id: str, category: str) -> Optional[RateLimitEntry]:
        with self._table_lock:
            return self._entries.get((client_id, category))

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._entries)

    def reset(self) -> None:
        """Drop all state."""
        with self._table_lock:
            for entry in self._entries.values():
                entry.removed = True
            self._entries.clear()


class RateLimitSweeper:
    """Background asyncio task that periodically sweeps a RateLimiter."""

    def __init__(self, limiter: RateLimiter, interval_seconds: float):
        self.limiter = limiter
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.limiter.sweep()
            except Exception:
                logger.exception("Rate limiter sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Rate limiter sweeper started (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Rate limiter sweeper stopped")
