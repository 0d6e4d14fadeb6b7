from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Literal

from sessionvault.core.config import Settings, settings

RateLimitScope = Literal["login", "refresh"]


def normalize_email(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def build_key(scope: RateLimitScope, client_ip: str | None, email: str | None = None) -> str:
    """
    Build a fingerprint from scope, client IP and, for login only, the normalized email.
    """
    ip = client_ip.strip() if client_ip and client_ip.strip() else "unknown"
    if scope == "refresh":
        return f"{scope}:{ip}"
    normalized = normalize_email(email)
    return f"{scope}:{ip}:{normalized}" if normalized else f"{scope}:{ip}"


class SlidingWindowRateLimiter:
    """
    In-process sliding-window failure counter.

    Each key holds the timestamps of recent failures. A key is limited once the
    number of failures inside the trailing window reaches ``max_attempts``; a
    success clears it. State lives in one instance per process and is not
    shared across workers.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 5,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_attempts = max_attempts
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._attempts: dict[str, list[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, config: Settings = settings) -> SlidingWindowRateLimiter:
        return cls(
            max_attempts=config.RATE_LIMIT_MAX_ATTEMPTS,
            window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
        )

    def _prune(self, attempts: list[float], now: float) -> list[float]:
        return [stamp for stamp in attempts if now - stamp < self.window_seconds]

    def _sweep_stale_keys(self, now: float) -> None:
        # Callers hold the lock. Runs at most once per window.
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        stale = [
            key for key, attempts in self._attempts.items()
            if not attempts or now - attempts[-1] >= self.window_seconds
        ]
        for key in stale:
            del self._attempts[key]

    def is_limited(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            self._sweep_stale_keys(now)
            attempts = self._prune(self._attempts.get(key, []), now)
            if not attempts:
                self._attempts.pop(key, None)
                return False
            self._attempts[key] = attempts
            return len(attempts) >= self.max_attempts

    def register_failure(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            self._sweep_stale_keys(now)
            attempts = self._prune(self._attempts.get(key, []), now)
            attempts.append(now)
            self._attempts[key] = attempts

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._attempts.clear()

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._attempts)

    def failure_count(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            return len(self._prune(self._attempts.get(key, []), now))
