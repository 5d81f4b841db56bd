"""
Failed-attempt throttling for code verification.

The TOTP engine accepts any number of guesses; a 6-digit code is only safe
when the flows calling it stop a user after a few failures.
"""

import threading
import time
from typing import Callable, Dict, List


class AttemptLimiter:
    """Lock a key out after ``max_attempts`` failures within ``window_seconds``."""

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_attempts = max_attempts
        self._window = window_seconds
        self._clock = clock
        self._failures: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> List[float]:
        recent = [t for t in self._failures.get(key, []) if now - t < self._window]
        if recent:
            self._failures[key] = recent
        else:
            self._failures.pop(key, None)
        return recent

    def _sweep(self, now: float) -> None:
        # Drop every key whose failures have all expired
        stale = [
            key for key, times in self._failures.items()
            if not times or now - times[-1] >= self._window
        ]
        for key in stale:
            del self._failures[key]

    def is_locked(self, key: str) -> bool:
        with self._lock:
            return len(self._prune(key, self._clock())) >= self._max_attempts

    def record_failure(self, key: str) -> int:
        """Record a failed attempt; return failures left before lockout."""
        with self._lock:
            now = self._clock()
            self._sweep(now)
            recent = self._prune(key, now)
            recent.append(now)
            self._failures[key] = recent
            return max(0, self._max_attempts - len(recent))

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def __len__(self) -> int:
        """Number of keys with failures still on record."""
        with self._lock:
            return len(self._failures)
