from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    retry_after: timedelta = timedelta()


class RateLimiter:
    """Remembers when each user last submitted a verification request.

    Entries are keyed by user id only, so one clock applies across every
    guild the bot serves. Entries are never expired.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_attempt: dict[int, datetime] = {}

    def check(
        self, user_id: int, duration: timedelta, now: datetime | None = None
    ) -> RateLimitResult:
        now = now or datetime.now(UTC)
        with self._lock:
            last = self._last_attempt.get(user_id)
            if last is not None:
                elapsed = now - last
                if elapsed < duration:
                    return RateLimitResult(
                        allowed=False, retry_after=duration - elapsed
                    )
            self._last_attempt[user_id] = now
        return RateLimitResult(allowed=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_attempt)
