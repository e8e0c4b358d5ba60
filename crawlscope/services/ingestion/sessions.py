"""Per-address request rate over a trailing window."""

from __future__ import annotations

from collections import defaultdict, deque
from datetime import datetime

from crawlscope.domain.records import SessionAggregate


class SessionTracker:
    """Feed events in timestamp order; each ``observe`` returns the aggregate
    for that address over the preceding ``window_seconds`` (inclusive).

    The window reported is the span actually observed, so a single request
    yields a zero window and the rate rule does not apply to it.
    """

    def __init__(self, window_seconds: float):
        self.window_seconds = float(window_seconds)
        self._seen: dict[str, deque] = defaultdict(deque)

    @property
    def enabled(self) -> bool:
        return self.window_seconds > 0

    def observe(self, address: str, timestamp: datetime) -> SessionAggregate | None:
        if not self.enabled:
            return None
        now = timestamp.timestamp()
        seen = self._seen[address]
        seen.append(now)
        while seen and now - seen[0] > self.window_seconds:
            seen.popleft()
        return SessionAggregate(request_count=len(seen), window_seconds=now - seen[0])
