from __future__ import annotations

import re
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Union


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) or unit strings like "300ms", "90s",
    "15m", "24h", "1h30m". Raises ValueError on anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"duration must be >= 0, got {value!r}")
        return float(value)

    s = str(value).strip().lower()
    if not s:
        raise ValueError("empty duration")
    try:
        secs = float(s)
    except ValueError:
        pass
    else:
        if secs < 0:
            raise ValueError(f"duration must be >= 0, got {value!r}")
        return secs

    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"invalid duration {value!r} (expected e.g. 90s, 15m, 24h)")
    return total


@dataclass
class SlidingWindowLimiter:
    """
    Per-client request limiter: at most `limit` hits per `window` seconds.

    Usage:
        rl = SlidingWindowLimiter(limit=1, window=1.0)
        if not rl.allow(client_ip):
            ...  # reject
    """
    limit: int
    window: float
    clock: Callable[[], float] = time.monotonic
    _hits: Dict[str, Deque[float]] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def allow(self, client: str) -> bool:
        if self.limit <= 0:
            return True
        now = self.clock()
        with self._lock:
            q = self._hits.setdefault(client, deque())
            while q and now - q[0] >= self.window:
                q.popleft()
            if len(q) >= self.limit:
                return False
            q.append(now)
            # drop idle clients so the table does not grow with every address seen
            if len(self._hits) > 10000:
                for k in [k for k, v in self._hits.items() if not v or now - v[-1] >= self.window]:
                    del self._hits[k]
            return True
