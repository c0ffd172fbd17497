"""Chronologically sortable child keys.

A push id is 20 characters: 8 encode the creation time in milliseconds, 12
are random.  Ids generated within the same millisecond reuse the previous
random part incremented by one, so lexicographic order always matches
creation order.
"""

from __future__ import annotations

import secrets
import threading
import time

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

_lock = threading.Lock()
_last_time = 0
_last_random: list[int] = [0] * 12


def generate_push_id(now_ms: int | None = None) -> str:
    """Return a new push id for the current (or given) time."""
    global _last_time

    now = int(time.time() * 1000) if now_ms is None else now_ms
    with _lock:
        duplicate = now == _last_time
        _last_time = now

        time_chars = []
        t = now
        for _ in range(8):
            time_chars.append(PUSH_CHARS[t % 64])
            t //= 64
        if t != 0:
            raise ValueError("Timestamp does not fit in a push id")

        if not duplicate:
            for i in range(12):
                _last_random[i] = secrets.randbelow(64)
        else:
            i = 11
            while i >= 0 and _last_random[i] == 63:
                _last_random[i] = 0
                i -= 1
            if i >= 0:
                _last_random[i] += 1

        random_chars = "".join(PUSH_CHARS[n] for n in _last_random)

    return "".join(reversed(time_chars)) + random_chars
