# app/disbursement/backoff.py
from __future__ import annotations

MAX_ATTEMPTS = 5
BASE_BACKOFF_SECONDS = 2.0
MAX_BACKOFF_SECONDS = 60.0


def backoff_delay(attempt: int, *, base: float = BASE_BACKOFF_SECONDS, cap: float = MAX_BACKOFF_SECONDS) -> float:
    # 2, 4, 8, 16, 32, 60...
    return min(cap, base * (2 ** max(0, attempt - 1)))
