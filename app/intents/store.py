# app/intents/store.py
from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional, Protocol

from app.errors import UnknownIntent
from app.intents.model import IntentState, PaymentIntentRecord

Mutator = Callable[[PaymentIntentRecord], Optional[PaymentIntentRecord]]


class IntentStore(Protocol):
    """
    Durable keyed store behind IntentRegistry.

    update() runs `mutate` inside the per-intent critical section and persists
    its result; mutate returning None means "leave the record as it is".
    """

    def insert_if_absent(self, record: PaymentIntentRecord) -> tuple[PaymentIntentRecord, bool]: ...
    def get(self, intent_id: str) -> Optional[PaymentIntentRecord]: ...
    def update(self, intent_id: str, mutate: Mutator) -> tuple[PaymentIntentRecord, bool]: ...
    def list_by_state(
        self, state: IntentState, *, updated_before: datetime, limit: int
    ) -> list[PaymentIntentRecord]: ...
    def ping(self) -> bool: ...


class InMemoryIntentStore:
    """
    Process-local store for dev/sandbox and tests.
    Records are frozen dataclasses swapped atomically, so readers never see a
    half-applied transition.
    """

    def __init__(self) -> None:
        self._records: dict[str, PaymentIntentRecord] = {}
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, intent_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(intent_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[intent_id] = lock
            return lock

    def insert_if_absent(self, record: PaymentIntentRecord) -> tuple[PaymentIntentRecord, bool]:
        with self._lock_for(record.intent_id):
            existing = self._records.get(record.intent_id)
            if existing is not None:
                return existing, False
            self._records[record.intent_id] = record
            return record, True

    def get(self, intent_id: str) -> Optional[PaymentIntentRecord]:
        return self._records.get(intent_id)

    def update(self, intent_id: str, mutate: Mutator) -> tuple[PaymentIntentRecord, bool]:
        with self._lock_for(intent_id):
            current = self._records.get(intent_id)
            if current is None:
                raise UnknownIntent(intent_id)
            updated = mutate(current)
            if updated is None:
                return current, False
            self._records[intent_id] = updated
            return updated, True

    def list_by_state(
        self, state: IntentState, *, updated_before: datetime, limit: int
    ) -> list[PaymentIntentRecord]:
        rows = [
            r for r in list(self._records.values())
            if r.state == state and r.updated_at <= updated_before
        ]
        rows.sort(key=lambda r: r.updated_at)
        return rows[:limit]

    def ping(self) -> bool:
        return True
