# app/intents/repository.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, ContextManager, Optional

from psycopg2.extras import RealDictCursor

from app.errors import UnknownIntent
from app.intents.model import IntentState, Network, PaymentIntentRecord
from app.intents.store import Mutator
from db import get_conn

_COLUMNS = """
  intent_id,
  wallet_address,
  requested_amount,
  network,
  state,
  processor_ref,
  amount_usd_cents,
  tx_hash,
  failure_reason,
  attempt_count,
  last_error,
  created_at,
  confirmed_at,
  completed_at,
  updated_at
"""


def _trim(amount: Decimal) -> Decimal:
    # numeric(36,18) pads to 18 places
    return Decimal(format(amount.normalize(), "f"))


def _row_to_record(row: dict[str, Any]) -> PaymentIntentRecord:
    return PaymentIntentRecord(
        intent_id=row["intent_id"],
        wallet_address=row["wallet_address"],
        requested_amount=_trim(Decimal(row["requested_amount"])),
        network=Network(row["network"]),
        state=IntentState(row["state"]),
        processor_ref=row["processor_ref"],
        amount_usd_cents=int(row["amount_usd_cents"]),
        tx_hash=row["tx_hash"],
        failure_reason=row["failure_reason"],
        attempt_count=int(row["attempt_count"] or 0),
        last_error=row["last_error"],
        created_at=row["created_at"],
        confirmed_at=row["confirmed_at"],
        completed_at=row["completed_at"],
        updated_at=row["updated_at"],
    )


class PostgresIntentStore:
    """
    app.payment_intents backed store.

    - create-if-absent: INSERT ... ON CONFLICT (intent_id) DO NOTHING
    - per-intent critical section: SELECT ... FOR UPDATE inside one transaction
    """

    def __init__(self, conn_factory: Callable[[], ContextManager] = get_conn):
        self._conn = conn_factory

    # ==========================================================
    # Writes
    # ==========================================================

    def insert_if_absent(self, record: PaymentIntentRecord) -> tuple[PaymentIntentRecord, bool]:
        with self._conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    INSERT INTO app.payment_intents ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (intent_id) DO NOTHING
                    RETURNING {_COLUMNS}
                    """,
                    (
                        record.intent_id,
                        record.wallet_address,
                        record.requested_amount,
                        record.network.value,
                        record.state.value,
                        record.processor_ref,
                        record.amount_usd_cents,
                        record.tx_hash,
                        record.failure_reason,
                        record.attempt_count,
                        record.last_error,
                        record.created_at,
                        record.confirmed_at,
                        record.completed_at,
                        record.updated_at,
                    ),
                )
                row = cur.fetchone()
                if row:
                    return _row_to_record(row), True

                cur.execute(
                    f"SELECT {_COLUMNS} FROM app.payment_intents WHERE intent_id = %s",
                    (record.intent_id,),
                )
                return _row_to_record(cur.fetchone()), False

    def update(self, intent_id: str, mutate: Mutator) -> tuple[PaymentIntentRecord, bool]:
        with self._conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM app.payment_intents WHERE intent_id = %s FOR UPDATE",
                    (intent_id,),
                )
                row = cur.fetchone()
                if not row:
                    raise UnknownIntent(intent_id)

                current = _row_to_record(row)
                updated = mutate(current)
                if updated is None:
                    return current, False

                cur.execute(
                    """
                    UPDATE app.payment_intents
                    SET
                      state = %s,
                      tx_hash = %s,
                      failure_reason = %s,
                      attempt_count = %s,
                      last_error = %s,
                      confirmed_at = %s,
                      completed_at = %s,
                      updated_at = %s
                    WHERE intent_id = %s
                    """,
                    (
                        updated.state.value,
                        updated.tx_hash,
                        updated.failure_reason,
                        updated.attempt_count,
                        updated.last_error,
                        updated.confirmed_at,
                        updated.completed_at,
                        updated.updated_at,
                        intent_id,
                    ),
                )
                return updated, True

    # ==========================================================
    # Reads
    # ==========================================================

    def get(self, intent_id: str) -> Optional[PaymentIntentRecord]:
        with self._conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM app.payment_intents WHERE intent_id = %s",
                    (intent_id,),
                )
                row = cur.fetchone()
                return _row_to_record(row) if row else None

    def list_by_state(
        self, state: IntentState, *, updated_before: datetime, limit: int
    ) -> list[PaymentIntentRecord]:
        with self._conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM app.payment_intents
                    WHERE state = %s
                      AND updated_at <= %s
                    ORDER BY updated_at ASC
                    LIMIT %s
                    """,
                    (state.value, updated_before, limit),
                )
                return [_row_to_record(r) for r in cur.fetchall()]

    def ping(self) -> bool:
        try:
            with self._conn() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1 FROM app.payment_intents LIMIT 1;")
                    cur.fetchone()
            return True
        except Exception:
            return False
