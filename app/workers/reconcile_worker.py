# app/workers/reconcile_worker.py
from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from app.alerts import OperatorAlerts
from app.chain.base import ChainClient
from app.disbursement.engine import DisbursementEngine
from app.errors import GasBridgeError
from app.intents.model import (
    DisbursementConfirmed,
    DisbursementFailed,
    IntentState,
    PaymentIntentRecord,
)
from app.intents.registry import IntentRegistry

logger = logging.getLogger("gasbridge.reconcile")

DEFAULT_STALE_SECONDS = 900
DEFAULT_BATCH_SIZE = 50


class DisbursementReconciler:
    """
    Sweeps intents that stopped moving.

    CONFIRMED rows that nobody picked up (hand-off lost to a restart) go back
    to the engine. DISBURSING rows are settled from the chain: the recorded
    tx hash is looked up, and a row with no hash at all is failed and paged,
    because a resend could pay the user twice.
    """

    def __init__(
        self,
        *,
        registry: IntentRegistry,
        engine: DisbursementEngine,
        chain: ChainClient,
        alerts: OperatorAlerts,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
    ):
        self._registry = registry
        self._engine = engine
        self._chain = chain
        self._alerts = alerts
        self._stale_seconds = stale_seconds

    def process_once(self, *, batch_size: int = DEFAULT_BATCH_SIZE) -> Dict[str, int]:
        summary = {
            "requeued": 0,
            "disbursed": 0,
            "failed": 0,
            "still_pending": 0,
            "skipped_in_flight": 0,
        }

        confirmed = self._registry.stale(IntentState.CONFIRMED, older_than_s=self._stale_seconds, limit=batch_size)
        disbursing = self._registry.stale(IntentState.DISBURSING, older_than_s=self._stale_seconds, limit=batch_size)
        logger.info("reconcile sweep found_confirmed=%s found_disbursing=%s", len(confirmed), len(disbursing))

        for record in confirmed:
            if self._engine.in_flight(record.intent_id):
                summary["skipped_in_flight"] += 1
                continue
            self._engine.disburse(record.intent_id)
            summary["requeued"] += 1

        for record in disbursing:
            if self._engine.in_flight(record.intent_id):
                summary["skipped_in_flight"] += 1
                continue
            try:
                result = self._settle(record)
            except GasBridgeError as exc:
                logger.warning("reconcile error intent_id=%s error=%s", record.intent_id, exc.message)
                continue
            summary[result] += 1

        logger.info("reconcile sweep done %s", " ".join(f"{k}={v}" for k, v in summary.items()))
        return summary

    def _settle(self, record: PaymentIntentRecord) -> str:
        intent_id = record.intent_id
        tx_hash = record.tx_hash

        if not tx_hash:
            self._registry.transition(intent_id, DisbursementFailed("SUBMISSION_OUTCOME_UNKNOWN"))
            self._alerts.raise_alert(
                intent_id,
                "SUBMISSION_OUTCOME_UNKNOWN",
                attempt_count=record.attempt_count,
                last_error=record.last_error,
            )
            return "failed"

        receipt = self._chain.get_receipt(tx_hash)
        if receipt is not None:
            if receipt.success:
                self._registry.transition(intent_id, DisbursementConfirmed(tx_hash))
                logger.info("reconcile disbursed intent_id=%s tx_hash=%s", intent_id, tx_hash)
                return "disbursed"
            self._registry.transition(intent_id, DisbursementFailed("TRANSACTION_REVERTED"))
            self._alerts.raise_alert(intent_id, "TRANSACTION_REVERTED", tx_hash=tx_hash)
            return "failed"

        if self._chain.transaction_known(tx_hash):
            logger.info("reconcile still pending intent_id=%s tx_hash=%s", intent_id, tx_hash)
            return "still_pending"

        self._registry.transition(intent_id, DisbursementFailed("TRANSACTION_DROPPED"))
        self._alerts.raise_alert(intent_id, "TRANSACTION_DROPPED", tx_hash=tx_hash)
        return "failed"

    def run_forever(self, *, poll_seconds: float = 60.0, stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or threading.Event()
        logger.info("reconciler started poll_seconds=%s stale_seconds=%s", poll_seconds, self._stale_seconds)
        while not stop_event.is_set():
            try:
                self.process_once()
            except Exception:
                logger.exception("reconcile sweep crashed")
            stop_event.wait(poll_seconds)
        logger.info("reconciler stopped")
