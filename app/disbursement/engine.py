# app/disbursement/engine.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from app.alerts import OperatorAlerts
from app.chain.base import ChainClient, to_wei
from app.disbursement.backoff import BASE_BACKOFF_SECONDS, MAX_ATTEMPTS, MAX_BACKOFF_SECONDS, backoff_delay
from app.disbursement.submitter import FundingAccountSubmitter
from app.errors import ConfirmationTimeout, GasBridgeError, TransferError
from app.intents.model import (
    DisbursementAttemptFailed,
    DisbursementConfirmed,
    DisbursementFailed,
    DisbursementStarted,
    DisbursementSubmitted,
    IntentState,
    PaymentIntentRecord,
)
from app.intents.registry import IntentRegistry
from services.metrics import increment_disbursement_attempt

logger = logging.getLogger("gasbridge.disbursement")


class DisbursementEngine:
    """
    Turns a CONFIRMED intent into an on-chain transfer.

    disburse() only hands the intent id to a worker pool and returns; run()
    is the body. Only the caller that wins CONFIRMED -> DISBURSING submits,
    so replays and double triggers end at the guard.
    """

    def __init__(
        self,
        *,
        registry: IntentRegistry,
        chain: ChainClient,
        submitter: FundingAccountSubmitter,
        alerts: OperatorAlerts,
        max_attempts: int = MAX_ATTEMPTS,
        base_backoff_s: float = BASE_BACKOFF_SECONDS,
        max_backoff_s: float = MAX_BACKOFF_SECONDS,
        confirmation_timeout_s: float = 120.0,
        confirmation_poll_s: float = 2.0,
        dispatch_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._registry = registry
        self._chain = chain
        self._submitter = submitter
        self._alerts = alerts
        self._max_attempts = max(1, int(max_attempts))
        self._base_backoff_s = base_backoff_s
        self._max_backoff_s = max_backoff_s
        self._confirmation_timeout_s = confirmation_timeout_s
        self._confirmation_poll_s = confirmation_poll_s
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=dispatch_workers, thread_name_prefix="disburse")
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    # ==========================================================
    # Lifecycle
    # ==========================================================

    def start(self) -> None:
        self._submitter.start()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self._submitter.stop()

    # ==========================================================
    # Entry points
    # ==========================================================

    def disburse(self, intent_id: str) -> Future:
        logger.info("disbursement queued intent_id=%s", intent_id)
        with self._in_flight_lock:
            self._in_flight.add(intent_id)
        return self._executor.submit(self._run_logged, intent_id)

    def in_flight(self, intent_id: str) -> bool:
        with self._in_flight_lock:
            return intent_id in self._in_flight

    def _run_logged(self, intent_id: str) -> Optional[PaymentIntentRecord]:
        try:
            return self.run(intent_id)
        except Exception:
            logger.exception("disbursement crashed intent_id=%s", intent_id)
            raise
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(intent_id)

    def run(self, intent_id: str) -> Optional[PaymentIntentRecord]:
        record = self._registry.get(intent_id)
        if record is None:
            logger.error("disbursement for unknown intent intent_id=%s", intent_id)
            return None
        if record.state != IntentState.CONFIRMED:
            logger.info("disbursement skipped intent_id=%s state=%s", intent_id, record.state.value)
            return record

        outcome = self._registry.apply(intent_id, DisbursementStarted())
        if not outcome.applied:
            logger.info("disbursement already claimed intent_id=%s state=%s", intent_id, outcome.record.state.value)
            return outcome.record

        record = outcome.record
        tx_hash = self._submit_with_retries(record)
        if tx_hash is None:
            return self._registry.get(intent_id)

        return self._await_confirmation(intent_id, tx_hash)

    # ==========================================================
    # Steps
    # ==========================================================

    def _fail(self, intent_id: str, reason: str, **context) -> PaymentIntentRecord:
        record = self._registry.transition(intent_id, DisbursementFailed(reason))
        self._alerts.raise_alert(intent_id, reason, **context)
        logger.error("disbursement failed intent_id=%s reason=%s", intent_id, reason)
        return record

    def _submit_with_retries(self, record: PaymentIntentRecord) -> Optional[str]:
        intent_id = record.intent_id
        amount_wei = to_wei(record.requested_amount)

        attempt = 0
        while True:
            attempt += 1
            try:
                future = self._submitter.submit(
                    intent_id=intent_id,
                    to=record.wallet_address,
                    amount_wei=amount_wei,
                )
                tx_hash = future.result()
            except TransferError as exc:
                if exc.tx_hash:
                    # the submitter gave up rebroadcasting; it may still land, so wait on the hash
                    logger.warning(
                        "submission outcome ambiguous intent_id=%s tx_hash=%s reason=%s",
                        intent_id,
                        exc.tx_hash,
                        exc.reason,
                    )
                    increment_disbursement_attempt("ambiguous")
                    self._registry.transition(intent_id, DisbursementSubmitted(exc.tx_hash))
                    return exc.tx_hash

                if not exc.retryable:
                    increment_disbursement_attempt("permanent_error")
                    self._fail(intent_id, exc.reason, attempt=attempt, amount_wei=amount_wei)
                    return None

                increment_disbursement_attempt("transient_error")
                self._registry.transition(intent_id, DisbursementAttemptFailed(exc.reason))
                if attempt >= self._max_attempts:
                    self._fail(intent_id, f"MAX_ATTEMPTS_EXCEEDED: {exc.reason}", attempt=attempt)
                    return None

                delay = backoff_delay(attempt, base=self._base_backoff_s, cap=self._max_backoff_s)
                logger.warning(
                    "submission retry intent_id=%s attempt=%s delay_s=%s reason=%s",
                    intent_id,
                    attempt,
                    delay,
                    exc.reason,
                )
                self._sleep(delay)
                continue
            except GasBridgeError as exc:
                increment_disbursement_attempt("permanent_error")
                self._fail(intent_id, exc.message, attempt=attempt)
                return None

            increment_disbursement_attempt("submitted")
            self._registry.transition(intent_id, DisbursementSubmitted(tx_hash))
            return tx_hash

    def _await_confirmation(self, intent_id: str, tx_hash: str) -> PaymentIntentRecord:
        attempt = 0
        while True:
            attempt += 1
            try:
                receipt = self._chain.wait_for_receipt(
                    tx_hash,
                    timeout_s=self._confirmation_timeout_s,
                    poll_s=self._confirmation_poll_s,
                )
            except (ConfirmationTimeout, TransferError) as exc:
                if attempt >= self._max_attempts:
                    # the transaction may still land; the reconciler owns it from here
                    logger.warning(
                        "confirmation wait exhausted intent_id=%s tx_hash=%s attempts=%s",
                        intent_id,
                        tx_hash,
                        attempt,
                    )
                    return self._registry.transition(intent_id, DisbursementAttemptFailed(exc.message))
                delay = backoff_delay(attempt, base=self._base_backoff_s, cap=self._max_backoff_s)
                logger.info(
                    "confirmation retry intent_id=%s tx_hash=%s attempt=%s delay_s=%s reason=%s",
                    intent_id,
                    tx_hash,
                    attempt,
                    delay,
                    exc.message,
                )
                self._sleep(delay)
                continue

            if not receipt.success:
                increment_disbursement_attempt("reverted")
                return self._fail(intent_id, "TRANSACTION_REVERTED", tx_hash=tx_hash)

            increment_disbursement_attempt("confirmed")
            record = self._registry.transition(intent_id, DisbursementConfirmed(tx_hash))
            logger.info(
                "disbursed intent_id=%s tx_hash=%s block=%s amount=%s to=%s",
                intent_id,
                tx_hash,
                receipt.block_number,
                record.requested_amount,
                record.wallet_address,
            )
            return record
