# app/disbursement/submitter.py
from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Optional

from app.chain.base import ChainClient
from app.disbursement.backoff import BASE_BACKOFF_SECONDS, MAX_ATTEMPTS, MAX_BACKOFF_SECONDS, backoff_delay
from app.errors import TransferError
from services.metrics import increment_disbursement_attempt

logger = logging.getLogger("gasbridge.submitter")


@dataclass
class _SubmitJob:
    intent_id: str
    to: str
    amount_wei: int
    future: Future


_STOP = object()


class FundingAccountSubmitter:
    """
    Single ordered queue in front of the funding account.

    One thread drains the queue and is the only code that touches the nonce
    counter, so transactions leave with strictly increasing nonces no matter
    how many intents are confirmed at once. A broadcast that fails in transit
    is resent byte for byte before the nonce is handed to anything else.
    """

    def __init__(
        self,
        chain: ChainClient,
        *,
        name: str = "funding-submitter",
        max_attempts: int = MAX_ATTEMPTS,
        base_backoff_s: float = BASE_BACKOFF_SECONDS,
        max_backoff_s: float = MAX_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._chain = chain
        self._name = name
        self._max_attempts = max(1, int(max_attempts))
        self._base_backoff_s = base_backoff_s
        self._max_backoff_s = max_backoff_s
        self._sleep = sleep
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()
        self._nonce: Optional[int] = None

    @property
    def funding_address(self) -> str:
        return self._chain.funding_address

    def start(self) -> None:
        with self._start_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
            logger.info("submitter started funding_address=%s", self._chain.funding_address)

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._start_lock:
            thread = self._thread
            if thread is None:
                return
            self._queue.put(_STOP)
        thread.join(timeout)
        with self._start_lock:
            self._thread = None

    def submit(self, *, intent_id: str, to: str, amount_wei: int) -> Future:
        """Queue a transfer; the future resolves to the tx hash or a TransferError."""
        self.start()
        job = _SubmitJob(intent_id=intent_id, to=to, amount_wei=int(amount_wei), future=Future())
        self._queue.put(job)
        return job.future

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            if job is _STOP:
                return
            if not job.future.set_running_or_notify_cancel():
                continue
            try:
                job.future.set_result(self._send(job))
            except Exception as exc:
                job.future.set_exception(exc)

    def _send(self, job: _SubmitJob) -> str:
        if self._nonce is None:
            self._nonce = self._chain.pending_nonce()
            logger.info("nonce synced nonce=%s", self._nonce)

        nonce = self._nonce
        try:
            tx_hash = self._chain.send_transfer(to=job.to, amount_wei=job.amount_wei, nonce=nonce)
        except TransferError as exc:
            if exc.retryable and exc.raw_tx is not None:
                tx_hash = self._rebroadcast(job, nonce, exc)
            else:
                if exc.nonce_conflict or exc.tx_hash:
                    # counter is out of step with the node (or the send may have landed)
                    self._nonce = None
                logger.warning(
                    "submit failed intent_id=%s nonce=%s retryable=%s reason=%s",
                    job.intent_id,
                    nonce,
                    exc.retryable,
                    exc.reason,
                )
                raise

        self._nonce = nonce + 1
        logger.info("submitted intent_id=%s nonce=%s tx_hash=%s", job.intent_id, nonce, tx_hash)
        return tx_hash

    def _rebroadcast(self, job: _SubmitJob, nonce: int, first: TransferError) -> str:
        """
        Resend the signed bytes of a broadcast that failed in transit. The nonce
        stays reserved for this transaction until the attempts run out.
        """
        last = first
        for attempt in range(1, self._max_attempts):
            delay = backoff_delay(attempt, base=self._base_backoff_s, cap=self._max_backoff_s)
            logger.warning(
                "broadcast retry intent_id=%s nonce=%s tx_hash=%s attempt=%s delay_s=%s reason=%s",
                job.intent_id,
                nonce,
                first.tx_hash,
                attempt,
                delay,
                last.reason,
            )
            increment_disbursement_attempt("rebroadcast")
            self._sleep(delay)
            try:
                return self._chain.broadcast(first.raw_tx)
            except TransferError as exc:
                last = exc
                if not exc.retryable or exc.nonce_conflict:
                    # the nonce may already be used by this very transaction
                    break

        self._nonce = None
        logger.error(
            "broadcast abandoned intent_id=%s nonce=%s tx_hash=%s reason=%s",
            job.intent_id,
            nonce,
            first.tx_hash,
            last.reason,
        )
        raise TransferError(
            f"broadcast not confirmed by node: {last.reason}",
            retryable=True,
            tx_hash=first.tx_hash,
        )
