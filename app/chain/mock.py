# app/chain/mock.py
from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Optional

from app.chain.base import ChainReceipt
from app.errors import ConfirmationTimeout, TransferError

SANDBOX_FUNDING_ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


class MockChainClient:
    """
    Sandbox/test chain.

    Behaves like a node that enforces strictly sequential account nonces:
    a send with any nonce other than the next expected one fails with a
    nonce error, so unserialized submissions show up as failures.

    Test hooks:
    - fail_next(*errors): raise these TransferErrors on the next sends
    - fail_broadcasts(n): the next n broadcasts are signed but lost in transit
    - hold_receipts=True: transactions are accepted but never mined
    - revert_next: mine the next transaction with status=0
    - send_delay_s: slow down sends to widen race windows
    """

    def __init__(
        self,
        *,
        funding_address: str = SANDBOX_FUNDING_ADDRESS,
        funding_balance_wei: int = 10**24,
        send_delay_s: float = 0.0,
    ):
        self._funding_address = funding_address
        self._lock = threading.Lock()
        self._next_nonce = 0
        self._balances: dict[str, int] = {funding_address.lower(): int(funding_balance_wei)}
        self._pending: dict[str, dict] = {}
        self._receipts: dict[str, ChainReceipt] = {}
        self._queued_errors: list[TransferError] = []
        self.sent: list[dict] = []
        self.send_attempts = 0
        self.broadcast_attempts = 0
        self._broadcast_failures = 0
        self.hold_receipts = False
        self.revert_next = False
        self.send_delay_s = send_delay_s

    @property
    def funding_address(self) -> str:
        return self._funding_address

    # -----------------------
    # Test hooks
    # -----------------------
    def fail_next(self, *errors: TransferError) -> None:
        with self._lock:
            self._queued_errors.extend(errors)

    def fail_broadcasts(self, count: int = 1) -> None:
        with self._lock:
            self._broadcast_failures += int(count)

    def mine_pending(self) -> None:
        with self._lock:
            for tx_hash, tx in list(self._pending.items()):
                self._mine(tx_hash, tx, success=True)

    def drop_pending(self) -> None:
        with self._lock:
            self._pending.clear()

    # -----------------------
    # ChainClient
    # -----------------------
    def pending_nonce(self) -> int:
        with self._lock:
            return self._next_nonce

    def send_transfer(self, *, to: str, amount_wei: int, nonce: int) -> str:
        if self.send_delay_s:
            time.sleep(self.send_delay_s)

        with self._lock:
            self.send_attempts += 1
            if self._queued_errors:
                raise self._queued_errors.pop(0)

            tx = {"to": to, "value": int(amount_wei), "nonce": nonce}
            raw_tx = json.dumps(tx, sort_keys=True).encode("utf-8")
            return self._broadcast(raw_tx, tx)

    def broadcast(self, raw_tx: bytes) -> str:
        with self._lock:
            self.broadcast_attempts += 1
            return self._broadcast(raw_tx, json.loads(raw_tx))

    def _hash(self, tx: dict) -> str:
        funder = self._funding_address.lower()
        return "0x" + hashlib.sha256(
            f"{funder}:{tx['nonce']}:{tx['to'].lower()}:{tx['value']}".encode("utf-8")
        ).hexdigest()

    def _broadcast(self, raw_tx: bytes, tx: dict) -> str:
        tx_hash = self._hash(tx)
        if self._broadcast_failures:
            # signed, but the RPC call dropped before the node answered
            self._broadcast_failures -= 1
            raise TransferError("rpc unavailable: ConnectionError", retryable=True, tx_hash=tx_hash, raw_tx=raw_tx)
        if tx_hash in self._receipts or tx_hash in self._pending:
            # already known
            return tx_hash

        nonce = tx["nonce"]
        if nonce < self._next_nonce:
            raise TransferError("nonce too low", retryable=True, nonce_conflict=True)
        if nonce > self._next_nonce:
            raise TransferError("nonce too high", retryable=True, nonce_conflict=True)

        funder = self._funding_address.lower()
        if self._balances.get(funder, 0) < tx["value"]:
            raise TransferError("insufficient funds for gas * price + value", retryable=False)

        sent = {"hash": tx_hash, "to": tx["to"], "value": tx["value"], "nonce": nonce}
        self._next_nonce += 1
        self.sent.append(sent)

        if self.hold_receipts:
            self._pending[tx_hash] = sent
        else:
            success = not self.revert_next
            self.revert_next = False
            self._mine(tx_hash, sent, success=success)
        return tx_hash

    def _mine(self, tx_hash: str, tx: dict, *, success: bool) -> None:
        self._pending.pop(tx_hash, None)
        if success:
            funder = self._funding_address.lower()
            self._balances[funder] = self._balances.get(funder, 0) - tx["value"]
            to = tx["to"].lower()
            self._balances[to] = self._balances.get(to, 0) + tx["value"]
        self._receipts[tx_hash] = ChainReceipt(
            tx_hash=tx_hash,
            success=success,
            block_number=len(self._receipts) + 1,
        )

    def wait_for_receipt(self, tx_hash: str, *, timeout_s: float, poll_s: float) -> ChainReceipt:
        deadline = time.monotonic() + timeout_s
        while True:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if time.monotonic() >= deadline:
                raise ConfirmationTimeout(tx_hash, timeout_s)
            time.sleep(min(poll_s, max(0.0, deadline - time.monotonic())))

    def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        with self._lock:
            return self._receipts.get(tx_hash)

    def transaction_known(self, tx_hash: str) -> bool:
        with self._lock:
            return tx_hash in self._receipts or tx_hash in self._pending

    def get_balance(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address.lower(), 0)
