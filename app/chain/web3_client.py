# app/chain/web3_client.py
from __future__ import annotations

import logging
from typing import Optional

import requests
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from app.chain.base import ChainReceipt
from app.errors import ConfirmationTimeout, TransferError

logger = logging.getLogger("gasbridge.chain")

# Node error fragments (geth / bor wording) -> classification
_PERMANENT_MARKERS = (
    "insufficient funds",
    "invalid address",
    "invalid recipient",
    "invalid sender",
    "intrinsic gas too low",
    "exceeds block gas limit",
)
_NONCE_MARKERS = (
    "nonce too low",
    "nonce too high",
    "replacement transaction underpriced",
)
_ALREADY_KNOWN_MARKERS = ("already known", "known transaction")


def classify_send_error(exc: Exception, *, tx_hash: str, raw_tx: Optional[bytes] = None) -> TransferError:
    """
    Map an exception raised while broadcasting a signed transaction.
    tx_hash (and the signed bytes) are attached whenever the node may have
    accepted the transaction, so the caller can rebroadcast it unchanged.
    """
    if isinstance(exc, TransferError):
        return exc

    if isinstance(exc, requests.exceptions.RequestException):
        # request may have reached the node before the connection dropped
        return TransferError(
            f"rpc unavailable: {type(exc).__name__}",
            retryable=True,
            tx_hash=tx_hash or None,
            raw_tx=raw_tx if tx_hash else None,
        )

    message = str(exc).lower()
    if any(m in message for m in _PERMANENT_MARKERS):
        return TransferError(str(exc), retryable=False)
    if any(m in message for m in _NONCE_MARKERS):
        return TransferError(str(exc), retryable=True, nonce_conflict=True)

    return TransferError(str(exc) or type(exc).__name__, retryable=True)


class Web3ChainClient:
    """Funding account on an EVM JSON-RPC endpoint (Polygon PoS / Amoy)."""

    def __init__(
        self,
        *,
        rpc_url: str,
        private_key: str,
        chain_id: int = 0,
        gas_limit: int = 21000,
        gas_price_multiplier: float = 1.0,
        request_timeout_s: float = 20.0,
    ):
        self._w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout_s}))
        self._account = self._w3.eth.account.from_key(private_key)
        self._chain_id = int(chain_id or 0)
        self._gas_limit = int(gas_limit)
        self._gas_price_multiplier = float(gas_price_multiplier)

    @property
    def funding_address(self) -> str:
        return self._account.address

    def _resolve_chain_id(self) -> int:
        if not self._chain_id:
            self._chain_id = int(self._w3.eth.chain_id)
        return self._chain_id

    def pending_nonce(self) -> int:
        try:
            return int(self._w3.eth.get_transaction_count(self._account.address, "pending"))
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as exc:
            raise TransferError(f"nonce lookup failed: {exc}", retryable=True) from exc

    def send_transfer(self, *, to: str, amount_wei: int, nonce: int) -> str:
        try:
            gas_price = int(self._w3.eth.gas_price * self._gas_price_multiplier)
            tx = {
                "to": Web3.to_checksum_address(to),
                "value": int(amount_wei),
                "nonce": int(nonce),
                "gas": self._gas_limit,
                "gasPrice": gas_price,
                "chainId": self._resolve_chain_id(),
            }
            signed = self._account.sign_transaction(tx)
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as exc:
            # nothing was broadcast yet
            raise classify_send_error(exc, tx_hash="") from exc

        tx_hash = Web3.to_hex(signed.hash)
        self._broadcast(signed.raw_transaction, tx_hash)
        logger.info(
            "tx broadcast tx_hash=%s nonce=%s to=%s value_wei=%s gas_price=%s",
            tx_hash,
            nonce,
            to,
            amount_wei,
            gas_price,
        )
        return tx_hash

    def broadcast(self, raw_tx: bytes) -> str:
        tx_hash = Web3.to_hex(Web3.keccak(raw_tx))
        self._broadcast(raw_tx, tx_hash)
        logger.info("tx rebroadcast tx_hash=%s", tx_hash)
        return tx_hash

    def _broadcast(self, raw_tx: bytes, tx_hash: str) -> None:
        try:
            self._w3.eth.send_raw_transaction(raw_tx)
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as exc:
            message = str(exc).lower()
            if any(m in message for m in _ALREADY_KNOWN_MARKERS):
                logger.info("tx already in mempool tx_hash=%s", tx_hash)
                return
            raise classify_send_error(exc, tx_hash=tx_hash, raw_tx=raw_tx) from exc

    @staticmethod
    def _receipt(tx_hash: str, raw) -> ChainReceipt:
        return ChainReceipt(
            tx_hash=tx_hash,
            success=int(raw["status"]) == 1,
            block_number=raw.get("blockNumber"),
        )

    def wait_for_receipt(self, tx_hash: str, *, timeout_s: float, poll_s: float) -> ChainReceipt:
        try:
            raw = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout_s, poll_latency=poll_s)
        except TimeExhausted as exc:
            raise ConfirmationTimeout(tx_hash, timeout_s) from exc
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as exc:
            raise TransferError(f"receipt lookup failed: {exc}", retryable=True, tx_hash=tx_hash) from exc
        return self._receipt(tx_hash, raw)

    def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        try:
            raw = self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as exc:
            raise TransferError(f"receipt lookup failed: {exc}", retryable=True, tx_hash=tx_hash) from exc
        return self._receipt(tx_hash, raw)

    def transaction_known(self, tx_hash: str) -> bool:
        try:
            self._w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as exc:
            raise TransferError(f"transaction lookup failed: {exc}", retryable=True, tx_hash=tx_hash) from exc
        return True

    def get_balance(self, address: str) -> int:
        try:
            return int(self._w3.eth.get_balance(Web3.to_checksum_address(address)))
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as exc:
            raise TransferError(f"balance lookup failed: {exc}", retryable=True) from exc
