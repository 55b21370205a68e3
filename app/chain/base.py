# app/chain/base.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Optional, Protocol

from web3 import Web3


@dataclass(frozen=True)
class ChainReceipt:
    tx_hash: str
    success: bool
    block_number: Optional[int] = None


class ChainClient(Protocol):
    """
    Funding-account view of the chain.
    send_transfer() never picks a nonce itself; the submitter owns the counter.
    broadcast() resends already-signed bytes and treats "already known" as sent.
    """

    @property
    def funding_address(self) -> str: ...
    def pending_nonce(self) -> int: ...
    def send_transfer(self, *, to: str, amount_wei: int, nonce: int) -> str: ...
    def broadcast(self, raw_tx: bytes) -> str: ...
    def wait_for_receipt(self, tx_hash: str, *, timeout_s: float, poll_s: float) -> ChainReceipt: ...
    def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]: ...
    def transaction_known(self, tx_hash: str) -> bool: ...
    def get_balance(self, address: str) -> int: ...


def to_wei(amount: Decimal) -> int:
    return int(Web3.to_wei(amount, "ether"))


def format_ether(amount_wei: int) -> str:
    with localcontext() as ctx:
        ctx.prec = 80
        value = Decimal(int(amount_wei)) / Decimal(10**18)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if "." not in text:
        text += ".0"
    return text
