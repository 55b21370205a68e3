from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class IntentState(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DISBURSING = "DISBURSING"
    DISBURSED = "DISBURSED"
    FAILED = "FAILED"


class Network(str, Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


# Names mobile clients send for the Polygon networks.
NETWORK_ALIASES = {
    "testnet": Network.TESTNET,
    "amoy": Network.TESTNET,
    "mainnet": Network.MAINNET,
    "polygon": Network.MAINNET,
}


def parse_network(value: str | Network) -> Network:
    if isinstance(value, Network):
        return value
    key = (value or "").strip().lower()
    if key not in NETWORK_ALIASES:
        raise ValueError(f"Unknown network: {value}")
    return NETWORK_ALIASES[key]


@dataclass(frozen=True)
class PaymentIntentRecord:
    intent_id: str
    wallet_address: str
    requested_amount: Decimal
    network: Network
    state: IntentState
    processor_ref: Optional[str]
    amount_usd_cents: int
    tx_hash: Optional[str]
    failure_reason: Optional[str]
    attempt_count: int
    last_error: Optional[str]
    created_at: datetime
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    updated_at: datetime

    @property
    def terminal(self) -> bool:
        return self.state in (IntentState.DISBURSED, IntentState.FAILED)


# -----------------------
# Transition events
# -----------------------
@dataclass(frozen=True)
class PaymentConfirmed:
    pass


@dataclass(frozen=True)
class PaymentFailed:
    reason: str = "PAYMENT_FAILED"


@dataclass(frozen=True)
class DisbursementStarted:
    pass


@dataclass(frozen=True)
class DisbursementSubmitted:
    tx_hash: str


@dataclass(frozen=True)
class DisbursementAttemptFailed:
    error: str


@dataclass(frozen=True)
class DisbursementConfirmed:
    tx_hash: str


@dataclass(frozen=True)
class DisbursementFailed:
    reason: str


IntentEvent = (
    PaymentConfirmed
    | PaymentFailed
    | DisbursementStarted
    | DisbursementSubmitted
    | DisbursementAttemptFailed
    | DisbursementConfirmed
    | DisbursementFailed
)


@dataclass(frozen=True)
class TransitionOutcome:
    record: PaymentIntentRecord
    applied: bool
