# app/processor/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass(frozen=True)
class ProcessorPayment:
    id: str
    client_secret: Optional[str]
    status: str
    amount_cents: int
    currency: str = "usd"
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentProcessor(Protocol):
    """Card processor integration. Raises UpstreamError on API failures."""

    def create_payment(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> ProcessorPayment: ...

    def retrieve_payment(self, payment_id: str) -> ProcessorPayment: ...
