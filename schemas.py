# schemas.py
from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    # wire format is camelCase; python side stays snake_case
    model_config = ConfigDict(populate_by_name=True)


# -------- PAYMENT INTENTS --------
class CreateIntentRequest(_CamelModel):
    wallet_address: str = Field(alias="walletAddress", min_length=1)
    # kept loose here; bounds and decimal checks live in the registry
    amount_matic: Union[str, float, int] = Field(alias="amountMatic")
    network: Optional[str] = None
    intent_id: Optional[str] = Field(default=None, alias="intentId", max_length=128)


class CreateIntentResponse(_CamelModel):
    client_secret: Optional[str] = Field(alias="clientSecret")
    intent_id: str = Field(alias="intentId")
    payment_intent_id: str = Field(alias="paymentIntentId")
    amount_usd: str = Field(alias="amountUSD")
    amount_matic: str = Field(alias="amountMatic")
    network: str
    state: str


class PaymentStatusResponse(_CamelModel):
    intent_id: str = Field(alias="intentId")
    state: str
    amount_matic: str = Field(alias="amountMatic")
    wallet_address: str = Field(alias="walletAddress")
    tx_hash: Optional[str] = Field(default=None, alias="txHash")
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")
    processor_status: Optional[str] = Field(default=None, alias="processorStatus")
    stale: bool = False


# -------- WALLET --------
class WalletBalanceResponse(_CamelModel):
    address: str
    balance: str
    balance_wei: str = Field(alias="balanceWei")


# -------- HEALTH --------
class HealthResponse(BaseModel):
    status: str
    timestamp: str
    network: str
