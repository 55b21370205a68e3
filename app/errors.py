# app/errors.py
from __future__ import annotations

from typing import Any, Optional


class GasBridgeError(Exception):
    """
    Base for every domain error.
    `code` is the stable machine string returned to clients; `http_status`
    is what services/http_errors.py maps it to.
    """

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str | None = None, *, intent_id: str | None = None):
        self.message = message or self.code
        self.intent_id = intent_id
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.intent_id:
            detail["intent_id"] = self.intent_id
        return detail


# -----------------------
# Client-correctable
# -----------------------
class ValidationError(GasBridgeError):
    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidAddress(ValidationError):
    code = "INVALID_ADDRESS"


class OutOfBounds(ValidationError):
    code = "OUT_OF_BOUNDS"


class NetworkMismatch(ValidationError):
    code = "NETWORK_MISMATCH"


# -----------------------
# Webhook authentication / parsing
# -----------------------
class AuthenticationError(GasBridgeError):
    code = "INVALID_SIGNATURE"
    http_status = 401

    def __init__(self, code: str = "INVALID_SIGNATURE", message: str | None = None):
        self.code = code
        super().__init__(message or code)


class MalformedEvent(GasBridgeError):
    code = "MALFORMED_EVENT"
    http_status = 400


class WebhookSecretNotConfigured(GasBridgeError):
    code = "WEBHOOK_SECRET_NOT_CONFIGURED"
    http_status = 500


# -----------------------
# Registry
# -----------------------
class UnknownIntent(GasBridgeError):
    code = "INTENT_NOT_FOUND"
    http_status = 404

    def __init__(self, intent_id: str):
        super().__init__(f"Payment intent not found: {intent_id}", intent_id=intent_id)


class InvalidTransition(GasBridgeError):
    code = "INVALID_TRANSITION"
    http_status = 409


# -----------------------
# External collaborators
# -----------------------
class UpstreamError(GasBridgeError):
    code = "UPSTREAM_ERROR"
    http_status = 502


class TransferError(GasBridgeError):
    """
    Raised by chain clients and the submitter.

    retryable=True  -> transient (network, nonce contention, underpriced gas)
    retryable=False -> permanent (insufficient funding balance, bad recipient)

    tx_hash is set when the transaction was signed and may have been broadcast
    even though the RPC call failed; callers must wait on it, not build a new
    transaction. raw_tx carries the signed bytes so the same transaction can be
    broadcast again under the same nonce.
    """

    code = "TRANSFER_ERROR"
    http_status = 502

    def __init__(
        self,
        reason: str,
        *,
        retryable: bool,
        nonce_conflict: bool = False,
        tx_hash: Optional[str] = None,
        raw_tx: Optional[bytes] = None,
    ):
        self.reason = reason
        self.retryable = retryable
        self.nonce_conflict = nonce_conflict
        self.tx_hash = tx_hash
        self.raw_tx = raw_tx
        super().__init__(reason)


class ConfirmationTimeout(GasBridgeError):
    code = "CONFIRMATION_TIMEOUT"
    http_status = 504

    def __init__(self, tx_hash: str, timeout_s: float):
        self.tx_hash = tx_hash
        self.timeout_s = timeout_s
        super().__init__(f"No receipt for {tx_hash} after {timeout_s}s")
