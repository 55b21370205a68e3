from __future__ import annotations

import re
from typing import Any


# 32-byte hex (private keys); tx hashes have the same shape, so callers only
# pass free text through here, never tx hashes they want to keep
_PRIVATE_KEY_RE = re.compile(r"\b(0x)?[0-9a-fA-F]{64}\b")
_CLIENT_SECRET_RE = re.compile(r"\b(pi_[A-Za-z0-9_]+?)_secret_[A-Za-z0-9]+\b")
_STRIPE_SIG_RE = re.compile(r"\b(v[01])=[0-9a-fA-F]+")
_API_KEY_RE = re.compile(r"\b((?:sk|rk|whsec)_(?:live_|test_)?)[A-Za-z0-9]+\b")

_SENSITIVE_KEY_MARKERS = (
    "secret",
    "signature",
    "private_key",
    "privatekey",
    "authorization",
    "password",
)


def redact_text(value: str) -> str:
    masked = _CLIENT_SECRET_RE.sub(lambda m: f"{m.group(1)}_secret_***", value)
    masked = _STRIPE_SIG_RE.sub(lambda m: f"{m.group(1)}=***", masked)
    masked = _API_KEY_RE.sub(lambda m: f"{m.group(1)}***", masked)
    masked = _PRIVATE_KEY_RE.sub("[REDACTED]", masked)
    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        else:
            out[k] = redact_value(v)
    return out
