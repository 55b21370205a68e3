from __future__ import annotations

from threading import Lock
from typing import Tuple


_lock = Lock()
_counters: dict[str, dict[Tuple[Tuple[str, str], ...], int]] = {}


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        series = _counters.setdefault(name, {})
        series[key] = int(series.get(key, 0)) + int(value)


def get_counter(name: str, labels: dict[str, str] | None = None) -> int:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        return int(_counters.get(name, {}).get(key, 0))


def reset() -> None:
    with _lock:
        _counters.clear()


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_intent_created(network: str) -> None:
    _inc("intents_created_total", {"network": network})


def increment_intent_transition(event: str, applied: bool) -> None:
    _inc("intent_transitions_total", {"event": event, "applied": str(applied).lower()})


def increment_webhook_event(event_type: str, signature_valid: bool, applied: bool) -> None:
    _inc(
        "webhook_events_total",
        {
            "event_type": event_type,
            "signature_valid": str(signature_valid).lower(),
            "applied": str(applied).lower(),
        },
    )


def increment_disbursement_attempt(result: str) -> None:
    _inc("disbursement_attempts_total", {"result": result})


def increment_operator_alert(reason: str) -> None:
    _inc("operator_alerts_total", {"reason": reason})


def increment_rate_limited(guard: str) -> None:
    _inc("rate_limited_total", {"guard": guard})


def render_prometheus() -> str:
    lines: list[str] = []
    with _lock:
        for name, series in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                if labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")
    return "\n".join(lines) + ("\n" if lines else "")
