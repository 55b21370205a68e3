# app/alerts.py
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from services.metrics import increment_operator_alert

logger = logging.getLogger("gasbridge.alerts")


@dataclass(frozen=True)
class OperatorAlert:
    intent_id: str
    reason: str
    context: dict[str, Any] = field(default_factory=dict)
    raised_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class OperatorAlerts:
    """
    Alert sink for failures that need a human (permanent transfer errors,
    unknown submission outcomes). Paging integrations hook in by subclassing
    and overriding deliver().
    """

    def __init__(self, *, keep_last: int = 200):
        self._lock = threading.Lock()
        self._recent: deque[OperatorAlert] = deque(maxlen=keep_last)

    def raise_alert(self, intent_id: str, reason: str, **context: Any) -> OperatorAlert:
        alert = OperatorAlert(intent_id=intent_id, reason=reason, context=context)
        with self._lock:
            self._recent.append(alert)
        increment_operator_alert(reason.split(":", 1)[0])
        logger.error("operator_alert intent_id=%s reason=%s context=%s", intent_id, reason, context)
        self.deliver(alert)
        return alert

    def deliver(self, alert: OperatorAlert) -> None:
        pass

    def recent(self) -> list[OperatorAlert]:
        with self._lock:
            return list(self._recent)
