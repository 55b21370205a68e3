# scripts/reconcile_daemon.py
from __future__ import annotations

import logging
import threading

from app.container import build_services
from services.observability import configure_logging
from settings import settings, validate_env_settings


logger = logging.getLogger("gasbridge.reconcile_daemon")


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    validate_env_settings(settings)

    services = build_services(settings)
    services.engine.start()
    interval = max(1.0, float(settings.RECONCILE_INTERVAL_S))
    logger.info(
        "Reconcile daemon starting; interval=%ss stale_after=%ss store=%s",
        interval,
        settings.RECONCILE_STALE_S,
        settings.INTENT_STORE,
    )

    stop = threading.Event()
    try:
        services.reconciler.run_forever(poll_seconds=interval, stop_event=stop)
    except KeyboardInterrupt:
        logger.info("Reconcile daemon exiting")
        stop.set()
    finally:
        services.stop()


if __name__ == "__main__":
    main()
