# scripts/run_worker.py
from __future__ import annotations

import logging
import signal

from app.workers.factory import build_scheduler
from db import close_pool, init_pool
from services.observability import configure_logging
from settings import settings


logger = logging.getLogger("questpay.worker")


def main() -> None:
    configure_logging()
    init_pool()
    scheduler = build_scheduler()

    def _handle_signal(signum, _frame):
        logger.info("signal %s received, stopping after current ticks", signum)
        scheduler.request_stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    logger.info(
        "worker starting concurrency=%s tick=%ss demo_mode=%s stale_after=%ss",
        settings.WORKER_CONCURRENCY,
        settings.WORKER_TICK_SECONDS,
        settings.DEMO_MODE,
        settings.WORKER_STALE_SECONDS,
    )
    try:
        scheduler.run_forever()
    finally:
        close_pool()
        logger.info("worker exited")


if __name__ == "__main__":
    main()
