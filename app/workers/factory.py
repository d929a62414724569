# app/workers/factory.py
from __future__ import annotations

from app.payouts.executor import PayoutExecutor
from app.providers.factory import get_authorizer, get_extractor, get_transfer_rail
from app.risk.engine import RiskConfig
from app.workers.pipeline import Pipeline
from app.workers.worker_loop import WorkerScheduler
from settings import settings


def build_pipeline() -> Pipeline:
    executor = PayoutExecutor(
        authorizer=get_authorizer(),
        rail=get_transfer_rail(),
        timeout_s=settings.EXTERNAL_CALL_TIMEOUT_S,
        retry_attempts=settings.PAYOUT_RETRY_ATTEMPTS,
        base_delay=settings.PAYOUT_RETRY_BASE_DELAY_S,
        max_delay=settings.PAYOUT_RETRY_MAX_DELAY_S,
    )
    return Pipeline(
        extractor=get_extractor(),
        executor=executor,
        risk_config=RiskConfig.from_settings(),
        approval_threshold=settings.RISK_APPROVAL_THRESHOLD,
        receipts_dir=settings.RECEIPTS_DIR,
        demo_mode=settings.DEMO_MODE,
        timeout_s=settings.EXTERNAL_CALL_TIMEOUT_S,
        retry_attempts=settings.PAYOUT_RETRY_ATTEMPTS,
        base_delay=settings.PAYOUT_RETRY_BASE_DELAY_S,
        max_delay=settings.PAYOUT_RETRY_MAX_DELAY_S,
    )


def build_scheduler() -> WorkerScheduler:
    return WorkerScheduler(
        pipeline=build_pipeline(),
        concurrency=settings.WORKER_CONCURRENCY,
        tick_seconds=settings.WORKER_TICK_SECONDS,
        stale_seconds=settings.WORKER_STALE_SECONDS,
        max_attempts=settings.JOB_MAX_ATTEMPTS,
    )
