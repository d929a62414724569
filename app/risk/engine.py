# app/risk/engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from settings import settings, csv_setting
from app.risk.fingerprint import fuzzy_fingerprint, receipt_fingerprint
from app.risk.quality import score_justification
from app.submissions.model import Submission
from app.verification.model import ReceiptFields, RiskTrace
from services.metrics import increment_risk_flag

logger = logging.getLogger("questpay.risk")

DUPLICATE_FLAG = "duplicate_receipt"
FUZZY_FLAG = "fuzzy_duplicate"
VELOCITY_FLAG = "device_velocity"

FLAGGED_RISK = 0.5
MAX_RISK = 1.0


class RiskLookups(Protocol):
    """History queries the engine needs; the SQL version lives in app.risk.repository."""

    def find_exact_duplicate(self, *, wallet: str, exclude_id: UUID, fingerprint: str) -> Optional[str]: ...

    def find_fuzzy_duplicate(
        self, *, wallet: str, exclude_id: UUID, fingerprint: str, since: datetime
    ) -> Optional[str]: ...

    def count_device_approvals(
        self, *, device_fingerprint: str, quest_id: UUID, exclude_id: UUID, since: datetime
    ) -> int: ...


@dataclass(frozen=True)
class RiskConfig:
    device_velocity_cap: int = 3
    fuzzy_window_days: int = 7
    timezone_name: str = "UTC"
    quality_enabled: bool = False
    quality_min_words: int = 12
    quality_short_words: int = 20
    banned_phrases: Sequence[str] = field(default_factory=tuple)
    keywords: Sequence[str] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls) -> "RiskConfig":
        return cls(
            device_velocity_cap=settings.RISK_DEVICE_VELOCITY_CAP,
            fuzzy_window_days=settings.RISK_FUZZY_WINDOW_DAYS,
            timezone_name=settings.RISK_TIMEZONE,
            quality_enabled=settings.ENABLE_QUALITY_SCORING,
            quality_min_words=settings.QUALITY_MIN_WORDS,
            quality_short_words=settings.QUALITY_SHORT_WORDS,
            banned_phrases=tuple(csv_setting(settings.QUALITY_BANNED_PHRASES)),
            keywords=tuple(csv_setting(settings.QUALITY_KEYWORDS)),
        )


def local_midnight(now: datetime, tz_name: str) -> datetime:
    local = now.astimezone(ZoneInfo(tz_name))
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def assess_risk(
    submission: Submission,
    fields: ReceiptFields,
    lookups: RiskLookups,
    *,
    config: Optional[RiskConfig] = None,
    now: Optional[datetime] = None,
) -> RiskTrace:
    config = config or RiskConfig.from_settings()
    now = now or datetime.now(timezone.utc)

    exact_fp = receipt_fingerprint(fields)
    fuzzy_fp = fuzzy_fingerprint(fields)

    # 1. exact duplicate for this wallet: strongest reject, nothing else matters
    duplicate_of = lookups.find_exact_duplicate(
        wallet=submission.wallet,
        exclude_id=submission.id,
        fingerprint=exact_fp,
    )
    if duplicate_of is not None:
        logger.info("submission=%s duplicate of %s", submission.id, duplicate_of)
        increment_risk_flag(DUPLICATE_FLAG)
        return RiskTrace(
            risk_score=MAX_RISK,
            flags=[DUPLICATE_FLAG],
            reasons=["Exact duplicate receipt found"],
            receipt_fingerprint=exact_fp,
            fuzzy_fingerprint=fuzzy_fp,
            duplicate_of=str(duplicate_of),
        )

    risk_score = 0.0
    flags: list[str] = []
    reasons: list[str] = []

    # 2. same merchant + day, any amount, within the trailing window
    similar_to = lookups.find_fuzzy_duplicate(
        wallet=submission.wallet,
        exclude_id=submission.id,
        fingerprint=fuzzy_fp,
        since=now - timedelta(days=config.fuzzy_window_days),
    )
    if similar_to is not None:
        flags.append(FUZZY_FLAG)
        reasons.append("Similar receipt pattern detected")
        risk_score = max(risk_score, FLAGGED_RISK)

    # 3. per-device approvals on this quest since local midnight
    device_approvals = lookups.count_device_approvals(
        device_fingerprint=submission.device_fingerprint,
        quest_id=submission.quest_id,
        exclude_id=submission.id,
        since=local_midnight(now, config.timezone_name),
    )
    if device_approvals >= config.device_velocity_cap:
        flags.append(VELOCITY_FLAG)
        reasons.append(f"Device velocity limit exceeded: {device_approvals} approvals today")
        risk_score = max(risk_score, FLAGGED_RISK)

    quality_score = None
    quality_flags: list[str] = []
    if config.quality_enabled:
        quality = score_justification(
            submission.justification_text,
            min_words=config.quality_min_words,
            short_words=config.quality_short_words,
            banned_phrases=config.banned_phrases,
            keywords=config.keywords,
        )
        quality_score, quality_flags = quality.score, list(quality.flags)

    for flag in flags:
        increment_risk_flag(flag)

    return RiskTrace(
        risk_score=min(MAX_RISK, risk_score),
        flags=flags,
        reasons=reasons,
        receipt_fingerprint=exact_fp,
        fuzzy_fingerprint=fuzzy_fp,
        device_approvals_today=device_approvals,
        quality_score=quality_score,
        quality_flags=quality_flags,
    )
