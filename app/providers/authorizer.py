# app/providers/authorizer.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from app.payouts import repository as payouts_repo
from app.providers.base import Authorization
from app.quests.model import SpendPolicy
from app.risk.engine import local_midnight

logger = logging.getLogger("questpay.authorizer")


class PolicySpendAuthorizer:
    """
    Re-checks a spend against the quest's policy using its own reads, so a
    caller bug upstream can't push a payout past the limits.
    """

    def __init__(self, *, timezone_name: str = "UTC", clock: Callable[[], datetime] | None = None):
        self.timezone_name = timezone_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def authorize(
        self,
        conn,
        *,
        policy: SpendPolicy,
        amount: int,
        wallet: str,
        quest_id: UUID,
        device_fingerprint: str,
        budget_remaining: int,
        merchant: Optional[str] = None,
    ) -> Authorization:
        if amount <= 0:
            return Authorization(False, "Amount must be positive")

        if budget_remaining < amount:
            return Authorization(False, "Insufficient quest budget")

        if policy.max_per_payout is not None and amount > policy.max_per_payout:
            return Authorization(False, f"Amount {amount} exceeds max_per_payout {policy.max_per_payout}")

        if policy.vendor_allow_list and merchant is not None:
            m = merchant.strip().lower()
            if not any(v.lower() in m or (m and m in v.lower()) for v in policy.vendor_allow_list):
                return Authorization(False, f'Vendor "{merchant}" not in allow list')

        since = local_midnight(self._clock(), self.timezone_name)

        if policy.max_per_day is not None:
            spent = payouts_repo.completed_spend_since(conn, quest_id=quest_id, since=since)
            if spent + amount > policy.max_per_day:
                return Authorization(False, f"Daily spend limit reached ({spent} of {policy.max_per_day})")

        velocity = policy.velocity
        if velocity.max_approvals_per_device_per_day is not None:
            paid = payouts_repo.completed_count_for_device_since(
                conn, quest_id=quest_id, device_fingerprint=device_fingerprint, since=since
            )
            if paid >= velocity.max_approvals_per_device_per_day:
                return Authorization(False, f"Device velocity limit reached ({paid} payouts today)")

        if velocity.max_payouts_per_wallet_per_day is not None:
            paid = payouts_repo.completed_count_for_wallet_since(conn, quest_id=quest_id, wallet=wallet, since=since)
            if paid >= velocity.max_payouts_per_wallet_per_day:
                return Authorization(False, f"Wallet velocity limit reached ({paid} payouts today)")

        return Authorization(True)
