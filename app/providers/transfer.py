# app/providers/transfer.py
from __future__ import annotations

import hashlib
import logging
import time
from typing import Callable
from uuid import UUID

from app.errors import PipelineError, PolicyViolation, TransientFailure
from app.providers.base import TransferResult
from app.providers.http import HttpClient, is_retryable_http, redact_headers

logger = logging.getLogger("questpay.transfer")


def simulated_transfer_ref(submission_id: UUID | str, timestamp_ms: int) -> str:
    digest = hashlib.sha256(f"{submission_id}_{timestamp_ms}".encode("utf-8")).hexdigest()
    return f"0x{digest}"


class SimulatedTransferRail:
    """Demo rail: no money moves, the reference is a hash of (submission, time)."""

    def __init__(self, clock_ms: Callable[[], int] | None = None):
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    def send(self, *, submission_id: UUID, wallet: str, amount: int, currency: str) -> TransferResult:
        ref = simulated_transfer_ref(submission_id, self._clock_ms())
        return TransferResult(transfer_ref=ref, synthetic=True, response={"simulated": True})


class HttpTransferRail:
    """
    Real rail behind an HTTP API. The submission id is sent as the idempotency
    key so a retried call after a lost response can't pay twice.
    """

    def __init__(self, *, base_url: str, api_key: str, http: HttpClient | None = None, timeout_s: float = 20.0):
        if not base_url:
            raise PipelineError("TRANSFER_RAIL_URL is required when TRANSFER_MODE=real")
        if not api_key:
            raise PipelineError("TRANSFER_RAIL_API_KEY is required when TRANSFER_MODE=real")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http = http or HttpClient(timeout_s=timeout_s)

    def _headers(self, idempotency_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }

    def send(self, *, submission_id: UUID, wallet: str, amount: int, currency: str) -> TransferResult:
        body = {
            "to": wallet,
            "amount_minor": int(amount),
            "currency": currency,
            "reference": str(submission_id),
        }
        url = f"{self.base_url}/v1/transfers"
        headers = self._headers(str(submission_id))
        logger.debug("POST %s headers=%s", url, redact_headers(headers))
        resp = self.http.post(url, headers=headers, json_body=body)

        if is_retryable_http(resp.status_code):
            raise TransientFailure(f"Transfer rail returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            detail = (resp.json or {}).get("error") if isinstance(resp.json, dict) else None
            raise PolicyViolation(f"Transfer rejected: HTTP {resp.status_code} {detail or resp.text[:200]}")

        payload = resp.json if isinstance(resp.json, dict) else {}
        ref = payload.get("transfer_ref") or payload.get("tx_hash") or payload.get("id")
        if not ref:
            raise PipelineError("Transfer rail response missing transfer reference")

        logger.info("transfer sent submission=%s ref=%s", submission_id, ref)
        return TransferResult(transfer_ref=str(ref), synthetic=False, response=payload)
