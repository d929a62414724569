from __future__ import annotations

import hashlib

from app.verification.model import ReceiptFields


def _date_only(date_iso: str) -> str:
    return (date_iso or "").strip().split("T", 1)[0]


def _sha256(canonical: str) -> str:
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def receipt_fingerprint(fields: ReceiptFields) -> str:
    """sha256(lower(merchant) | date | amount-in-minor-units)"""
    merchant = (fields.merchant or "").strip().lower()
    return _sha256(f"{merchant}|{_date_only(fields.date_iso)}|{int(fields.amount_minor)}")


def fuzzy_fingerprint(fields: ReceiptFields) -> str:
    """Amount-insensitive variant: absorbs OCR drift in the total."""
    merchant = (fields.merchant or "").strip().lower()
    return _sha256(f"{merchant}|{_date_only(fields.date_iso)}")


def text_hash(text: str) -> str:
    return _sha256(text or "")
