# app/providers/factory.py
from __future__ import annotations

from app.providers.authorizer import PolicySpendAuthorizer
from app.providers.extractor import CachingFieldExtractor, OcrServiceClient, SqlReceiptCache, load_fixtures
from app.providers.transfer import HttpTransferRail, SimulatedTransferRail
from settings import settings


def get_extractor() -> CachingFieldExtractor:
    ocr = None
    if settings.OCR_SERVICE_URL:
        ocr = OcrServiceClient(
            base_url=settings.OCR_SERVICE_URL,
            api_key=settings.OCR_SERVICE_API_KEY,
            timeout_s=settings.EXTERNAL_CALL_TIMEOUT_S,
        )
    return CachingFieldExtractor(
        cache=SqlReceiptCache(),
        fixtures=load_fixtures(settings.OCR_FIXTURES_PATH),
        ocr=ocr,
        demo_mode=settings.DEMO_MODE,
    )


def get_authorizer() -> PolicySpendAuthorizer:
    return PolicySpendAuthorizer(timezone_name=settings.RISK_TIMEZONE)


def get_transfer_rail():
    # DEMO_MODE always simulates, whatever TRANSFER_MODE says
    if settings.DEMO_MODE or settings.TRANSFER_MODE == "simulated":
        return SimulatedTransferRail()
    return HttpTransferRail(
        base_url=settings.TRANSFER_RAIL_URL,
        api_key=settings.TRANSFER_RAIL_API_KEY,
        timeout_s=settings.EXTERNAL_CALL_TIMEOUT_S,
    )
