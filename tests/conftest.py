# tests/conftest.py

import os

# settings require DATABASE_URL; the suite never opens it unless TEST_DATABASE_URL is set
os.environ.setdefault("DATABASE_URL", os.getenv("TEST_DATABASE_URL", "postgresql://localhost:5432/questpay_test"))

import pytest
from fastapi.testclient import TestClient

from services import metrics
from tests import fakes

ROUTE_MODULES = [
    "routes.jobs",
    "routes.submissions",
    "routes.payouts",
    "routes.admin",
    "routes.metrics",
]

ADMIN_KEY = "test-admin-key-123"


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def store(monkeypatch) -> fakes.FakeStore:
    """Fresh in-memory pipeline tables wired into every repository module."""
    return fakes.install(monkeypatch)


@pytest.fixture()
def conn_factory(store):
    return store.transaction


@pytest.fixture()
def client(monkeypatch, store) -> TestClient:
    import importlib

    from main import app
    from settings import settings

    for name in ROUTE_MODULES:
        monkeypatch.setattr(importlib.import_module(name), "get_conn", store.transaction)
    monkeypatch.setattr(importlib.import_module("routes.admin"), "list_audit_events", store.list_audit_events)
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)

    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture()
def admin_headers() -> dict:
    return {"X-Admin-API-Key": ADMIN_KEY, "X-Admin-Actor": "ops-alice"}
