"""
Test fixtures: an in-memory MongoDB (mongomock-motor) patched into every
module holding a `db` handle, plus fake e-sign / email collaborators.
"""

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from tests.factories import fake_collaborators, seed_users

DB_MODULES = [
    "config",
    "services.approval_gate",
    "services.credit_ledger",
    "services.investors",
    "services.invoice_generator",
    "services.lead_lifecycle",
    "services.purchase_orders",
    "services.sale_settlement",
    "services.settings",
    "services.signature_webhook",
    "routes.auth",
    "scheduler_service",
]


@pytest.fixture
def database(monkeypatch):
    """Fresh in-memory database per test"""
    client = AsyncMongoMockClient()
    db = client["zrs_crm_test"]
    for module in DB_MODULES:
        monkeypatch.setattr(f"{module}.db", db)
    return db


@pytest_asyncio.fixture
async def seeded(database):
    """Database with admins (Group A / Group B), managers"""
    await seed_users(database)
    return database


@pytest.fixture
def collaborators():
    return fake_collaborators()
