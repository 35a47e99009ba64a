"""
Shared fixtures.

Ledger tests run against both store backends: a SQLite file database
(a file, not ``:memory:``, so every worker thread sees the same data)
and the document store over the in-memory client.
"""

import datetime as dt
from decimal import Decimal

import pytest

from fuelcharge.audit import AuditLogger
from fuelcharge.config import AppSettings, DatabaseSettings, StationSettings
from fuelcharge.ledger import LedgerService
from fuelcharge.models.ledger import LineItem
from fuelcharge.services.storage import (
    DocumentLedgerStore,
    InMemoryDocumentClient,
    SqlLedgerStore,
)


@pytest.fixture
def sqlite_settings(tmp_path):
    return DatabaseSettings(url=f"sqlite:///{tmp_path / 'ledger.db'}")


@pytest.fixture
async def sql_store(sqlite_settings):
    store = SqlLedgerStore(settings=sqlite_settings)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
async def document_store():
    store = DocumentLedgerStore(
        InMemoryDocumentClient(),
        max_attempts=50,
        max_backoff_seconds=0.02,
    )
    await store.open()
    yield store
    await store.close()


@pytest.fixture(params=["sql", "document"])
async def store(request, sqlite_settings):
    """Each ledger test runs once per backend."""
    if request.param == "sql":
        store = SqlLedgerStore(settings=sqlite_settings)
    else:
        store = DocumentLedgerStore(
            InMemoryDocumentClient(),
            max_attempts=50,
            max_backoff_seconds=0.02,
        )
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def station():
    return StationSettings(
        station_name="Ruthton Express",
        support_email="billing@ruthtonexpress.com",
        payment_terms=15,
        # Tax-free, so invoice amounts equal their item totals
        tax_rate=Decimal("0"),
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="billing",
        smtp_pass="secret",
    )


@pytest.fixture
def app_settings():
    return AppSettings(
        risk_overdue_amount_threshold=Decimal("500"),
        risk_overdue_count_threshold=3,
    )


@pytest.fixture
def audit_events():
    """Every audit event the service emits, in order."""
    return []


@pytest.fixture
def service(store, audit_events, station):
    return LedgerService(
        store,
        audit_logger=AuditLogger(sink=audit_events.append),
        station=station,
    )


@pytest.fixture
async def account(service):
    return await service.create_account({
        "name": "Hansen Farms",
        "email": "office@hansenfarms.com",
        "phone": "507-555-0142",
        "credit_limit": "1000.00",
    })


@pytest.fixture
def today():
    return dt.date(2026, 3, 15)


@pytest.fixture
def items_for():
    """Builds one line item worth exactly the given amount."""
    def build(amount: str) -> list[LineItem]:
        return [LineItem(description="House account charges", quantity=Decimal("1"), price=Decimal(amount))]
    return build
