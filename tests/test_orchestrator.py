"""
Tests for the LedgerApi and its flows.

The mailer and the scanner are mocks; the ledger is real (document
store over the in-memory client).
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from fuelcharge.agents import ReceiptScanError
from fuelcharge.audit import AuditLogger
from fuelcharge.errors import NotFoundError, ValidationError
from fuelcharge.ledger import LedgerService
from fuelcharge.models.audit import AuditEventType
from fuelcharge.models.ledger import InvoiceStatus, TransactionType
from fuelcharge.models.receipt import ScannedReceipt
from fuelcharge.orchestrator import (
    InvoiceEmailFlow,
    LedgerApi,
    ReceiptScanFlow,
    create_app_components,
)
from fuelcharge.queries import DashboardQueries
from fuelcharge.services.notifications import NotificationError


@pytest.fixture
def mailer():
    mailer = MagicMock()
    mailer.send_invoice = AsyncMock(return_value=True)
    return mailer


@pytest.fixture
def scanner():
    scanner = MagicMock()
    scanner.scan = AsyncMock(return_value=ScannedReceipt(
        total_amount=Decimal("36.74"),
        is_fuel_transaction=True,
        items=[{"description": "Unleaded", "quantity": Decimal("10.5"), "price": Decimal("3.499")}],
    ))
    return scanner


@pytest.fixture
async def api(document_store, audit_events, station, app_settings, mailer, scanner):
    audit_logger = AuditLogger(sink=audit_events.append)
    service = LedgerService(document_store, audit_logger=audit_logger, station=station)
    return LedgerApi(
        service,
        receipt_flow=ReceiptScanFlow(scanner, service, audit_logger),
        email_flow=InvoiceEmailFlow(mailer, service, audit_logger),
        dashboard=DashboardQueries(app_settings),
    )


@pytest.fixture
async def invoice(api, items_for):
    account = await api.save_account({"name": "Hansen Farms", "email": "office@hansenfarms.com"})
    return await api.save_invoice({"account_id": account.id, "items": items_for("80.00"), "tax_rate": "0"})


def event_types(audit_events):
    return [event.event_type for event in audit_events]


class TestUpdateInvoiceStatus:

    async def test_paid(self, api, invoice):
        updated = await api.update_invoice_status(invoice.id, "PAID")

        assert updated.status == InvoiceStatus.PAID
        account = (await api.get_accounts())[0]
        assert account.current_balance == Decimal("0.00")

    async def test_unpaid_to_unpaid_is_noop(self, api, invoice):
        unchanged = await api.update_invoice_status(invoice.id, InvoiceStatus.UNPAID)

        assert unchanged.status == InvoiceStatus.UNPAID
        account = (await api.get_accounts())[0]
        assert account.current_balance == Decimal("80.00")

    async def test_overdue_cannot_be_stored(self, api, invoice):
        with pytest.raises(ValidationError):
            await api.update_invoice_status(invoice.id, "OVERDUE")

    async def test_paid_is_final(self, api, invoice):
        await api.update_invoice_status(invoice.id, "PAID")

        with pytest.raises(ValidationError):
            await api.update_invoice_status(invoice.id, "UNPAID")

    async def test_unknown_status(self, api, invoice):
        with pytest.raises(ValidationError) as exc_info:
            await api.update_invoice_status(invoice.id, "VOID")

        assert exc_info.value.fields == ["status"]


class TestSendInvoice:

    async def test_success_marks_email_sent(self, api, invoice, mailer, audit_events):
        assert await api.send_invoice(invoice.id) is True

        stored = (await api.get_invoices())[0]
        assert stored.email_sent
        mailer.send_invoice.assert_awaited_once()
        assert AuditEventType.INVOICE_EMAIL_SENT in event_types(audit_events)

    async def test_failure_leaves_flag_unset(self, api, invoice, mailer, audit_events):
        """Test that a refused email is not recorded as sent."""
        mailer.send_invoice.return_value = False

        assert await api.send_invoice(invoice.id) is False

        stored = (await api.get_invoices())[0]
        assert not stored.email_sent
        assert AuditEventType.INVOICE_EMAIL_FAILED in event_types(audit_events)

    async def test_unknown_invoice(self, api, mailer):
        with pytest.raises(NotFoundError):
            await api.send_invoice("INV-MISSING0")

        mailer.send_invoice.assert_not_awaited()

    async def test_not_configured(self, api):
        bare = LedgerApi(api.service)

        with pytest.raises(NotificationError):
            await bare.send_invoice("INV-MISSING0")


class TestReceiptScan:

    async def test_scan_then_record(self, api, invoice, audit_events):
        """Test that a scan is only a proposal until it is recorded."""
        receipt = await api.scan_receipt(b"jpeg-bytes")

        assert await api.get_transactions() == []
        assert AuditEventType.RECEIPT_SCANNED in event_types(audit_events)

        transaction = await api.record_scanned_receipt(receipt, invoice.account_id)

        assert transaction.type == TransactionType.FUEL
        assert transaction.amount == Decimal("36.74")
        account = (await api.get_accounts())[0]
        assert account.current_balance == Decimal("116.74")

    async def test_scan_failure_is_audited(self, api, scanner, audit_events):
        scanner.scan.side_effect = ReceiptScanError("Could not interpret receipt data")

        with pytest.raises(ReceiptScanError):
            await api.scan_receipt(b"jpeg-bytes")

        assert AuditEventType.RECEIPT_SCAN_FAILED in event_types(audit_events)

    async def test_not_configured(self, api):
        bare = LedgerApi(api.service)

        with pytest.raises(ReceiptScanError):
            await bare.scan_receipt(b"jpeg-bytes")


class TestReadSide:

    async def test_dashboard(self, api, invoice):
        stats = await api.get_dashboard()

        assert stats.total_receivables == Decimal("80.00")
        assert stats.active_accounts == 1

    async def test_account_search(self, api, invoice):
        await api.save_account({"name": "Zeller Grain", "email": "office@zeller.com"})

        assert [a.name for a in await api.get_accounts(search="hansen")] == ["Hansen Farms"]
        assert len(await api.get_accounts()) == 2

    async def test_health(self, api):
        assert await api.check_health() == {"status": "online", "database": "connected"}

    async def test_context_manager_opens_and_closes(self, document_store, station):
        api = LedgerApi(LedgerService(document_store, station=station))

        async with api:
            assert (await api.check_health())["database"] == "connected"

        assert (await api.check_health())["database"] == "unreachable"


class TestFactory:

    def test_components_without_scanner(self, sql_store):
        api = create_app_components(store=sql_store, use_scanner=False)

        assert api.service.store is sql_store
