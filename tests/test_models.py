"""
Tests for FuelCharge models

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (with mocked external services)
3. No real API calls in tests (use mocks)
"""

import datetime as dt
import re
from decimal import Decimal
from uuid import uuid4

import pytest

from fuelcharge.audit import AuditLogger
from fuelcharge.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from fuelcharge.models.ledger import (
    Account,
    Invoice,
    InvoiceStatus,
    LineItem,
    Transaction,
    TransactionType,
    generate_id,
    quantize_money,
    to_record,
)
from fuelcharge.models.receipt import ScannedReceipt


class TestMoney:
    """Tests for money handling."""

    def test_quantize_rounds_half_up(self):
        """Test that amounts round to cents, half up."""
        assert quantize_money(Decimal("10.005")) == Decimal("10.01")
        assert quantize_money(Decimal("10.004")) == Decimal("10.00")
        assert quantize_money(Decimal("7")) == Decimal("7.00")

    def test_generate_id_format(self):
        """Test that ids are prefix plus 8 uppercase alphanumerics."""
        invoice_id = generate_id("INV")
        assert re.fullmatch(r"INV-[A-Z0-9]{8}", invoice_id)

    def test_generate_id_unique(self):
        """Test that ids do not repeat."""
        assert len({generate_id("TX") for _ in range(500)}) == 500


class TestLedgerModels:
    """Tests for stored ledger records."""

    def test_line_item_extended_price(self):
        """Test that extended price is quantity times unit price, unrounded."""
        item = LineItem(description="Unleaded", quantity=Decimal("10.5"), price=Decimal("3.499"))
        assert item.extended_price == Decimal("36.7395")

    def test_line_item_strips_whitespace(self):
        """Test that whitespace is stripped from descriptions."""
        item = LineItem(description="  Diesel  ", price=Decimal("3.89"))
        assert item.description == "Diesel"

    def test_account_money_quantized(self):
        """Test that account money fields are stored to the cent."""
        account = Account(
            id="ACC-TEST0001",
            name="Hansen Farms",
            email="office@hansenfarms.com",
            credit_limit=Decimal("1000"),
            current_balance=Decimal("12.345"),
            created_at=dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc),
        )
        assert account.credit_limit == Decimal("1000.00")
        assert account.current_balance == Decimal("12.35")

    def test_account_over_limit(self):
        """Test the advisory over-limit check."""
        account = Account(
            id="ACC-TEST0001",
            name="Hansen Farms",
            email="office@hansenfarms.com",
            credit_limit=Decimal("100"),
            current_balance=Decimal("150"),
            created_at=dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc),
        )
        assert account.is_over_limit
        assert account.available_credit == Decimal("-50.00")

    def test_zero_limit_is_never_exceeded(self):
        """Test that an account without a limit is never over it."""
        account = Account(
            id="ACC-TEST0001",
            name="Cash Only",
            email="cash@example.com",
            current_balance=Decimal("150"),
            created_at=dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc),
        )
        assert not account.is_over_limit

    def test_account_rejects_negative_limit(self):
        """Test that a negative credit limit is rejected."""
        with pytest.raises(ValueError):
            Account(
                id="ACC-TEST0001",
                name="Hansen Farms",
                email="office@hansenfarms.com",
                credit_limit=Decimal("-1"),
                created_at=dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc),
            )

    def test_invoice_cannot_store_overdue(self):
        """Test that OVERDUE is never a stored invoice status."""
        with pytest.raises(ValueError):
            Invoice(
                id="INV-TEST0001",
                account_id="ACC-TEST0001",
                date=dt.date(2026, 1, 1),
                due_date=dt.date(2026, 1, 16),
                amount=Decimal("10"),
                status=InvoiceStatus.OVERDUE,
            )

    def test_transaction_rejects_zero_amount(self):
        """Test that transaction amounts are positive magnitudes."""
        with pytest.raises(ValueError):
            Transaction(
                id="TX-TEST0001",
                account_id="ACC-TEST0001",
                date=dt.date(2026, 1, 1),
                type=TransactionType.PAYMENT,
                amount=Decimal("0"),
            )

    def test_to_record_is_json_compatible(self):
        """Test that records hold strings for money, dates and enums."""
        invoice = Invoice(
            id="INV-TEST0001",
            account_id="ACC-TEST0001",
            date=dt.date(2026, 1, 1),
            due_date=dt.date(2026, 1, 16),
            amount=Decimal("107.25"),
            items=[LineItem(description="Diesel", quantity=Decimal("1"), price=Decimal("100"))],
        )

        record = to_record(invoice)

        assert record["amount"] == "107.25"
        assert record["date"] == "2026-01-01"
        assert record["status"] == "UNPAID"
        assert record["email_sent"] is False
        assert record["items"][0]["description"] == "Diesel"
        assert Invoice.model_validate(record) == invoice


class TestScannedReceipt:
    """Tests for the receipt scan boundary model."""

    def test_accepts_camel_case_keys(self):
        """Test that the JSON keys the model is asked for are accepted."""
        receipt = ScannedReceipt.model_validate({
            "items": [{"description": "Unleaded", "quantity": 10.5, "price": 3.499}],
            "totalAmount": 36.74,
            "date": "2026-03-01",
            "storeName": "Ruthton Express",
            "isFuelTransaction": True,
        })
        assert receipt.total_amount == Decimal("36.74")
        assert receipt.store_name == "Ruthton Express"
        assert receipt.is_fuel_transaction
        assert receipt.date == dt.date(2026, 3, 1)

    def test_unreadable_date_is_missing(self):
        """Test that a date the model could not read becomes None."""
        receipt = ScannedReceipt.model_validate({"totalAmount": 5, "date": "unknown"})
        assert receipt.date is None

    def test_requires_positive_total(self):
        """Test that a receipt without a positive total is rejected."""
        with pytest.raises(ValueError):
            ScannedReceipt.model_validate({"items": [], "totalAmount": 0})

    def test_fuel_receipt_becomes_fuel_draft(self):
        """Test conversion of a fuel receipt into a FUEL transaction draft."""
        receipt = ScannedReceipt(
            total_amount=Decimal("36.7395"),
            is_fuel_transaction=True,
            items=[{"description": "Unleaded", "quantity": Decimal("10.5"), "price": Decimal("3.499")}],
        )

        draft = receipt.to_transaction_draft("ACC-TEST0001", today=dt.date(2026, 3, 15))

        assert draft.type == TransactionType.FUEL
        assert draft.amount == Decimal("36.74")
        assert draft.date == dt.date(2026, 3, 15)
        assert draft.description == "Fuel purchase"
        assert draft.items[0].description == "Unleaded"

    def test_store_receipt_uses_store_name(self):
        """Test that non-fuel receipts become STORE drafts named after the store."""
        receipt = ScannedReceipt(
            total_amount=Decimal("4.99"),
            store_name="Ruthton Express",
            date=dt.date(2026, 3, 2),
        )

        draft = receipt.to_transaction_draft("ACC-TEST0001")

        assert draft.type == TransactionType.STORE
        assert draft.description == "Ruthton Express"
        assert draft.date == dt.date(2026, 3, 2)


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.INVOICE_CREATED,
            entity_type="invoice",
            entity_id="INV-TEST0001",
            description="Invoice created",
        )
        assert event.severity == AuditSeverity.INFO
        assert event.timestamp.tzinfo is not None

    def test_audit_event_builder_transaction(self):
        """Test the transaction builder records the signed delta."""
        event = AuditEventBuilder.transaction_recorded(
            transaction_id="TX-TEST0001",
            account_id="ACC-TEST0001",
            transaction_type="PAYMENT",
            delta=Decimal("-30.00"),
        )
        assert event.event_type == AuditEventType.TRANSACTION_RECORDED
        assert event.details["balance_delta"] == "-30.00"

    def test_audit_event_builder_storage_failed(self):
        """Test the storage failure builder."""
        correlation_id = uuid4()
        event = AuditEventBuilder.storage_failed(
            operation="create_invoice",
            error_type="ConflictError",
            error_message="Gave up after 5 conflicting attempts",
            entity_id="INV-TEST0001",
            correlation_id=correlation_id,
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.error_code == "ConflictError"
        assert event.correlation_id == correlation_id

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEventBuilder.credit_limit_exceeded(
            account_id="ACC-TEST0001",
            balance=Decimal("1500.00"),
            credit_limit=Decimal("1000.00"),
        )

        log_dict = event.to_log_dict()

        assert log_dict["event_type"] == "credit_limit_exceeded"
        assert log_dict["severity"] == "warning"
        assert log_dict["entity_id"] == "ACC-TEST0001"


class TestAuditLogger:
    """Tests for the audit logger."""

    async def test_sink_receives_events(self):
        """Test that the sink gets every logged event."""
        received = []
        audit_logger = AuditLogger(sink=received.append)
        event = AuditEventBuilder.invoice_already_paid("INV-TEST0001")

        assert await audit_logger.log(event) is True
        assert received == [event]

    async def test_sink_failure_never_raises(self):
        """Test that a broken sink does not break the main flow."""
        def broken_sink(event):
            raise RuntimeError("disk full")

        audit_logger = AuditLogger(sink=broken_sink)

        assert await audit_logger.log(AuditEventBuilder.invoice_already_paid("INV-TEST0001")) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
