"""
Tests for the balance accounting rules.

These are pure functions, so no store is involved.
"""

import datetime as dt
from decimal import Decimal

import pytest

from fuelcharge.ledger.rules import (
    BALANCE_FIELD,
    invoice_amount,
    invoice_created_delta,
    invoice_paid_delta,
    items_subtotal,
    transaction_delta,
)
from fuelcharge.models.ledger import (
    Collection,
    Invoice,
    LineItem,
    Transaction,
    TransactionType,
)
from fuelcharge.services.storage.interface import Increment, apply_increment


def make_invoice(amount: str) -> Invoice:
    return Invoice(
        id="INV-TEST0001",
        account_id="ACC-TEST0001",
        date=dt.date(2026, 3, 1),
        due_date=dt.date(2026, 3, 16),
        amount=Decimal(amount),
    )


def make_transaction(transaction_type: TransactionType, amount: str) -> Transaction:
    return Transaction(
        id="TX-TEST0001",
        account_id="ACC-TEST0001",
        date=dt.date(2026, 3, 1),
        type=transaction_type,
        amount=Decimal(amount),
    )


class TestInvoiceAmount:

    def test_subtotal_of_extended_prices(self):
        """Test that the subtotal sums quantity times price, rounded once."""
        items = [
            LineItem(description="Unleaded", quantity=Decimal("10.5"), price=Decimal("3.499")),
            LineItem(description="Coffee", quantity=Decimal("2"), price=Decimal("1.25")),
        ]
        # 36.7395 + 2.50
        assert items_subtotal(items) == Decimal("39.24")

    def test_tax_added_in_percent(self):
        """Test that tax rate is a percentage of the subtotal."""
        items = [LineItem(description="Diesel", quantity=Decimal("1"), price=Decimal("200.00"))]
        assert invoice_amount(items, Decimal("7.25")) == Decimal("214.50")

    def test_zero_tax(self):
        items = [LineItem(description="Diesel", quantity=Decimal("1"), price=Decimal("99.99"))]
        assert invoice_amount(items, Decimal("0")) == Decimal("99.99")


class TestBalanceDeltas:

    def test_invoice_created_adds_amount(self):
        """Test that creating an invoice is a plain +amount increment."""
        op = invoice_created_delta(make_invoice("100.00"))

        assert op.collection == Collection.ACCOUNTS
        assert op.id == "ACC-TEST0001"
        assert op.field == BALANCE_FIELD
        assert op.delta == Decimal("100.00")
        assert op.floor is None

    def test_invoice_paid_subtracts_with_floor(self):
        """Test that paying an invoice subtracts its amount, floored at zero."""
        op = invoice_paid_delta(make_invoice("100.00"))

        assert op.delta == Decimal("-100.00")
        assert op.floor == Decimal("0")

    @pytest.mark.parametrize("transaction_type,expected", [
        (TransactionType.FUEL, Decimal("45.50")),
        (TransactionType.STORE, Decimal("45.50")),
        (TransactionType.PAYMENT, Decimal("-45.50")),
    ])
    def test_transaction_sign_by_type(self, transaction_type, expected):
        """Test that charges add and payments subtract."""
        op = transaction_delta(make_transaction(transaction_type, "45.50"))

        assert op.delta == expected
        assert op.floor is None


class TestApplyIncrement:

    def test_plain_delta(self):
        op = Increment(collection=Collection.ACCOUNTS, id="A", field=BALANCE_FIELD, delta=Decimal("12.00"))
        assert apply_increment(Decimal("45.50"), op) == Decimal("57.50")

    def test_floor_clamps(self):
        """Test that the floor clamps instead of failing."""
        op = invoice_paid_delta(make_invoice("100.00"))
        assert apply_increment(Decimal("20.00"), op) == Decimal("0")

    def test_floor_not_hit(self):
        op = invoice_paid_delta(make_invoice("100.00"))
        assert apply_increment(Decimal("160.00"), op) == Decimal("60.00")

    def test_already_negative_balance_is_raised_to_floor(self):
        """Test that an inconsistent negative balance still ends at the floor."""
        op = invoice_paid_delta(make_invoice("10.00"))
        assert apply_increment(Decimal("-5.00"), op) == Decimal("0")
