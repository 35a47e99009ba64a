"""
Tests for two-stage ledger validation.
"""

import datetime as dt
from decimal import Decimal

import pytest

from fuelcharge.errors import ValidationError
from fuelcharge.models.ledger import (
    AccountDraft,
    InvoiceDraft,
    LineItem,
    TransactionDraft,
    TransactionType,
    ValidationIssue,
)
from fuelcharge.validation import LedgerValidator, describe_issues


@pytest.fixture
def validator():
    return LedgerValidator()


class TestAccountValidation:

    def test_valid_account(self, validator):
        draft = AccountDraft(name="Hansen Farms", email="office@hansenfarms.com", credit_limit=Decimal("500"))
        assert validator.validate_account(draft) == []

    def test_missing_name_and_email(self, validator):
        """Test that every problem is reported at once."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_account(AccountDraft(name="  ", email=None))

        assert set(exc_info.value.fields) == {"name", "email"}

    def test_bad_email(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_account(AccountDraft(name="Hansen Farms", email="hansenfarms.com"))

        assert exc_info.value.fields == ["email"]

    def test_negative_credit_limit(self, validator):
        with pytest.raises(ValidationError):
            validator.validate_account(
                AccountDraft(name="Hansen Farms", email="office@hansenfarms.com", credit_limit=Decimal("-1"))
            )

    def test_credit_limit_beyond_storable_range(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_account(
                AccountDraft(name="Hansen Farms", email="office@hansenfarms.com", credit_limit=Decimal("1e30"))
            )

        assert exc_info.value.fields == ["credit_limit"]
        assert exc_info.value.issues[0].issue_type == "out_of_range"


class TestInvoiceValidation:

    def test_due_before_issue(self, validator):
        draft = InvoiceDraft(
            account_id="ACC-1",
            date=dt.date(2026, 3, 10),
            due_date=dt.date(2026, 3, 1),
            items=[LineItem(description="Diesel", price=Decimal("10"))],
        )

        with pytest.raises(ValidationError) as exc_info:
            validator.validate_invoice(draft)

        assert exc_info.value.fields == ["due_date"]

    def test_tax_out_of_range(self, validator):
        draft = InvoiceDraft(
            account_id="ACC-1",
            tax_rate=Decimal("101"),
            items=[LineItem(description="Diesel", price=Decimal("10"))],
        )

        with pytest.raises(ValidationError):
            validator.validate_invoice(draft)

    def test_future_date_is_only_a_warning(self, validator):
        draft = InvoiceDraft(
            account_id="ACC-1",
            date=dt.date.today() + dt.timedelta(days=30),
            items=[LineItem(description="Diesel", price=Decimal("10"))],
        )

        warnings = validator.validate_invoice(draft)

        assert [w.issue_type for w in warnings] == ["future_date"]

    def test_no_tax_rate_is_accepted(self, validator):
        """Test that a draft without a tax rate leaves the rate to the station."""
        draft = InvoiceDraft(account_id="ACC-1", items=[LineItem(description="Diesel", price=Decimal("10"))])

        assert draft.tax_rate is None
        assert validator.validate_invoice(draft) == []

    def test_item_price_beyond_storable_range(self, validator):
        draft = InvoiceDraft(
            account_id="ACC-1",
            items=[LineItem(description="Diesel", price=Decimal("1e30"))],
        )

        with pytest.raises(ValidationError) as exc_info:
            validator.validate_invoice(draft)

        assert exc_info.value.fields == ["items[0].price"]

    def test_total_beyond_storable_range(self, validator):
        """Test that items fine on their own can still add up past the limit."""
        draft = InvoiceDraft(
            account_id="ACC-1",
            tax_rate=Decimal("10"),
            items=[LineItem(description="Diesel", quantity=Decimal("1000"), price=Decimal("9999999"))],
        )

        with pytest.raises(ValidationError) as exc_info:
            validator.validate_invoice(draft)

        assert [i.issue_type for i in exc_info.value.issues] == ["out_of_range"]

    def test_total_rounding_to_zero(self, validator):
        draft = InvoiceDraft(
            account_id="ACC-1",
            items=[LineItem(description="Air", quantity=Decimal("0.001"), price=Decimal("1"))],
        )

        with pytest.raises(ValidationError) as exc_info:
            validator.validate_invoice(draft)

        assert exc_info.value.fields == ["items"]


class TestTransactionValidation:

    def test_missing_amount(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_transaction(TransactionDraft(account_id="ACC-1", type=TransactionType.FUEL))

        assert exc_info.value.fields == ["amount"]

    def test_non_finite_amount(self, validator):
        with pytest.raises(ValidationError):
            validator.validate_transaction(
                TransactionDraft(account_id="ACC-1", amount=Decimal("NaN"))
            )

    def test_bad_items_only_warn(self, validator):
        """Test that transaction items are informational."""
        draft = TransactionDraft(
            account_id="ACC-1",
            amount=Decimal("12.00"),
            items=[LineItem(description="", price=Decimal("0"))],
        )

        warnings = validator.validate_transaction(draft)

        assert {w.field for w in warnings} == {"items[0].description", "items[0].price"}
        assert all(w.severity == "warning" for w in warnings)

    @pytest.mark.parametrize("amount", ["0.004", "0.0049"])
    def test_amount_rounding_to_zero(self, validator, amount):
        """Test that the amount is checked as it will be stored, to the cent."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_transaction(TransactionDraft(account_id="ACC-1", amount=Decimal(amount)))

        assert exc_info.value.fields == ["amount"]

    def test_half_cent_rounds_up(self, validator):
        assert validator.validate_transaction(TransactionDraft(account_id="ACC-1", amount=Decimal("0.005"))) == []

    def test_amount_beyond_storable_range(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_transaction(TransactionDraft(account_id="ACC-1", amount=Decimal("1e30")))

        assert exc_info.value.issues[0].issue_type == "out_of_range"

    def test_largest_storable_amount(self, validator):
        draft = TransactionDraft(account_id="ACC-1", amount=Decimal("9999999999.99"))
        assert validator.validate_transaction(draft) == []


class TestDescribeIssues:

    def test_no_issues(self):
        assert describe_issues([]) == "All checks passed."

    def test_errors_before_warnings(self):
        text = describe_issues([
            ValidationIssue(field="date", issue_type="future_date", message="Date is in the future", severity="warning"),
            ValidationIssue(field="amount", issue_type="missing", message="Transaction amount is required"),
        ])

        assert text.index("Please fix") < text.index("Please double-check")
        assert "Transaction amount is required" in text
