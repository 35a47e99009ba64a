"""
Core Ledger Models for FuelCharge

These models define the strict schemas for accounts, invoices and
transactions. They are designed to:
1. Enforce type safety at runtime
2. Keep money as Decimal end to end (never float)
3. Be serializable to plain JSON-compatible records for either store
4. Separate boundary input (drafts) from stored records

DESIGN DECISION: Drafts are deliberately loose (most fields optional) so
that missing input is reported by the ledger validator as a
ValidationError with every issue listed, instead of failing on the
first pydantic error.
"""

import datetime as dt
import secrets
import string
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


CENTS = Decimal("0.01")

# Largest amount the ledger columns hold (NUMERIC(12, 2))
MAX_AMOUNT = Decimal("9999999999.99")


def quantize_money(value: Decimal) -> Decimal:
    """Round a money amount to cents, half up."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


Money = Annotated[Decimal, AfterValidator(quantize_money)]


_ID_ALPHABET = string.ascii_uppercase + string.digits


def generate_id(prefix: str, length: int = 8) -> str:
    """Generate a record id like ``INV-7KQ2M9XA``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}"


# =============================================================================
# ENUMS
# =============================================================================

class Collection(str, Enum):
    """The three entity collections of the ledger store."""
    ACCOUNTS = "accounts"
    INVOICES = "invoices"
    TRANSACTIONS = "transactions"


class InvoiceStatus(str, Enum):
    """
    Invoice status.

    Only UNPAID and PAID are ever stored. OVERDUE is a read-time
    label derived from UNPAID + due date in the past.
    """
    UNPAID = "UNPAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class TransactionType(str, Enum):
    """Kind of house-account transaction."""
    FUEL = "FUEL"
    STORE = "STORE"
    PAYMENT = "PAYMENT"


# =============================================================================
# LINE ITEMS
# =============================================================================

class LineItem(BaseModel):
    """
    One billable entry on an invoice or transaction.

    Fuel is sold by the gallon at three-decimal unit prices, so
    quantity and price are not rounded here; only totals are.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(
        default="",
        max_length=200,
        description="What was sold"
    )
    quantity: Decimal = Field(
        default=Decimal("1"),
        description="Count or volume"
    )
    price: Decimal = Field(
        default=Decimal("0"),
        description="Unit price"
    )

    @property
    def extended_price(self) -> Decimal:
        return self.quantity * self.price


# =============================================================================
# STORED RECORDS
# =============================================================================

class Account(BaseModel):
    """
    A house account.

    CRITICAL: current_balance is only ever changed through the ledger
    service's atomic operations. It is never recomputed from history.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=64)
    credit_limit: Money = Field(
        default=Decimal("0"),
        ge=0,
        description="Advisory ceiling; never enforced on write"
    )
    current_balance: Money = Field(
        default=Decimal("0"),
        description="Signed amount owed by the customer"
    )
    created_at: dt.datetime

    @property
    def available_credit(self) -> Decimal:
        return self.credit_limit - self.current_balance

    @property
    def is_over_limit(self) -> bool:
        return self.credit_limit > 0 and self.current_balance > self.credit_limit


class Invoice(BaseModel):
    """
    A charge invoice.

    amount is computed from the items (plus tax) when the invoice is
    created and then frozen; later edits to pricing never touch it.
    """

    id: str
    account_id: str
    date: dt.date
    due_date: dt.date
    amount: Money
    status: InvoiceStatus = InvoiceStatus.UNPAID
    items: list[LineItem] = Field(default_factory=list)
    email_sent: bool = False

    @field_validator('status')
    @classmethod
    def status_is_storable(cls, v: InvoiceStatus) -> InvoiceStatus:
        """OVERDUE is derived; a stored record can never carry it."""
        if v == InvoiceStatus.OVERDUE:
            raise ValueError("OVERDUE is a derived status and cannot be stored")
        return v


class Transaction(BaseModel):
    """An immutable charge or payment against an account."""

    id: str
    account_id: str
    date: dt.date
    type: TransactionType
    amount: Money = Field(..., gt=0, description="Positive magnitude")
    description: Optional[str] = Field(default=None, max_length=500)
    items: list[LineItem] = Field(default_factory=list)
    invoice_id: Optional[str] = None


# =============================================================================
# DRAFTS (boundary input)
# =============================================================================

class AccountDraft(BaseModel):
    """Input for opening a new house account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    credit_limit: Decimal = Decimal("0")


class InvoiceDraft(BaseModel):
    """
    Input for a new invoice.

    date defaults to today, due_date to date + payment terms and
    tax_rate to the station rate when the service stores the invoice.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[str] = None
    date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None
    items: list[LineItem] = Field(default_factory=list)
    tax_rate: Optional[Decimal] = Field(
        default=None,
        description="Tax in percent, applied to the item subtotal; station rate if unset"
    )


class TransactionDraft(BaseModel):
    """Input for a new transaction (manual entry or scanned receipt)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[str] = None
    date: Optional[dt.date] = None
    type: TransactionType = TransactionType.STORE
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    items: list[LineItem] = Field(default_factory=list)
    invoice_id: Optional[str] = None


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


def to_record(model: BaseModel) -> dict[str, Any]:
    """
    Convert a model to a store record.

    Records are JSON-compatible: money as decimal strings, dates as
    ISO strings, enums as their values.
    """
    return model.model_dump(mode="json")
