"""
Invoice Lifecycle & Risk Aggregation

The stored status machine is tiny: UNPAID -> PAID, once. OVERDUE is a
label computed at read time from UNPAID + a past due date. It is never
persisted, so it can never drift from the due date.

Everything in this module is pure: invoices and "today" in, a result
out. Nothing is cached; callers recompute on every request.
"""

import datetime as dt
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from fuelcharge.ledger.rules import invoice_amount, items_subtotal
from fuelcharge.models.ledger import (
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    LineItem,
    quantize_money,
)


ZERO = Decimal("0.00")


class AgingBuckets(BaseModel):
    """Overdue amount by days past due."""
    days_0_30: Decimal = ZERO
    days_31_60: Decimal = ZERO
    days_61_plus: Decimal = ZERO

    def as_rows(self) -> list[dict]:
        return [
            {"category": "0-30 Days", "amount": self.days_0_30},
            {"category": "31-60 Days", "amount": self.days_31_60},
            {"category": "61+ Days", "amount": self.days_61_plus},
        ]


class RiskSummary(BaseModel):
    """Read-side view of what is overdue."""
    overdue: list[Invoice] = Field(default_factory=list)
    overdue_total: Decimal = ZERO
    aging: AgingBuckets = Field(default_factory=AgingBuckets)

    @property
    def overdue_count(self) -> int:
        return len(self.overdue)


class InvoiceTotals(BaseModel):
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def classify_status(invoice: Invoice, today: Optional[dt.date] = None) -> InvoiceStatus:
    """
    Derived status of an invoice.

    OVERDUE if the invoice is UNPAID and its due date has passed,
    otherwise the stored status.
    """
    today = today or dt.date.today()
    if invoice.status == InvoiceStatus.UNPAID and invoice.due_date < today:
        return InvoiceStatus.OVERDUE
    return invoice.status


def days_past_due(invoice: Invoice, today: dt.date) -> int:
    return (today - invoice.due_date).days


def filter_by_status(
    invoices: Iterable[Invoice],
    status: Optional[InvoiceStatus],
    today: Optional[dt.date] = None,
) -> list[Invoice]:
    """Invoices whose derived status matches; all of them when status is None."""
    if status is None:
        return list(invoices)
    today = today or dt.date.today()
    return [inv for inv in invoices if classify_status(inv, today) == status]


def summarize_risk(invoices: Iterable[Invoice], today: Optional[dt.date] = None) -> RiskSummary:
    """
    Overdue subset, overdue total and aging breakdown.

    Buckets by whole days past due: up to 30, 31 to 60, then 61 and over.
    """
    today = today or dt.date.today()
    overdue = filter_by_status(invoices, InvoiceStatus.OVERDUE, today)

    aging = AgingBuckets()
    for invoice in overdue:
        days = days_past_due(invoice, today)
        if days <= 30:
            aging.days_0_30 += invoice.amount
        elif days <= 60:
            aging.days_31_60 += invoice.amount
        else:
            aging.days_61_plus += invoice.amount

    return RiskSummary(
        overdue=overdue,
        overdue_total=quantize_money(sum((inv.amount for inv in overdue), ZERO)),
        aging=aging,
    )


def invoice_totals(items: Iterable[LineItem], tax_rate: Decimal) -> InvoiceTotals:
    """Subtotal, tax and total for a set of items; tax_rate in percent."""
    items = list(items)
    subtotal = items_subtotal(items)
    total = invoice_amount(items, tax_rate)
    return InvoiceTotals(subtotal=subtotal, tax=total - subtotal, total=total)


def build_invoice_draft(
    account_id: str,
    items: Iterable[LineItem],
    tax_rate: Decimal,
    issue_date: Optional[dt.date] = None,
    payment_terms_days: int = 15,
) -> InvoiceDraft:
    """
    Prepare an invoice the way the invoice generator does.

    The due date is the issue date plus the payment terms.
    """
    issue_date = issue_date or dt.date.today()
    return InvoiceDraft(
        account_id=account_id,
        date=issue_date,
        due_date=issue_date + dt.timedelta(days=payment_terms_days),
        items=list(items),
        tax_rate=tax_rate,
    )
