"""
Ledger package: balance rules, the ledger service and invoice lifecycle.
"""

from fuelcharge.ledger.lifecycle import (
    AgingBuckets,
    InvoiceTotals,
    RiskSummary,
    build_invoice_draft,
    classify_status,
    filter_by_status,
    invoice_totals,
    summarize_risk,
)
from fuelcharge.ledger.rules import (
    invoice_amount,
    invoice_created_delta,
    invoice_paid_delta,
    items_subtotal,
    transaction_delta,
    transaction_sign,
)
from fuelcharge.ledger.service import LedgerService

__all__ = [
    # Service
    "LedgerService",
    # Rules
    "invoice_amount",
    "invoice_created_delta",
    "invoice_paid_delta",
    "items_subtotal",
    "transaction_delta",
    "transaction_sign",
    # Lifecycle
    "AgingBuckets",
    "InvoiceTotals",
    "RiskSummary",
    "build_invoice_draft",
    "classify_status",
    "filter_by_status",
    "invoice_totals",
    "summarize_risk",
]
