"""
Data Models Package

This package contains all Pydantic models used in FuelCharge.
All data flowing through the system must conform to these schemas.
"""

from fuelcharge.models.ledger import (
    Account,
    AccountDraft,
    Collection,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    LineItem,
    Money,
    Transaction,
    TransactionDraft,
    TransactionType,
    ValidationIssue,
    generate_id,
    quantize_money,
    to_record,
)
from fuelcharge.models.receipt import (
    ScannedItem,
    ScannedReceipt,
)
from fuelcharge.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountDraft",
    "Collection",
    "Invoice",
    "InvoiceDraft",
    "InvoiceStatus",
    "LineItem",
    "Money",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    "ValidationIssue",
    "generate_id",
    "quantize_money",
    "to_record",
    # Receipt models
    "ScannedItem",
    "ScannedReceipt",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
