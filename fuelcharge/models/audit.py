"""
Audit Models for FuelCharge

Every balance-affecting action in the system is logged for audit purposes.
This provides:
1. Traceability of every change to an account balance
2. Debugging information when a store operation fails
3. A record of which invoices were emailed and when

DESIGN DECISION: Audit events are append-only. We never delete or modify them.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_CREATED = "account_created"
    CREDIT_LIMIT_EXCEEDED = "credit_limit_exceeded"

    # Invoices
    INVOICE_CREATED = "invoice_created"
    INVOICE_PAID = "invoice_paid"
    INVOICE_ALREADY_PAID = "invoice_already_paid"

    # Transactions
    TRANSACTION_RECORDED = "transaction_recorded"

    # Notifications
    INVOICE_EMAIL_SENT = "invoice_email_sent"
    INVOICE_EMAIL_FAILED = "invoice_email_failed"

    # Receipt scanning
    RECEIPT_SCANNED = "receipt_scanned"
    RECEIPT_SCAN_FAILED = "receipt_scan_failed"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    STORAGE_FAILED = "storage_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'invoice', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., scan then record)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.invoice_created(invoice_id, account_id, amount)
        event = AuditEventBuilder.storage_failed("create_invoice", error)
    """

    @staticmethod
    def account_created(
        account_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account opened: {name}",
            details={"name": name},
        )

    @staticmethod
    def invoice_created(
        invoice_id: str,
        account_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_CREATED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice {invoice_id} created for ${amount}",
            details={"account_id": account_id, "amount": str(amount)},
        )

    @staticmethod
    def invoice_paid(
        invoice_id: str,
        account_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_PAID,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice {invoice_id} marked paid",
            details={"account_id": account_id, "amount": str(amount)},
        )

    @staticmethod
    def invoice_already_paid(
        invoice_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_ALREADY_PAID,
            severity=AuditSeverity.DEBUG,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice {invoice_id} was already paid; nothing to do",
        )

    @staticmethod
    def transaction_recorded(
        transaction_id: str,
        account_id: str,
        transaction_type: str,
        delta: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{transaction_type} transaction recorded ({delta:+})",
            details={
                "account_id": account_id,
                "type": transaction_type,
                "balance_delta": str(delta),
            },
        )

    @staticmethod
    def credit_limit_exceeded(
        account_id: str,
        balance: Decimal,
        credit_limit: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDIT_LIMIT_EXCEEDED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance ${balance} is over the ${credit_limit} credit limit",
            details={"balance": str(balance), "credit_limit": str(credit_limit)},
        )

    @staticmethod
    def email_sent(
        invoice_id: str,
        recipient: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_EMAIL_SENT,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice {invoice_id} emailed to {recipient}",
            details={"recipient": recipient},
        )

    @staticmethod
    def email_failed(
        invoice_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_EMAIL_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Could not email invoice {invoice_id}",
            error_message=error_message,
        )

    @staticmethod
    def receipt_scanned(
        scan_id: UUID,
        total_amount: Decimal,
        is_fuel: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_SCANNED,
            entity_type="receipt",
            entity_id=str(scan_id),
            correlation_id=correlation_id,
            description=f"Receipt scanned: ${total_amount}",
            details={"total_amount": str(total_amount), "is_fuel": is_fuel},
        )

    @staticmethod
    def receipt_scan_failed(
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_SCAN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            correlation_id=correlation_id,
            description="Receipt could not be interpreted",
            error_message=error_message,
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={"operation": operation, "issues": issues},
        )

    @staticmethod
    def storage_failed(
        operation: str,
        error_type: str,
        error_message: str,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Store operation failed: {operation}",
            error_code=error_type,
            error_message=error_message,
            details={"operation": operation},
        )
