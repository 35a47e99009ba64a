"""
Main Orchestrator for FuelCharge

This module ties together all the components and defines the
end-to-end flows for:
1. Ledger API (accounts, invoices, transactions, health)
2. Receipt scan (image -> Gemini -> ScannedReceipt -> confirm -> transaction)
3. Invoice email (invoice -> SMTP -> email_sent flag)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every ledger write goes through LedgerService (no direct store writes)
- A scanned receipt is recorded only after staff pick an account and confirm
- email_sent is recorded only after the relay accepted the message
- Every step is audited

The store is constructed here and handed to everything that needs it;
it is opened on startup and closed on shutdown by whoever owns the
LedgerApi.
"""

import datetime as dt
from typing import Optional, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from fuelcharge.agents import ReceiptScanError, ReceiptScanner
from fuelcharge.audit import AuditLogger, create_correlation_id, get_logger
from fuelcharge.config import get_settings
from fuelcharge.errors import ValidationError
from fuelcharge.ledger import LedgerService
from fuelcharge.models.audit import AuditEventBuilder
from fuelcharge.models.ledger import (
    Account,
    AccountDraft,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    Transaction,
    TransactionDraft,
    ValidationIssue,
)
from fuelcharge.models.receipt import ScannedReceipt
from fuelcharge.queries import DashboardQueries, DashboardStats
from fuelcharge.services.notifications import InvoiceMailer, NotificationError
from fuelcharge.services.storage import (
    DocumentLedgerStore,
    FirestoreDocumentClient,
    LedgerStore,
    SqlLedgerStore,
)


logger = get_logger(__name__)


class ReceiptScanFlow:
    """
    Orchestrates the receipt scan flow.

    Flow:
    1. Scan -> Gemini reads the image into a ScannedReceipt
    2. Review -> Staff check the result and pick the account (PAUSE)
    3. Record -> LedgerService validates and records the transaction

    The scan NEVER records anything by itself.
    """

    def __init__(
        self,
        scanner: ReceiptScanner,
        service: LedgerService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._scanner = scanner
        self._service = service
        self._audit_logger = audit_logger or AuditLogger()

    async def scan(
        self,
        image: bytes,
        mime_type: str = "image/jpeg",
        correlation_id: Optional[UUID] = None,
    ) -> ScannedReceipt:
        correlation_id = correlation_id or create_correlation_id()
        try:
            receipt = await self._scanner.scan(image, mime_type)
        except ReceiptScanError as e:
            await self._audit_logger.log(
                AuditEventBuilder.receipt_scan_failed(str(e), correlation_id)
            )
            raise

        await self._audit_logger.log(AuditEventBuilder.receipt_scanned(
            receipt.scan_id,
            receipt.total_amount,
            receipt.is_fuel_transaction,
            correlation_id,
        ))
        return receipt

    async def record(
        self,
        receipt: ScannedReceipt,
        account_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a reviewed receipt against an account.

        CRITICAL: Called ONLY after staff confirmed the scan. The draft
        goes through the same validation as manual entry.
        """
        return await self._service.record_transaction(
            receipt.to_transaction_draft(account_id),
            correlation_id=correlation_id,
        )


class InvoiceEmailFlow:
    """
    Orchestrates sending an invoice email.

    The mailer is tried once. Only a successful send sets email_sent.
    """

    def __init__(
        self,
        mailer: InvoiceMailer,
        service: LedgerService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._mailer = mailer
        self._service = service
        self._audit_logger = audit_logger or AuditLogger()

    async def send(self, invoice_id: str, correlation_id: Optional[UUID] = None) -> bool:
        """
        Email an invoice to its account holder.

        Returns:
            True if sent and recorded, False if the relay failed

        Raises:
            NotFoundError: the invoice or its account does not exist
        """
        correlation_id = correlation_id or create_correlation_id()
        invoice = await self._service.get_invoice(invoice_id)
        account = await self._service.get_account(invoice.account_id)

        if not await self._mailer.send_invoice(invoice, account):
            await self._audit_logger.log(AuditEventBuilder.email_failed(
                invoice.id, "SMTP relay did not accept the invoice email", correlation_id,
            ))
            return False

        await self._service.mark_email_sent(invoice.id, correlation_id)
        await self._audit_logger.log(
            AuditEventBuilder.email_sent(invoice.id, account.email, correlation_id)
        )
        return True


class LedgerApi:
    """
    The API surface the presentation layer talks to.

    Thin: each method delegates to LedgerService or one of the flows.
    Owns the store lifecycle (``open``/``close`` or ``async with``).
    """

    def __init__(
        self,
        service: LedgerService,
        receipt_flow: Optional[ReceiptScanFlow] = None,
        email_flow: Optional[InvoiceEmailFlow] = None,
        dashboard: Optional[DashboardQueries] = None,
    ):
        self._service = service
        self._receipt_flow = receipt_flow
        self._email_flow = email_flow
        self._dashboard = dashboard or DashboardQueries()

    @property
    def service(self) -> LedgerService:
        return self._service

    async def open(self) -> None:
        await self._service.store.open()

    async def close(self) -> None:
        await self._service.store.close()

    async def __aenter__(self) -> "LedgerApi":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Accounts

    async def get_accounts(self, search: Optional[str] = None) -> list[Account]:
        return await self._service.list_accounts(search)

    async def save_account(self, draft: Union[AccountDraft, dict]) -> Account:
        return await self._service.create_account(draft)

    # Invoices

    async def get_invoices(self) -> list[Invoice]:
        return await self._service.list_invoices()

    async def save_invoice(self, draft: Union[InvoiceDraft, dict]) -> Invoice:
        return await self._service.create_invoice(draft)

    async def update_invoice_status(self, invoice_id: str, status: Union[InvoiceStatus, str]) -> Invoice:
        """
        Change an invoice's stored status.

        PAID is the only real transition. Asking for UNPAID on an invoice
        that is already UNPAID changes nothing; every other request is
        rejected, since OVERDUE is derived and PAID is final.
        """
        try:
            target = InvoiceStatus(status)
        except ValueError:
            raise ValidationError(
                f"Unknown invoice status: {status}",
                issues=[ValidationIssue(
                    field="status",
                    issue_type="invalid_value",
                    message=f"Unknown invoice status: {status}",
                )],
            )

        if target == InvoiceStatus.PAID:
            return await self._service.mark_invoice_paid(invoice_id)

        invoice = await self._service.get_invoice(invoice_id)
        if target == InvoiceStatus.UNPAID and invoice.status == InvoiceStatus.UNPAID:
            return invoice

        message = f"Cannot change invoice {invoice_id} from {invoice.status.value} to {target.value}"
        raise ValidationError(
            message,
            issues=[ValidationIssue(field="status", issue_type="invalid_transition", message=message)],
        )

    async def mark_invoice_email_sent(self, invoice_id: str) -> None:
        await self._service.mark_email_sent(invoice_id)

    async def send_invoice(self, invoice_id: str) -> bool:
        if self._email_flow is None:
            raise NotificationError("Invoice email is not configured")
        return await self._email_flow.send(invoice_id)

    # Transactions

    async def get_transactions(self, account_id: Optional[str] = None) -> list[Transaction]:
        return await self._service.list_transactions(account_id)

    async def save_transaction(self, draft: Union[TransactionDraft, dict]) -> Transaction:
        return await self._service.record_transaction(draft)

    async def scan_receipt(self, image: bytes, mime_type: str = "image/jpeg") -> ScannedReceipt:
        if self._receipt_flow is None:
            raise ReceiptScanError("Receipt scanning is not configured")
        return await self._receipt_flow.scan(image, mime_type)

    async def record_scanned_receipt(self, receipt: ScannedReceipt, account_id: str) -> Transaction:
        if self._receipt_flow is None:
            raise ReceiptScanError("Receipt scanning is not configured")
        return await self._receipt_flow.record(receipt, account_id)

    # Read side

    async def get_dashboard(self, today: Optional[dt.date] = None) -> DashboardStats:
        return await self._dashboard.load(self._service, today)

    async def check_health(self) -> dict:
        return await self._service.health()


def create_store(backend: Optional[str] = None) -> LedgerStore:
    """
    Build (but do not open) the configured ledger store.

    Args:
        backend: "sql" or "document"; defaults to APP ledger_backend
    """
    settings = get_settings()
    backend = backend or settings.app.ledger_backend
    if backend == "sql":
        return SqlLedgerStore(settings=settings.database)
    if backend == "document":
        return DocumentLedgerStore(
            FirestoreDocumentClient(settings.firestore),
            max_attempts=settings.app.store_max_attempts,
        )
    raise ValueError(f"Unknown ledger backend: {backend}")


def create_app_components(
    store: Optional[LedgerStore] = None,
    backend: Optional[str] = None,
    use_scanner: bool = True,
) -> LedgerApi:
    """
    Factory function to create all application components.

    Args:
        store: A pre-built store (tests pass one in); built from settings if None
        backend: Backend to build when no store is given
        use_scanner: Whether to set up Gemini receipt scanning.
                    Set to False for running without an API key.

    Returns:
        An unopened LedgerApi; open it (or use ``async with``) before use
    """
    settings = get_settings()
    store = store or create_store(backend)
    audit_logger = AuditLogger()
    station = settings.station

    service = LedgerService(store, audit_logger=audit_logger, station=station)

    receipt_flow = None
    if use_scanner:
        try:
            receipt_flow = ReceiptScanFlow(ReceiptScanner(), service, audit_logger)
        except PydanticValidationError as e:
            # Gemini not configured - continue without scanning
            logger.warning("receipt_scanner_not_configured", error=str(e))

    email_flow = InvoiceEmailFlow(InvoiceMailer(station), service, audit_logger)

    return LedgerApi(
        service,
        receipt_flow=receipt_flow,
        email_flow=email_flow,
        dashboard=DashboardQueries(settings.app),
    )
