"""
Ledger Service

The consistency core. Every operation that changes an account balance
writes the originating record AND the balance delta in ONE atomic_apply
call, so no invoice ever exists without its delta and no delta is ever
applied without its record.

Flow for each mutating operation:
1. Coerce input into a draft model (ValidationError on bad shapes)
2. Two-stage validation (ValidationError, store untouched)
3. Foreign key checks (InvalidReferenceError)
4. One atomic_apply with the record operation + the balance rule
5. Audit log

CRITICAL: Nothing in this class reads a balance and writes it back.
Balance changes are always Increment operations evaluated by the store.
"""

import datetime as dt
from typing import Any, Optional, Sequence, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from fuelcharge.audit import AuditLogger, get_logger
from fuelcharge.config import StationSettings
from fuelcharge.errors import (
    InvalidReferenceError,
    NotFoundError,
    PreconditionFailedError,
    StorageError,
    ValidationError,
)
from fuelcharge.ledger.lifecycle import classify_status
from fuelcharge.ledger.rules import (
    invoice_amount,
    invoice_created_delta,
    invoice_paid_delta,
    transaction_delta,
)
from fuelcharge.models.audit import AuditEventBuilder
from fuelcharge.models.ledger import (
    Account,
    AccountDraft,
    Collection,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    Transaction,
    TransactionDraft,
    ValidationIssue,
    generate_id,
    to_record,
)
from fuelcharge.services.storage.interface import (
    Insert,
    LedgerStore,
    Operation,
    Update,
)
from fuelcharge.validation import LedgerValidator


logger = get_logger(__name__)

DraftT = TypeVar("DraftT", bound=BaseModel)


class LedgerService:
    """
    Applies the balance accounting rules atomically through a LedgerStore.

    The store is passed in already constructed; opening and closing it
    is the caller's job.
    """

    def __init__(
        self,
        store: LedgerStore,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        station: Optional[StationSettings] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator()
        self._station = station or StationSettings()

    @property
    def store(self) -> LedgerStore:
        return self._store

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _coerce(self, model: type[DraftT], data: Union[DraftT, dict], operation: str) -> DraftT:
        """Turn raw input into a draft model, reporting shape errors as ValidationError."""
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            issues = [
                ValidationIssue(
                    field=".".join(str(part) for part in error["loc"]) or operation,
                    issue_type="invalid_value",
                    message=error["msg"],
                )
                for error in e.errors()
            ]
            raise ValidationError(f"Invalid {operation}: {e.error_count()} issues", issues=issues) from e

    async def _validate(self, check, draft: BaseModel, operation: str, correlation_id: Optional[UUID]) -> None:
        try:
            warnings = check(draft)
        except ValidationError as e:
            await self._audit.log(AuditEventBuilder.validation_failed(
                operation,
                [issue.model_dump() for issue in e.issues],
                correlation_id=correlation_id,
            ))
            raise
        for warning in warnings:
            logger.warning("validation_warning", operation=operation, field=warning.field, message=warning.message)

    async def _apply(
        self,
        operation: str,
        operations: Sequence[Operation],
        entity_id: str,
        correlation_id: Optional[UUID],
    ) -> None:
        """One atomic_apply; store failures are audited once, here, and re-raised."""
        try:
            await self._store.atomic_apply(operations)
        except StorageError as e:
            await self._audit.log(AuditEventBuilder.storage_failed(
                operation,
                type(e).__name__,
                str(e),
                entity_id=entity_id,
                correlation_id=correlation_id,
            ))
            raise

    async def _require_account(self, account_id: str) -> Account:
        try:
            return await self.get_account(account_id)
        except NotFoundError:
            raise InvalidReferenceError(f"Account does not exist: {account_id}")

    async def _warn_if_over_limit(self, account_id: str, correlation_id: Optional[UUID]) -> None:
        """Credit limits are advisory: report, never block."""
        account = await self.get_account(account_id)
        if account.is_over_limit:
            await self._audit.log(AuditEventBuilder.credit_limit_exceeded(
                account.id,
                account.current_balance,
                account.credit_limit,
                correlation_id=correlation_id,
            ))

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def create_account(
        self,
        fields: Union[AccountDraft, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Open a house account with a zero balance.

        Raises:
            ValidationError: name or email missing
            StorageError: the insert failed
        """
        draft = self._coerce(AccountDraft, fields, "account")
        await self._validate(self._validator.validate_account, draft, "create_account", correlation_id)

        account = Account(
            id=generate_id("ACC"),
            name=draft.name,
            email=draft.email,
            phone=draft.phone or None,
            credit_limit=draft.credit_limit,
            created_at=dt.datetime.now(dt.timezone.utc),
        )
        await self._apply(
            "create_account",
            [Insert(collection=Collection.ACCOUNTS, id=account.id, record=to_record(account))],
            account.id,
            correlation_id,
        )
        await self._audit.log(AuditEventBuilder.account_created(account.id, account.name, correlation_id))
        return account

    async def get_account(self, account_id: str) -> Account:
        return Account.model_validate(await self._store.get(Collection.ACCOUNTS, account_id))

    async def list_accounts(self, search: Optional[str] = None) -> list[Account]:
        """
        All accounts by name, optionally narrowed to those whose name or
        email contains ``search`` (case-insensitive).
        """
        records = await self._store.list_all(Collection.ACCOUNTS, order_by="name")
        accounts = [Account.model_validate(record) for record in records]
        if search and search.strip():
            needle = search.strip().lower()
            accounts = [
                account for account in accounts
                if needle in account.name.lower() or needle in account.email.lower()
            ]
        return accounts

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    async def create_invoice(
        self,
        draft: Union[InvoiceDraft, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Store a new UNPAID invoice and add its amount to the balance.

        The amount is computed from the items plus tax and frozen. Without
        a tax rate on the draft the station rate applies.

        Raises:
            ValidationError: no items, or an item without description/price
            InvalidReferenceError: account_id does not exist
            StorageError: nothing was written
        """
        draft = self._coerce(InvoiceDraft, draft, "invoice")
        if draft.tax_rate is None:
            draft = draft.model_copy(update={"tax_rate": self._station.tax_rate})
        await self._validate(self._validator.validate_invoice, draft, "create_invoice", correlation_id)
        await self._require_account(draft.account_id)

        issue_date = draft.date or dt.date.today()
        invoice = Invoice(
            id=generate_id("INV"),
            account_id=draft.account_id,
            date=issue_date,
            due_date=draft.due_date or issue_date + dt.timedelta(days=self._station.payment_terms),
            amount=invoice_amount(draft.items, draft.tax_rate),
            status=InvoiceStatus.UNPAID,
            items=draft.items,
        )

        try:
            await self._apply(
                "create_invoice",
                [
                    Insert(collection=Collection.INVOICES, id=invoice.id, record=to_record(invoice)),
                    invoice_created_delta(invoice),
                ],
                invoice.id,
                correlation_id,
            )
        except NotFoundError:
            # Account vanished between the check and the apply; batch rolled back
            raise InvalidReferenceError(f"Account does not exist: {invoice.account_id}")

        await self._audit.log(AuditEventBuilder.invoice_created(
            invoice.id, invoice.account_id, invoice.amount, correlation_id,
        ))
        await self._warn_if_over_limit(invoice.account_id, correlation_id)
        return invoice

    async def get_invoice(self, invoice_id: str) -> Invoice:
        return Invoice.model_validate(await self._store.get(Collection.INVOICES, invoice_id))

    async def list_invoices(self) -> list[Invoice]:
        """All invoices, newest first, items inlined."""
        records = await self._store.list_all(Collection.INVOICES, order_by="date", descending=True)
        return [Invoice.model_validate(record) for record in records]

    async def mark_invoice_paid(
        self,
        invoice_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Transition an invoice UNPAID -> PAID and take its amount off the balance.

        Idempotent: an invoice that is already PAID is returned unchanged
        and the balance is not touched again. The status update is guarded
        by ``expect={"status": UNPAID}``, so when two callers race only one
        decrement is applied; the loser sees the guard fail and gets the
        same no-op result.

        Raises:
            NotFoundError: no such invoice
            StorageError: nothing was written
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            await self._audit.log(AuditEventBuilder.invoice_already_paid(invoice_id, correlation_id))
            return invoice

        try:
            await self._apply(
                "mark_invoice_paid",
                [
                    Update(
                        collection=Collection.INVOICES,
                        id=invoice.id,
                        changes={"status": InvoiceStatus.PAID.value},
                        expect={"status": InvoiceStatus.UNPAID.value},
                    ),
                    invoice_paid_delta(invoice),
                ],
                invoice.id,
                correlation_id,
            )
        except PreconditionFailedError:
            await self._audit.log(AuditEventBuilder.invoice_already_paid(invoice_id, correlation_id))
            return await self.get_invoice(invoice_id)

        await self._audit.log(AuditEventBuilder.invoice_paid(
            invoice.id, invoice.account_id, invoice.amount, correlation_id,
        ))
        return invoice.model_copy(update={"status": InvoiceStatus.PAID})

    # Payment against an invoice is the same operation
    record_payment = mark_invoice_paid

    async def mark_email_sent(
        self,
        invoice_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Set email_sent on an invoice. Not a balance operation."""
        await self._apply(
            "mark_email_sent",
            [Update(collection=Collection.INVOICES, id=invoice_id, changes={"email_sent": True})],
            invoice_id,
            correlation_id,
        )

    def classify_status(self, invoice: Invoice, today: Optional[dt.date] = None) -> InvoiceStatus:
        return classify_status(invoice, today)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def record_transaction(
        self,
        draft: Union[TransactionDraft, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Store a transaction and apply its signed delta to the balance.

        FUEL and STORE charges add the amount; PAYMENT subtracts it.

        Raises:
            ValidationError: amount missing, not finite, or not positive
            InvalidReferenceError: account_id (or invoice_id) does not exist
            StorageError: nothing was written
        """
        draft = self._coerce(TransactionDraft, draft, "transaction")
        await self._validate(self._validator.validate_transaction, draft, "record_transaction", correlation_id)
        await self._require_account(draft.account_id)
        if draft.invoice_id:
            try:
                await self.get_invoice(draft.invoice_id)
            except NotFoundError:
                raise InvalidReferenceError(f"Invoice does not exist: {draft.invoice_id}")

        transaction = Transaction(
            id=generate_id("TX"),
            account_id=draft.account_id,
            date=draft.date or dt.date.today(),
            type=draft.type,
            amount=draft.amount,
            description=draft.description,
            items=draft.items,
            invoice_id=draft.invoice_id,
        )
        delta = transaction_delta(transaction)

        try:
            await self._apply(
                "record_transaction",
                [
                    Insert(collection=Collection.TRANSACTIONS, id=transaction.id, record=to_record(transaction)),
                    delta,
                ],
                transaction.id,
                correlation_id,
            )
        except NotFoundError:
            raise InvalidReferenceError(f"Account does not exist: {transaction.account_id}")

        await self._audit.log(AuditEventBuilder.transaction_recorded(
            transaction.id,
            transaction.account_id,
            transaction.type.value,
            delta.delta,
            correlation_id,
        ))
        if delta.delta > 0:
            await self._warn_if_over_limit(transaction.account_id, correlation_id)
        return transaction

    async def list_transactions(self, account_id: Optional[str] = None) -> list[Transaction]:
        """Transactions newest first, optionally for one account."""
        records = await self._store.list_all(Collection.TRANSACTIONS, order_by="date", descending=True)
        transactions = [Transaction.model_validate(record) for record in records]
        if account_id is not None:
            transactions = [t for t in transactions if t.account_id == account_id]
        return transactions

    async def health(self) -> dict[str, Any]:
        return await self._store.health()
