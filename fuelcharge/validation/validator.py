"""
Two-Stage Ledger Input Validation

DESIGN DECISION: Validation happens in two distinct stages, and always
before the store is touched:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Finite, positive amounts that fit the ledger columns
- This catches incomplete forms and malformed scanner output

STAGE 2 - SEMANTIC VALIDATION:
- Line item sanity (description, quantity, price)
- Date consistency (due date before issue date)
- Suspicious values (far-future dates) reported as warnings

WHY TWO STAGES:
1. Better error messages (know exactly what kind of issue)
2. Stage 2 assumes the fields stage 1 checked are present

IMPORTANT: Validation NEVER silently fixes issues. Errors raise a
ValidationError carrying every issue found; warnings are returned to
the caller for display.

Foreign keys (does this account exist?) are NOT checked here; that
needs the store and is the ledger service's job.
"""

import datetime as dt
from decimal import Decimal
from typing import Optional

from fuelcharge.errors import ValidationError
from fuelcharge.models.ledger import (
    MAX_AMOUNT,
    AccountDraft,
    InvoiceDraft,
    LineItem,
    TransactionDraft,
    ValidationIssue,
    quantize_money,
)


# Scanned receipts sometimes come back with a misread year
FUTURE_DATE_TOLERANCE_DAYS = 1


def _is_positive_finite(value: Optional[Decimal]) -> bool:
    return value is not None and value.is_finite() and value > 0


def _exceeds_max(value: Decimal) -> bool:
    """Finite but larger than any ledger column can hold."""
    return value.is_finite() and abs(value) > MAX_AMOUNT


class LedgerValidator:
    """
    Validates ledger drafts through a two-stage pipeline.

    Each ``validate_*`` method returns the warnings it found and raises
    ValidationError if any issue has severity "error".
    """

    def _raise_on_errors(self, operation: str, issues: list[ValidationIssue]) -> list[ValidationIssue]:
        errors = [issue for issue in issues if issue.severity == "error"]
        if errors:
            summary = "; ".join(issue.message for issue in errors)
            raise ValidationError(f"Invalid {operation}: {summary}", issues=issues)
        return issues

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def validate_account(self, draft: AccountDraft) -> list[ValidationIssue]:
        issues = []

        if not draft.name:
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Account name is required",
            ))
        if not draft.email:
            issues.append(ValidationIssue(
                field="email",
                issue_type="missing",
                message="Account email is required",
            ))
        elif "@" not in draft.email:
            issues.append(ValidationIssue(
                field="email",
                issue_type="invalid_value",
                message=f"'{draft.email}' is not an email address",
            ))

        if not draft.credit_limit.is_finite() or draft.credit_limit < 0:
            issues.append(ValidationIssue(
                field="credit_limit",
                issue_type="invalid_value",
                message="Credit limit must be zero or a positive amount",
            ))
        elif _exceeds_max(draft.credit_limit):
            issues.append(ValidationIssue(
                field="credit_limit",
                issue_type="out_of_range",
                message=f"Credit limit cannot exceed {MAX_AMOUNT:,}",
            ))

        return self._raise_on_errors("account", issues)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def _validate_items(self, items: list[LineItem], required: bool) -> list[ValidationIssue]:
        """
        Line item checks.

        Invoice items are billed, so problems are errors. Transaction
        items are informational (the amount is what counts), so the
        same problems are only warnings there.
        """
        issues = []
        severity = "error" if required else "warning"

        if required and not items:
            issues.append(ValidationIssue(
                field="items",
                issue_type="missing",
                message="At least one line item is required",
            ))

        for index, item in enumerate(items):
            prefix = f"items[{index}]"
            if not item.description:
                issues.append(ValidationIssue(
                    field=f"{prefix}.description",
                    issue_type="missing",
                    message=f"Line item {index + 1} needs a description",
                    severity=severity,
                ))
            if not _is_positive_finite(item.quantity):
                issues.append(ValidationIssue(
                    field=f"{prefix}.quantity",
                    issue_type="invalid_value",
                    message=f"Line item {index + 1} quantity must be greater than zero",
                    severity=severity,
                ))
            if not _is_positive_finite(item.price):
                issues.append(ValidationIssue(
                    field=f"{prefix}.price",
                    issue_type="invalid_value",
                    message=f"Line item {index + 1} price must be greater than zero",
                    severity=severity,
                ))
            for field in ("quantity", "price"):
                if _exceeds_max(getattr(item, field)):
                    issues.append(ValidationIssue(
                        field=f"{prefix}.{field}",
                        issue_type="out_of_range",
                        message=f"Line item {index + 1} {field} cannot exceed {MAX_AMOUNT:,}",
                        severity=severity,
                    ))

        return issues

    def _validate_total(self, items: list[LineItem], tax_rate: Decimal) -> list[ValidationIssue]:
        """
        The invoice amount must be storable and at least one cent.

        Mirrors the rounding of the stored amount: subtotal to cents
        first, then tax, then cents again.
        """
        raw_subtotal = sum((item.extended_price for item in items), Decimal("0"))
        if raw_subtotal > MAX_AMOUNT:
            total = raw_subtotal
        else:
            subtotal = quantize_money(raw_subtotal)
            total = subtotal + subtotal * tax_rate / Decimal("100")

        if total > MAX_AMOUNT:
            return [ValidationIssue(
                field="items",
                issue_type="out_of_range",
                message=f"Invoice total cannot exceed {MAX_AMOUNT:,}",
            )]
        if quantize_money(total) <= 0:
            return [ValidationIssue(
                field="items",
                issue_type="invalid_value",
                message="Invoice total rounds to less than one cent",
            )]
        return []

    def _validate_dates(
        self,
        issue_date: Optional[dt.date],
        due_date: Optional[dt.date] = None,
    ) -> list[ValidationIssue]:
        issues = []
        today = dt.date.today()

        if issue_date and issue_date > today + dt.timedelta(days=FUTURE_DATE_TOLERANCE_DAYS):
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({issue_date}) is in the future",
                severity="warning",
            ))

        if issue_date and due_date and due_date < issue_date:
            issues.append(ValidationIssue(
                field="due_date",
                issue_type="inconsistent",
                message="Due date is before the invoice date",
            ))

        return issues

    def validate_invoice(self, draft: InvoiceDraft) -> list[ValidationIssue]:
        # Stage 1
        issues = []
        if not draft.account_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="Invoice must belong to an account",
            ))
        tax_rate = Decimal("0") if draft.tax_rate is None else draft.tax_rate
        tax_ok = tax_rate.is_finite() and 0 <= tax_rate <= 100
        if not tax_ok:
            issues.append(ValidationIssue(
                field="tax_rate",
                issue_type="invalid_value",
                message="Tax rate must be between 0 and 100 percent",
            ))

        # Stage 2
        item_issues = self._validate_items(draft.items, required=True)
        issues.extend(item_issues)
        if not item_issues and tax_ok:
            issues.extend(self._validate_total(draft.items, tax_rate))
        issues.extend(self._validate_dates(draft.date, draft.due_date))

        return self._raise_on_errors("invoice", issues)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def validate_transaction(self, draft: TransactionDraft) -> list[ValidationIssue]:
        # Stage 1
        issues = []
        if not draft.account_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="Transaction must belong to an account",
            ))
        if draft.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Transaction amount is required",
            ))
        elif not _is_positive_finite(draft.amount):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Transaction amount must be a finite amount greater than zero",
            ))
        elif _exceeds_max(draft.amount):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="out_of_range",
                message=f"Transaction amount cannot exceed {MAX_AMOUNT:,}",
            ))
        elif quantize_money(draft.amount) <= 0:
            # Stored to the cent; 0.004 would be recorded as 0.00
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Transaction amount must be at least 0.01",
            ))

        # Stage 2
        issues.extend(self._validate_items(draft.items, required=False))
        issues.extend(self._validate_dates(draft.date))

        return self._raise_on_errors("transaction", issues)


def describe_issues(issues: list[ValidationIssue]) -> str:
    """
    User-friendly summary of validation issues.

    This is what the presentation layer shows to station staff.
    """
    if not issues:
        return "All checks passed."

    lines = []
    errors = [issue for issue in issues if issue.severity == "error"]
    warnings = [issue for issue in issues if issue.severity == "warning"]

    if errors:
        lines.append("Please fix the following:")
        lines.extend(f"  - {issue.message}" for issue in errors)
    if warnings:
        lines.append("Please double-check:")
        lines.extend(f"  - {issue.message}" for issue in warnings)

    return "\n".join(lines)
