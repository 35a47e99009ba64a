"""
Balance Accounting Rules

Pure functions mapping a ledger operation to the store operation that
changes an account's balance. Both store adapters receive the same
Increment, so the rules exist exactly once.

CRITICAL: Every rule is an incremental delta on the stored
current_balance. Nothing here ever recomputes a balance from history.
"""

from decimal import Decimal
from typing import Iterable

from fuelcharge.models.ledger import (
    Collection,
    Invoice,
    LineItem,
    Transaction,
    TransactionType,
    quantize_money,
)
from fuelcharge.services.storage.interface import Increment


BALANCE_FIELD = "current_balance"

# Payments reduce what the customer owes; everything else is a charge
_TRANSACTION_SIGN = {
    TransactionType.FUEL: Decimal("1"),
    TransactionType.STORE: Decimal("1"),
    TransactionType.PAYMENT: Decimal("-1"),
}


def _balance_increment(account_id: str, delta: Decimal, floor=None) -> Increment:
    return Increment(
        collection=Collection.ACCOUNTS,
        id=account_id,
        field=BALANCE_FIELD,
        delta=quantize_money(delta),
        floor=floor,
    )


def items_subtotal(items: Iterable[LineItem]) -> Decimal:
    """Sum of extended prices, rounded to cents."""
    return quantize_money(sum((item.extended_price for item in items), Decimal("0")))


def invoice_amount(items: Iterable[LineItem], tax_rate: Decimal) -> Decimal:
    """
    Tax-inclusive invoice amount.

    Args:
        items: Invoice line items
        tax_rate: Tax in percent (7.25 means 7.25%)
    """
    subtotal = items_subtotal(items)
    return quantize_money(subtotal + subtotal * tax_rate / Decimal("100"))


def invoice_created_delta(invoice: Invoice) -> Increment:
    """Invoice created with amount A: balance += A."""
    return _balance_increment(invoice.account_id, invoice.amount)


def invoice_paid_delta(invoice: Invoice) -> Increment:
    """
    Invoice UNPAID -> PAID: balance -= amount, never below zero.

    The floor clamps instead of failing, so a balance that was already
    lower than the invoice (e.g. after a PAYMENT transaction) ends at 0.
    """
    return _balance_increment(invoice.account_id, -invoice.amount, floor=Decimal("0"))


def transaction_sign(transaction_type: TransactionType) -> Decimal:
    return _TRANSACTION_SIGN[transaction_type]


def transaction_delta(transaction: Transaction) -> Increment:
    """
    Transaction recorded: signed by type.

    FUEL and STORE add the amount. PAYMENT subtracts it with no floor,
    so an overpayment leaves a credit (negative) balance.
    """
    return _balance_increment(
        transaction.account_id,
        transaction_sign(transaction.type) * transaction.amount,
    )
