"""
Receipt Scan Models

The receipt scanner returns free-form JSON from an LLM. It is parsed
into these models before anything else sees it, so the rest of the
system only ever handles a validated shape.

CRITICAL: A ScannedReceipt is a PROPOSAL. It becomes a transaction
only after an account is chosen and the ledger service re-validates it.
"""

import datetime as dt
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fuelcharge.models.ledger import (
    MAX_AMOUNT,
    LineItem,
    TransactionDraft,
    TransactionType,
    quantize_money,
)


class ScannedItem(BaseModel):
    """One item read off a receipt."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=200)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    price: Decimal = Field(..., ge=0)


class ScannedReceipt(BaseModel):
    """
    Structured result of a receipt scan.

    Field aliases match the JSON keys the model is asked to produce,
    so both ``totalAmount`` and ``total_amount`` are accepted.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
    )

    scan_id: UUID = Field(default_factory=uuid4)
    items: list[ScannedItem] = Field(default_factory=list)
    total_amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT, alias="totalAmount")
    date: Optional[dt.date] = None
    store_name: Optional[str] = Field(default=None, alias="storeName")
    is_fuel_transaction: bool = Field(default=False, alias="isFuelTransaction")

    @field_validator('date', mode='before')
    @classmethod
    def blank_date_is_missing(cls, v):
        """Models sometimes answer "" or "unknown" for an unreadable date."""
        if isinstance(v, str):
            try:
                return dt.date.fromisoformat(v.strip()[:10])
            except ValueError:
                return None
        return v

    def to_transaction_draft(
        self,
        account_id: str,
        today: Optional[dt.date] = None,
    ) -> TransactionDraft:
        """
        Convert to a transaction draft for the chosen account.

        Fuel receipts become FUEL charges, everything else STORE.
        A missing date falls back to today.
        """
        description = self.store_name or (
            "Fuel purchase" if self.is_fuel_transaction else "Store purchase"
        )
        return TransactionDraft(
            account_id=account_id,
            date=self.date or today or dt.date.today(),
            type=TransactionType.FUEL if self.is_fuel_transaction else TransactionType.STORE,
            amount=quantize_money(self.total_amount),
            description=description,
            items=[
                LineItem(
                    description=item.description,
                    quantity=item.quantity,
                    price=item.price,
                )
                for item in self.items
            ],
        )
