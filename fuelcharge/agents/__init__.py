"""AI Agents package."""

from fuelcharge.agents.receipt_scanner import (
    RECEIPT_PROMPT,
    ReceiptScanError,
    ReceiptScanner,
)

__all__ = [
    "RECEIPT_PROMPT",
    "ReceiptScanError",
    "ReceiptScanner",
]
