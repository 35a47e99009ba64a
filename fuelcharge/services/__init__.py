"""Services package."""

from fuelcharge.services.notifications import (
    InvoiceMailer,
    NotificationError,
    render_invoice_html,
)
from fuelcharge.services.storage import (
    DocumentLedgerStore,
    FirestoreDocumentClient,
    InMemoryDocumentClient,
    LedgerStore,
    SqlLedgerStore,
)

__all__ = [
    # Notifications
    "InvoiceMailer",
    "NotificationError",
    "render_invoice_html",
    # Storage
    "DocumentLedgerStore",
    "FirestoreDocumentClient",
    "InMemoryDocumentClient",
    "LedgerStore",
    "SqlLedgerStore",
]
