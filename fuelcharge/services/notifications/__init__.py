"""Outbound notifications (invoice email)."""

from fuelcharge.services.notifications.mailer import (
    InvoiceMailer,
    NotificationError,
    render_invoice_html,
)

__all__ = ["InvoiceMailer", "NotificationError", "render_invoice_html"]
