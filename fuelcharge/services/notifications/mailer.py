"""
Invoice Email Service

Sends invoices to account holders through the station's SMTP relay.

DESIGN DECISION: The mailer reports success or failure and nothing else.
It never retries and never touches the ledger; whoever called it decides
whether to record email_sent. That keeps a flaky relay from ever being
able to double-send or leave the ledger half-updated.

Port 465 uses implicit TLS, anything else STARTTLS when the server
offers it.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Optional

from fuelcharge.audit import get_logger
from fuelcharge.config import StationSettings
from fuelcharge.models.ledger import Account, Invoice


logger = get_logger(__name__)

SMTPS_PORT = 465


class NotificationError(Exception):
    """The SMTP relay is not configured or refused the message."""
    pass


def render_invoice_html(invoice: Invoice, account: Account, station: StationSettings) -> str:
    """Invoice email body: station header, item table, total due."""
    rows = "".join(
        f"""
        <tr>
            <td style="padding: 12px; border-bottom: 1px solid #eee;">{escape(item.description)}</td>
            <td style="padding: 12px; border-bottom: 1px solid #eee; text-align: center;">{item.quantity.normalize():f}</td>
            <td style="padding: 12px; border-bottom: 1px solid #eee; text-align: right;">${item.price:.2f}</td>
            <td style="padding: 12px; border-bottom: 1px solid #eee; text-align: right; font-weight: bold;">${item.extended_price:.2f}</td>
        </tr>"""
        for item in invoice.items
    )
    return f"""
    <div style="font-family: sans-serif; color: #334155; max-width: 600px; margin: auto; border: 1px solid #e2e8f0; border-radius: 12px; overflow: hidden;">
        <div style="background-color: #1e293b; color: white; padding: 32px;">
            <h1 style="margin: 0; font-size: 24px;">{escape(station.station_name)}</h1>
            <p style="margin: 4px 0 0; opacity: 0.7; font-size: 14px;">Invoice: {escape(invoice.id)}</p>
        </div>
        <div style="padding: 32px;">
            <p>Hello {escape(account.name)},</p>
            <p>Issued {invoice.date.isoformat()}, due {invoice.due_date.isoformat()}.</p>
            <table style="width: 100%; border-collapse: collapse; margin-bottom: 32px;">
                <thead>
                    <tr style="background-color: #f8fafc; font-size: 12px;">
                        <th style="padding: 12px; text-align: left;">Item</th>
                        <th style="padding: 12px; text-align: center;">Qty</th>
                        <th style="padding: 12px; text-align: right;">Price</th>
                        <th style="padding: 12px; text-align: right;">Total</th>
                    </tr>
                </thead>
                <tbody>{rows}</tbody>
                <tfoot>
                    <tr>
                        <td colspan="3" style="padding: 24px 12px 12px; text-align: right; font-weight: bold;">Total Due</td>
                        <td style="padding: 24px 12px 12px; text-align: right; font-size: 20px; font-weight: bold; color: #2563eb;">${invoice.amount:.2f}</td>
                    </tr>
                </tfoot>
            </table>
        </div>
    </div>
    """


class InvoiceMailer:
    """SMTP sender for invoice emails."""

    def __init__(self, station: Optional[StationSettings] = None):
        self._station = station or StationSettings()

    @property
    def station(self) -> StationSettings:
        return self._station

    def _connect(self) -> smtplib.SMTP:
        station = self._station
        if not station.smtp_configured:
            raise NotificationError("SMTP relay is not configured")

        try:
            if station.smtp_port == SMTPS_PORT:
                server = smtplib.SMTP_SSL(
                    station.smtp_host, station.smtp_port, timeout=station.smtp_timeout_seconds
                )
            else:
                server = smtplib.SMTP(
                    station.smtp_host, station.smtp_port, timeout=station.smtp_timeout_seconds
                )
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
            if station.smtp_user:
                server.login(station.smtp_user, station.smtp_pass or "")
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Could not connect to SMTP relay: {e}") from e
        return server

    def _send_sync(self, message: EmailMessage) -> None:
        server = self._connect()
        try:
            server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP relay refused the message: {e}") from e
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError):
                server.close()

    def build_message(self, invoice: Invoice, account: Account) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = f"Invoice {invoice.id}"
        message["From"] = str(self._station.support_email)
        message["To"] = account.email
        message.set_content(
            f"Invoice {invoice.id} from {self._station.station_name}: "
            f"${invoice.amount:.2f} due {invoice.due_date.isoformat()}."
        )
        message.add_alternative(render_invoice_html(invoice, account, self._station), subtype="html")
        return message

    async def send_invoice(self, invoice: Invoice, account: Account) -> bool:
        """
        Email an invoice to the account holder.

        Returns True on success, False on any failure (logged).
        """
        try:
            await asyncio.to_thread(self._send_sync, self.build_message(invoice, account))
        except NotificationError as e:
            logger.warning("invoice_email_failed", invoice_id=invoice.id, error=str(e))
            return False
        logger.info("invoice_email_sent", invoice_id=invoice.id, recipient=account.email)
        return True

    async def test_connection(self) -> None:
        """
        Send a test message to the support address.

        Raises:
            NotificationError: relay unreachable or message refused
        """
        message = EmailMessage()
        message["Subject"] = "SMTP Test"
        message["From"] = str(self._station.support_email)
        message["To"] = str(self._station.support_email)
        message.set_content("Working!")
        await asyncio.to_thread(self._send_sync, message)
