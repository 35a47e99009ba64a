"""
Tests for the invoice mailer.

smtplib is patched; no mail leaves the machine.
"""

import datetime as dt
import smtplib
from decimal import Decimal
from unittest.mock import patch

import pytest

from fuelcharge.config import StationSettings
from fuelcharge.models.ledger import Account, Invoice, LineItem
from fuelcharge.services.notifications import (
    InvoiceMailer,
    NotificationError,
    render_invoice_html,
)


@pytest.fixture
def customer():
    return Account(
        id="ACC-TEST0001",
        name="Hansen & Sons",
        email="office@hansenfarms.com",
        created_at=dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc),
    )


@pytest.fixture
def invoice():
    return Invoice(
        id="INV-TEST0001",
        account_id="ACC-TEST0001",
        date=dt.date(2026, 3, 1),
        due_date=dt.date(2026, 3, 16),
        amount=Decimal("214.50"),
        items=[LineItem(description="Diesel <red>", quantity=Decimal("50"), price=Decimal("4.00"))],
    )


class TestRender:

    def test_html_contains_items_and_total(self, invoice, customer, station):
        html = render_invoice_html(invoice, customer, station)

        assert "Ruthton Express" in html
        assert "INV-TEST0001" in html
        assert "$200.00" in html
        assert "Total Due" in html
        assert "$214.50" in html

    def test_html_escapes_text(self, invoice, customer, station):
        html = render_invoice_html(invoice, customer, station)

        assert "Hansen &amp; Sons" in html
        assert "Diesel &lt;red&gt;" in html
        assert "<red>" not in html


class TestSendInvoice:

    def test_build_message(self, invoice, customer, station):
        message = InvoiceMailer(station).build_message(invoice, customer)

        assert message["Subject"] == "Invoice INV-TEST0001"
        assert message["To"] == "office@hansenfarms.com"
        assert message["From"] == "billing@ruthtonexpress.com"
        assert message.get_body(preferencelist=("html",)) is not None

    async def test_send_uses_starttls(self, invoice, customer, station):
        with patch("fuelcharge.services.notifications.mailer.smtplib.SMTP") as smtp_class:
            server = smtp_class.return_value
            server.has_extn.return_value = True

            assert await InvoiceMailer(station).send_invoice(invoice, customer) is True

        smtp_class.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("billing", "secret")
        server.send_message.assert_called_once()
        server.quit.assert_called_once()

    async def test_implicit_tls_port(self, invoice, customer, station):
        station = station.model_copy(update={"smtp_port": 465})

        with patch("fuelcharge.services.notifications.mailer.smtplib.SMTP_SSL") as smtp_ssl_class:
            assert await InvoiceMailer(station).send_invoice(invoice, customer) is True

        smtp_ssl_class.return_value.send_message.assert_called_once()

    async def test_refused_message_returns_false(self, invoice, customer, station):
        """Test that a relay failure is reported, not raised."""
        with patch("fuelcharge.services.notifications.mailer.smtplib.SMTP") as smtp_class:
            server = smtp_class.return_value
            server.has_extn.return_value = False
            server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})

            assert await InvoiceMailer(station).send_invoice(invoice, customer) is False

        server.quit.assert_called_once()

    async def test_unreachable_relay_returns_false(self, invoice, customer, station):
        with patch(
            "fuelcharge.services.notifications.mailer.smtplib.SMTP",
            side_effect=ConnectionRefusedError("connection refused"),
        ):
            assert await InvoiceMailer(station).send_invoice(invoice, customer) is False

    async def test_not_configured(self, invoice, customer):
        mailer = InvoiceMailer(StationSettings(smtp_host=None))

        assert await mailer.send_invoice(invoice, customer) is False
        with pytest.raises(NotificationError):
            await mailer.test_connection()
