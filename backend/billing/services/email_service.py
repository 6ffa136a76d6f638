"""Email service for sending transactional emails via SMTP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape
from typing import TYPE_CHECKING

import aiosmtplib

from billing.core.config import settings
from billing.models.payment_reminder import ReminderKind
from billing.services.amounts import format_minor_units

if TYPE_CHECKING:
    from billing.models.invoice import Invoice

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderContent:
    subject: str
    heading: str
    message: str
    color: str


def _format_date(dt: object) -> str:
    """Format a datetime to YYYY-MM-DD, or 'Not specified' if None."""
    if dt is None:
        return "Not specified"
    return str(dt)[:10]


def portal_link(access_token: str) -> str:
    """Public link a client uses to view and pay an invoice."""
    return f"{settings.CLIENT_URL.rstrip('/')}/invoice/{access_token}"


def reminder_content(kind: ReminderKind | str, invoice_number: str, amount: str) -> ReminderContent:
    """Subject, heading and body text for one reminder kind."""
    kind = ReminderKind(kind)
    if kind == ReminderKind.BEFORE_DUE:
        return ReminderContent(
            subject=f"Payment Reminder: Invoice {invoice_number} due in 3 days",
            heading="Payment Reminder",
            message=(
                f"This is a friendly reminder that your invoice {invoice_number} "
                f"for {amount} is due in 3 days."
            ),
            color="#3b82f6",
        )
    if kind == ReminderKind.ON_DUE:
        return ReminderContent(
            subject=f"Payment Due Today: Invoice {invoice_number}",
            heading="Payment Due Today",
            message=(
                f"Your invoice {invoice_number} for {amount} is due today. "
                "Please make your payment to avoid any late fees."
            ),
            color="#f59e0b",
        )
    if kind == ReminderKind.OVERDUE_7:
        return ReminderContent(
            subject=f"Overdue Invoice: {invoice_number} - 7 days past due",
            heading="Invoice Overdue",
            message=(
                f"Your invoice {invoice_number} for {amount} is now 7 days overdue. "
                "Please make your payment as soon as possible."
            ),
            color="#ef4444",
        )
    return ReminderContent(
        subject=f"URGENT: Invoice {invoice_number} - 14 days overdue",
        heading="Urgent Payment Required",
        message=(
            f"Your invoice {invoice_number} for {amount} is now 14 days overdue. "
            "Immediate payment is required to avoid further action."
        ),
        color="#dc2626",
    )


class EmailService:
    """Service for sending transactional emails via SMTP."""

    async def send_email(self, to: str, subject: str, html_body: str) -> bool:
        """Send an email via SMTP.

        Args:
            to: Recipient email address.
            subject: Email subject line.
            html_body: HTML content of the email.

        Returns:
            True if sent successfully (or no-op when SMTP unconfigured).

        Raises:
            aiosmtplib.SMTPException: When the SMTP server rejects the message.
        """
        if not settings.SMTP_HOST:
            logger.info("SMTP not configured, skipping email to %s: %s", to, subject)
            return True

        msg = EmailMessage()
        msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("Please view this email in an HTML-capable client.")
        msg.add_alternative(html_body, subtype="html")

        await aiosmtplib.send(
            msg,
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME or None,
            password=settings.SMTP_PASSWORD or None,
            start_tls=settings.SMTP_USE_TLS,
        )
        logger.info("Email sent to %s: %s", to, subject)
        return True

    async def send_payment_reminder(
        self,
        invoice: Invoice,
        kind: ReminderKind | str,
        business_name: str,
    ) -> bool:
        """Send the reminder email for ``kind`` to the invoice's client."""
        if not invoice.client_email:
            logger.warning("Invoice %s has no client email, skipping reminder", invoice.id)
            return False

        amount = format_minor_units(invoice.total, str(invoice.currency))  # type: ignore[arg-type]
        content = reminder_content(kind, str(invoice.invoice_number), amount)
        link = portal_link(str(invoice.access_token))

        html_body = (
            f'<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f'<h2 style="color: {content.color};">{escape(content.heading)}</h2>'
            f"<p>Dear {escape(str(invoice.client_name or 'Customer'))},</p>"
            f"<p>{escape(content.message)}</p>"
            f"<p>This invoice was issued by <strong>{escape(business_name)}</strong>.</p>"
            f"<table>"
            f"<tr><td><strong>Invoice:</strong></td><td>{escape(str(invoice.invoice_number))}</td></tr>"
            f"<tr><td><strong>Amount Due:</strong></td><td>{escape(amount)}</td></tr>"
            f"<tr><td><strong>Due Date:</strong></td><td>{_format_date(invoice.due_date)}</td></tr>"
            f"</table>"
            f'<p><a href="{escape(link)}">View &amp; Pay Invoice</a></p>'
            f"</div>"
        )

        return await self.send_email(
            to=str(invoice.client_email),
            subject=content.subject,
            html_body=html_body,
        )
