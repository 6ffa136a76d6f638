"""Invoice lifecycle: creation, editing, sending, cancellation and payment.

Every status change is a conditional UPDATE keyed on the statuses it may
leave from, so concurrent callers cannot both win the same transition.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from billing.core.config import settings
from billing.core.errors import AccessDeniedError, InvalidStateError, NotFoundError, ValidationError
from billing.models.invoice import PAYABLE_STATUSES, Invoice, InvoiceStatus, PaymentMethod
from billing.models.shared import DEFAULT_ORGANIZATION_ID, ensure_utc, utc_now
from billing.repositories.invoice_repository import InvoiceRepository
from billing.repositories.organization_repository import OrganizationRepository
from billing.schemas.invoice import InvoiceCreate, InvoiceUpdate
from billing.services.amounts import calculate_amounts
from billing.services.reminder_service import ReminderService

logger = logging.getLogger(__name__)

_ACCESS_DENIED = "Invoice not found or access denied"


@dataclass
class MarkPaidResult:
    invoice: Invoice
    already_paid: bool = False


class InvoiceLedger:
    def __init__(self, db: Session, reminder_service: ReminderService | None = None):
        self.db = db
        self.repo = InvoiceRepository(db)
        self.reminders = reminder_service or ReminderService(db)

    def get(self, invoice_id: UUID, organization_id: UUID | None = None) -> Invoice:
        invoice = self.repo.get_by_id(invoice_id, organization_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    def create(
        self,
        data: InvoiceCreate,
        organization_id: UUID = DEFAULT_ORGANIZATION_ID,
        recurring_template_id: UUID | None = None,
        now: datetime | None = None,
        commit: bool = True,
    ) -> Invoice:
        """Create an invoice, publishing it as SENT unless ``data.publish`` is false.

        With ``commit=False`` the insert and its reminders are only flushed,
        leaving the transaction to the caller.
        """
        now = ensure_utc(now) or utc_now()
        currency = data.currency.upper()
        if currency not in settings.SUPPORTED_CURRENCIES:
            raise ValidationError(f"Unsupported currency: {currency}")
        client_name = (data.client_name or "").strip()
        if not client_name:
            raise ValidationError("Client name is required")

        amounts = calculate_amounts(data.line_items, currency)
        due_date = ensure_utc(data.due_date)
        status = InvoiceStatus.SENT if data.publish else InvoiceStatus.DRAFT

        invoice = Invoice(
            organization_id=organization_id,
            recurring_template_id=recurring_template_id,
            status=status.value,
            client_name=client_name,
            client_email=data.client_email,
            client_phone=data.client_phone,
            client_address=data.client_address,
            currency=currency,
            line_items=amounts.line_items,
            subtotal=amounts.subtotal,
            tax_rate=amounts.tax_rate,
            tax_amount=amounts.tax_amount,
            total=amounts.total,
            notes=data.notes,
            due_date=due_date,
            sent_at=now if data.publish else None,
            view_count=0,
        )

        prefix = OrganizationRepository(self.db).invoice_prefix(
            organization_id, settings.DEFAULT_INVOICE_PREFIX
        )
        try:
            self.repo.add_with_unique_number(invoice, prefix, now)
            if data.publish:
                self.reminders.schedule(invoice.id, due_date, now)  # type: ignore[arg-type]
            if commit:
                self.db.commit()
        except Exception:
            if commit:
                self.db.rollback()
            raise

        if commit:
            self.db.refresh(invoice)
            logger.info("Created invoice %s (%s)", invoice.invoice_number, invoice.status)
        return invoice

    def update_draft(
        self,
        invoice_id: UUID,
        data: InvoiceUpdate,
        organization_id: UUID | None = None,
    ) -> Invoice:
        invoice = self.get(invoice_id, organization_id)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise InvalidStateError("Only draft invoices can be edited")

        values = data.model_dump(exclude_unset=True)
        line_items = values.pop("line_items", None)
        if values.get("client_name") is not None:
            values["client_name"] = values["client_name"].strip()
            if not values["client_name"]:
                raise ValidationError("Client name is required")
        elif "client_name" in values:
            values.pop("client_name")
        if "due_date" in values:
            values["due_date"] = ensure_utc(values["due_date"])

        if line_items is not None:
            amounts = calculate_amounts(data.line_items or [], str(invoice.currency))
            values.update(
                line_items=amounts.line_items,
                subtotal=amounts.subtotal,
                tax_rate=amounts.tax_rate,
                tax_amount=amounts.tax_amount,
                total=amounts.total,
            )

        if not values:
            return invoice

        if not self.repo.transition(invoice.id, [InvoiceStatus.DRAFT.value], values):  # type: ignore[arg-type]
            self.db.rollback()
            raise InvalidStateError("Only draft invoices can be edited")
        self.db.commit()
        return self.repo.reload(invoice)

    def send(
        self,
        invoice_id: UUID,
        organization_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        """Publish a draft. Sending an already sent invoice changes nothing."""
        now = ensure_utc(now) or utc_now()
        invoice = self.get(invoice_id, organization_id)
        if invoice.status in PAYABLE_STATUSES:
            return invoice
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise InvalidStateError(f"Cannot send a {invoice.status} invoice")

        moved = self.repo.transition(
            invoice.id,  # type: ignore[arg-type]
            [InvoiceStatus.DRAFT.value],
            {"status": InvoiceStatus.SENT.value, "sent_at": now},
        )
        if not moved:
            self.db.rollback()
            invoice = self.repo.reload(invoice)
            if invoice.status in PAYABLE_STATUSES:
                return invoice
            raise InvalidStateError(f"Cannot send a {invoice.status} invoice")

        try:
            self.reminders.schedule(invoice.id, invoice.due_date, now)  # type: ignore[arg-type]
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Sent invoice %s", invoice.invoice_number)
        return self.repo.reload(invoice)

    def cancel(
        self,
        invoice_id: UUID,
        organization_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        """Cancel an unpaid invoice together with its open reminders."""
        now = ensure_utc(now) or utc_now()
        invoice = self.get(invoice_id, organization_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            return invoice
        if invoice.status == InvoiceStatus.PAID.value:
            raise InvalidStateError("Paid invoices cannot be cancelled")

        moved = self.repo.transition(
            invoice.id,  # type: ignore[arg-type]
            [InvoiceStatus.DRAFT.value, *PAYABLE_STATUSES],
            {"status": InvoiceStatus.CANCELLED.value, "cancelled_at": now},
        )
        if not moved:
            self.db.rollback()
            invoice = self.repo.reload(invoice)
            if invoice.status == InvoiceStatus.CANCELLED.value:
                return invoice
            raise InvalidStateError("Paid invoices cannot be cancelled")

        self.reminders.cancel_all(invoice.id)  # type: ignore[arg-type]
        self.db.commit()
        logger.info("Cancelled invoice %s", invoice.invoice_number)
        return self.repo.reload(invoice)

    def mark_paid(
        self,
        invoice_id: UUID,
        method: PaymentMethod | str,
        external_ref: str,
        receipt: str | None = None,
        now: datetime | None = None,
    ) -> MarkPaidResult:
        """Settle a payable invoice.

        Safe under duplicate delivery: when the conditional update matches no
        row because the invoice is already PAID, the result is flagged
        ``already_paid`` and nothing else happens.
        """
        now = ensure_utc(now) or utc_now()
        method = PaymentMethod(method)

        moved = self.repo.transition(
            invoice_id,
            PAYABLE_STATUSES,
            {
                "status": InvoiceStatus.PAID.value,
                "paid_at": now,
                "payment_method": method.value,
                "payment_ref": external_ref,
                "payment_receipt": receipt,
            },
        )
        if moved:
            self.reminders.cancel_all(invoice_id)
            self.db.commit()
            invoice = self.get(invoice_id)
            logger.info(
                "Invoice %s paid via %s (ref %s)", invoice.invoice_number, method.value, external_ref
            )
            return MarkPaidResult(invoice=invoice)

        self.db.rollback()
        invoice = self.get(invoice_id)
        if invoice.status == InvoiceStatus.PAID.value:
            logger.info("Invoice %s already paid, ignoring %s", invoice.invoice_number, external_ref)
            return MarkPaidResult(invoice=invoice, already_paid=True)
        raise InvalidStateError(f"Cannot pay a {invoice.status} invoice")

    def get_by_token(self, token: str | None) -> Invoice:
        if not token:
            raise AccessDeniedError(_ACCESS_DENIED)
        invoice = self.repo.get_by_access_token(token)
        if invoice is None:
            raise AccessDeniedError(_ACCESS_DENIED)
        return invoice

    def view(self, token: str | None, now: datetime | None = None) -> Invoice:
        """Resolve a portal token and count the view."""
        now = ensure_utc(now) or utc_now()
        invoice = self.get_by_token(token)
        self.repo.record_view(invoice.id, now)  # type: ignore[arg-type]
        self.db.commit()
        return self.repo.reload(invoice)

    def mark_overdue(self, now: datetime | None = None) -> int:
        now = ensure_utc(now) or utc_now()
        count = self.repo.mark_overdue(now)
        self.db.commit()
        if count:
            logger.info("Marked %d invoices overdue", count)
        return count
