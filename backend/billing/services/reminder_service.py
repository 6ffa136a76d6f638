"""Payment reminder scheduling and the reminder sweep."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from billing.core.config import settings
from billing.models.invoice import PAYABLE_STATUSES, Invoice
from billing.models.payment_reminder import PaymentReminder, ReminderKind, ReminderStatus
from billing.models.shared import ensure_utc, utc_now
from billing.repositories.organization_repository import OrganizationRepository
from billing.repositories.payment_reminder_repository import PaymentReminderRepository
from billing.services.email_service import EmailService

logger = logging.getLogger(__name__)

_OPEN_STATUSES = [ReminderStatus.PENDING.value, ReminderStatus.FAILED.value]


@dataclass
class ReminderSweepResult:
    sent: int = 0
    cancelled: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.sent + self.cancelled + self.failed


class ReminderService:
    """Schedules, cancels and dispatches payment reminders.

    ``schedule`` and ``cancel_all`` only flush so they join the caller's
    transaction; ``process_due`` commits each reminder on its own.
    """

    def __init__(self, db: Session, email_service: EmailService | None = None):
        self.db = db
        self.repo = PaymentReminderRepository(db)
        self.email_service = email_service or EmailService()

    def schedule(
        self,
        invoice_id: UUID,
        due_date: datetime | None,
        now: datetime | None = None,
    ) -> list[PaymentReminder]:
        """Create the reminders that still lie in the future.

        Kinds already present for the invoice are left untouched, so
        scheduling twice never duplicates a reminder.
        """
        now = ensure_utc(now) or utc_now()
        due = ensure_utc(due_date)
        if due is None:
            return []
        existing = self.repo.existing_kinds(invoice_id)

        created: list[PaymentReminder] = []
        for kind in ReminderKind:
            if kind.value in existing:
                continue
            scheduled_for = due + timedelta(days=kind.days_offset)
            if scheduled_for <= now:
                continue
            created.append(
                self.repo.add(
                    PaymentReminder(
                        invoice_id=invoice_id,
                        kind=kind.value,
                        days_offset=kind.days_offset,
                        scheduled_for=scheduled_for,
                        status=ReminderStatus.PENDING.value,
                        attempts=0,
                    )
                )
            )

        if created:
            logger.info("Scheduled %d reminders for invoice %s", len(created), invoice_id)
        return created

    def cancel_all(self, invoice_id: UUID) -> int:
        count = self.repo.cancel_open(invoice_id)
        if count:
            logger.info("Cancelled %d reminders for invoice %s", count, invoice_id)
        return count

    def list_for_invoice(self, invoice_id: UUID) -> list[PaymentReminder]:
        return self.repo.get_for_invoice(invoice_id)

    async def process_due(self, now: datetime | None = None) -> ReminderSweepResult:
        """Dispatch every reminder that is due.

        Failed sends are retried on later sweeps until ``REMINDER_MAX_ATTEMPTS``
        attempts have been made. A reminder for an invoice without a client
        email fails with zero attempts and is never retried.
        """
        now = ensure_utc(now) or utc_now()
        max_attempts = settings.REMINDER_MAX_ATTEMPTS
        result = ReminderSweepResult()

        for reminder in self.repo.get_due(now, max_attempts):
            reminder_id = reminder.id
            try:
                outcome = await self._process_one(reminder, now)
            except Exception:
                self.db.rollback()
                logger.exception("Unexpected error processing reminder %s", reminder_id)
                result.failed += 1
                continue
            if outcome == ReminderStatus.SENT:
                result.sent += 1
            elif outcome == ReminderStatus.CANCELLED:
                result.cancelled += 1
            elif outcome == ReminderStatus.FAILED:
                result.failed += 1

        if result.processed:
            logger.info(
                "Reminder sweep: %d sent, %d cancelled, %d failed",
                result.sent,
                result.cancelled,
                result.failed,
            )
        return result

    async def _process_one(
        self, reminder: PaymentReminder, now: datetime
    ) -> ReminderStatus | None:
        reminder_id: UUID = reminder.id  # type: ignore[assignment]
        invoice = self.db.get(Invoice, reminder.invoice_id)

        if invoice is None or invoice.status not in PAYABLE_STATUSES:
            changed = self.repo.set_status(
                reminder_id, _OPEN_STATUSES, {"status": ReminderStatus.CANCELLED.value}
            )
            self.db.commit()
            return ReminderStatus.CANCELLED if changed else None

        if not invoice.client_email:
            changed = self.repo.set_status(
                reminder_id,
                _OPEN_STATUSES,
                {"status": ReminderStatus.FAILED.value, "error_message": "No client email"},
            )
            self.db.commit()
            return ReminderStatus.FAILED if changed else None

        attempts = int(reminder.attempts or 0) + 1
        org = OrganizationRepository(self.db).get_by_id(invoice.organization_id)  # type: ignore[arg-type]
        business_name = str(org.name) if org and org.name else settings.APP_NAME

        try:
            await self.email_service.send_payment_reminder(invoice, reminder.kind, business_name)
        except Exception as e:
            logger.exception(
                "Failed to send %s reminder for invoice %s (attempt %d)",
                reminder.kind,
                invoice.invoice_number,
                attempts,
            )
            changed = self.repo.set_status(
                reminder_id,
                _OPEN_STATUSES,
                {
                    "status": ReminderStatus.FAILED.value,
                    "attempts": attempts,
                    "error_message": str(e) or e.__class__.__name__,
                },
            )
            self.db.commit()
            return ReminderStatus.FAILED if changed else None

        changed = self.repo.set_status(
            reminder_id,
            _OPEN_STATUSES,
            {
                "status": ReminderStatus.SENT.value,
                "attempts": attempts,
                "sent_at": now,
                "error_message": None,
            },
        )
        self.db.commit()
        if changed:
            logger.info("Sent %s reminder for invoice %s", reminder.kind, invoice.invoice_number)
            return ReminderStatus.SENT
        return None
