from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from billing.models.payment_reminder import PaymentReminder, ReminderStatus


class PaymentReminderRepository:
    """Reminder persistence. Write methods flush only; callers commit."""

    def __init__(self, db: Session):
        self.db = db

    def get_for_invoice(self, invoice_id: UUID) -> list[PaymentReminder]:
        return (
            self.db.query(PaymentReminder)
            .filter(PaymentReminder.invoice_id == invoice_id)
            .order_by(PaymentReminder.scheduled_for.asc())
            .all()
        )

    def existing_kinds(self, invoice_id: UUID) -> set[str]:
        rows = (
            self.db.query(PaymentReminder.kind)
            .filter(PaymentReminder.invoice_id == invoice_id)
            .all()
        )
        return {row[0] for row in rows}

    def add(self, reminder: PaymentReminder) -> PaymentReminder:
        self.db.add(reminder)
        self.db.flush()
        return reminder

    def cancel_open(self, invoice_id: UUID) -> int:
        """Cancel pending and failed reminders so nothing retries them."""
        result = self.db.execute(
            update(PaymentReminder)
            .where(
                PaymentReminder.invoice_id == invoice_id,
                PaymentReminder.status.in_(
                    [ReminderStatus.PENDING.value, ReminderStatus.FAILED.value]
                ),
            )
            .values(status=ReminderStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    def get_due(self, now: datetime, max_attempts: int) -> list[PaymentReminder]:
        """Pending reminders that are due, plus failed ones still under the retry cap."""
        return (
            self.db.query(PaymentReminder)
            .filter(
                PaymentReminder.scheduled_for <= now,
                or_(
                    PaymentReminder.status == ReminderStatus.PENDING.value,
                    and_(
                        PaymentReminder.status == ReminderStatus.FAILED.value,
                        PaymentReminder.attempts > 0,
                        PaymentReminder.attempts < max_attempts,
                    ),
                ),
            )
            .order_by(PaymentReminder.scheduled_for.asc())
            .all()
        )

    def set_status(
        self,
        reminder_id: UUID,
        from_statuses: list[str],
        values: dict,
    ) -> bool:
        result = self.db.execute(
            update(PaymentReminder)
            .where(PaymentReminder.id == reminder_id, PaymentReminder.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]
