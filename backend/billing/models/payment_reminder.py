from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from billing.core.database import Base
from billing.models.shared import TimestampMixin, UUIDType, generate_uuid


class ReminderKind(str, Enum):
    BEFORE_DUE = "before_due"
    ON_DUE = "on_due"
    OVERDUE_7 = "overdue_7"
    OVERDUE_14 = "overdue_14"

    @property
    def days_offset(self) -> int:
        return _REMINDER_OFFSETS[self]


_REMINDER_OFFSETS = {
    ReminderKind.BEFORE_DUE: -3,
    ReminderKind.ON_DUE: 0,
    ReminderKind.OVERDUE_7: 7,
    ReminderKind.OVERDUE_14: 14,
}


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PaymentReminder(TimestampMixin, Base):
    __tablename__ = "payment_reminders"
    __table_args__ = (UniqueConstraint("invoice_id", "kind", name="uq_payment_reminders_invoice_kind"),)

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    invoice_id = Column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(String(20), nullable=False)
    days_offset = Column(Integer, nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ReminderStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
