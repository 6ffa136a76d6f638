from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from billing.core.database import Base
from billing.models.shared import DEFAULT_ORGANIZATION_ID, TimestampMixin, UUIDType, generate_uuid


class Frequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class RecurringTemplate(TimestampMixin, Base):
    __tablename__ = "recurring_templates"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    organization_id = Column(
        UUIDType,
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        default=DEFAULT_ORGANIZATION_ID,
    )

    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=False)
    client_phone = Column(String(50), nullable=True)
    client_address = Column(String(500), nullable=True)

    # [{description, quantity, rate}] copied onto each generated invoice
    items = Column(JSON, nullable=False, default=list)
    currency = Column(String(3), nullable=False, default="KES")
    notes = Column(Text, nullable=True)

    frequency = Column(String(20), nullable=False)
    next_due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    # Day of month the schedule was anchored on; keeps month-end schedules from drifting
    anchor_day = Column(Integer, nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    total_generated = Column(Integer, nullable=False, default=0)
    last_generated_at = Column(DateTime(timezone=True), nullable=True)
