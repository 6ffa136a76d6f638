from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from billing.core.database import Base
from billing.models.shared import DEFAULT_ORGANIZATION_ID, TimestampMixin, UUIDType, generate_uuid


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


PAYABLE_STATUSES = (InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value)


class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    PAYSTACK = "paystack"


class Invoice(TimestampMixin, Base):
    __tablename__ = "invoices"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    organization_id = Column(
        UUIDType,
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        default=DEFAULT_ORGANIZATION_ID,
    )
    recurring_template_id = Column(
        UUIDType,
        ForeignKey("recurring_templates.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    invoice_number = Column(String(50), unique=True, index=True, nullable=False)
    access_token = Column(String(64), unique=True, index=True, nullable=False)
    status = Column(String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)

    # Client
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=True)
    client_phone = Column(String(50), nullable=True)
    client_address = Column(String(500), nullable=True)

    # Amounts in minor currency units
    subtotal = Column(Integer, nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="KES")

    # Ordered [{description, quantity, rate, amount}]
    line_items = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    # Payment reconciliation
    payment_method = Column(String(20), nullable=True)
    payment_ref = Column(String(255), nullable=True, index=True)
    payment_receipt = Column(String(255), nullable=True)

    pdf_url = Column(String(2048), nullable=True)

    view_count = Column(Integer, nullable=False, default=0)
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)

    due_date = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
