"""PaymentAnomaly model for notifications that could not be reconciled."""

from sqlalchemy import JSON, Column, String

from billing.core.database import Base
from billing.models.shared import CreatedAtMixin, UUIDType, generate_uuid


class PaymentAnomaly(CreatedAtMixin, Base):
    """A rail notification that was acknowledged but not applied to an invoice."""

    __tablename__ = "payment_anomalies"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    rail = Column(String(20), nullable=False, index=True)
    reference = Column(String(255), nullable=True, index=True)
    invoice_id = Column(UUIDType, nullable=True, index=True)
    reason = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=True)
