from sqlalchemy import JSON, Column, String

from billing.core.database import Base
from billing.models.shared import TimestampMixin, UUIDType, generate_uuid


class Organization(TimestampMixin, Base):
    """The issuing business: shown on invoices, PDFs and the client portal."""

    __tablename__ = "organizations"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    logo_url = Column(String(2048), nullable=True)
    tax_id = Column(String(100), nullable=True)
    invoice_prefix = Column(String(20), nullable=True)

    # bank_name, account_name, account_number, iban, swift, mpesa_paybill, mpesa_till
    payment_details = Column(JSON, nullable=True)
