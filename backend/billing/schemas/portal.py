"""Public client-portal schemas.

These never carry organization ids, template ids, access tokens or payment
references; the access token in the URL is the only credential.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class PortalInvoice(BaseModel):
    invoice_number: str
    client_name: str
    client_email: str | None
    line_items: list[dict[str, Any]]
    subtotal: int
    tax_rate: Decimal
    tax_amount: int
    total: int
    currency: str
    status: str
    due_date: datetime | None
    paid_at: datetime | None
    notes: str | None
    pdf_url: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PortalIssuer(BaseModel):
    name: str
    email: str | None
    phone: str | None
    address: str | None
    logo_url: str | None
    tax_id: str | None

    model_config = {"from_attributes": True}


class PortalInvoiceResponse(BaseModel):
    invoice: PortalInvoice
    business: PortalIssuer | None


class PortalStatusResponse(BaseModel):
    status: str
    paid_at: datetime | None
    payment_method: str | None


class MpesaPaymentRequest(BaseModel):
    phone_number: str = Field(min_length=9, max_length=20)


class MpesaPaymentResponse(BaseModel):
    message: str
    checkout_request_id: str
    demo: bool = False


class PaystackPaymentResponse(BaseModel):
    authorization_url: str
    reference: str
