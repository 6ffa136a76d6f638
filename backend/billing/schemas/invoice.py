from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class LineItemInput(BaseModel):
    description: str = Field(min_length=1, max_length=500)
    quantity: int = Field(ge=1)
    # Minor currency units
    rate: int = Field(ge=0)

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("description must not be blank")
        return v.strip()


class LineItem(LineItemInput):
    amount: int


class InvoiceCreate(BaseModel):
    client_name: str = Field(min_length=1, max_length=255)
    client_email: str | None = Field(default=None, max_length=255)
    client_phone: str | None = Field(default=None, max_length=50)
    client_address: str | None = Field(default=None, max_length=500)
    currency: str = Field(default="KES", min_length=3, max_length=3)
    line_items: list[LineItemInput] = Field(min_length=1)
    due_date: datetime | None = None
    notes: str | None = None
    publish: bool = True

    @field_validator("client_name")
    @classmethod
    def client_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Client name is required")
        return v.strip()

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class InvoiceUpdate(BaseModel):
    client_name: str | None = Field(default=None, min_length=1, max_length=255)
    client_email: str | None = Field(default=None, max_length=255)
    client_phone: str | None = Field(default=None, max_length=50)
    client_address: str | None = Field(default=None, max_length=500)
    line_items: list[LineItemInput] | None = Field(default=None, min_length=1)
    due_date: datetime | None = None
    notes: str | None = None


class InvoiceResponse(BaseModel):
    id: UUID
    invoice_number: str
    recurring_template_id: UUID | None
    status: str
    client_name: str
    client_email: str | None
    client_phone: str | None
    client_address: str | None
    currency: str
    line_items: list[dict[str, Any]]
    subtotal: int
    tax_rate: Decimal
    tax_amount: int
    total: int
    notes: str | None
    access_token: str
    payment_method: str | None
    payment_ref: str | None
    payment_receipt: str | None
    pdf_url: str | None
    view_count: int
    last_viewed_at: datetime | None
    due_date: datetime | None
    sent_at: datetime | None
    paid_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class InvoiceCreatedResponse(InvoiceResponse):
    portal_link: str


class InvoicePdfResponse(BaseModel):
    invoice_number: str
    pdf_url: str
