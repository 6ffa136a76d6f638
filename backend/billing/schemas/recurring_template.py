from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from billing.models.recurring_template import Frequency
from billing.schemas.invoice import LineItemInput


class RecurringTemplateCreate(BaseModel):
    client_name: str = Field(min_length=1, max_length=255)
    client_email: str = Field(min_length=3, max_length=255)
    client_phone: str | None = Field(default=None, max_length=50)
    client_address: str | None = Field(default=None, max_length=500)
    items: list[LineItemInput] = Field(min_length=1)
    currency: str = Field(default="KES", min_length=3, max_length=3)
    notes: str | None = None
    frequency: Frequency
    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("client_name", "client_email")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def end_after_start(self) -> "RecurringTemplateCreate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RecurringTemplateUpdate(BaseModel):
    client_name: str | None = Field(default=None, min_length=1, max_length=255)
    client_email: str | None = Field(default=None, min_length=3, max_length=255)
    client_phone: str | None = Field(default=None, max_length=50)
    client_address: str | None = Field(default=None, max_length=500)
    items: list[LineItemInput] | None = Field(default=None, min_length=1)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = None
    frequency: Frequency | None = None
    end_date: datetime | None = None
    is_active: bool | None = None


class RecurringTemplateResponse(BaseModel):
    id: UUID
    client_name: str
    client_email: str
    client_phone: str | None
    client_address: str | None
    items: list[dict[str, Any]]
    currency: str
    notes: str | None
    frequency: str
    next_due_date: datetime
    anchor_day: int
    end_date: datetime | None
    is_active: bool
    total_generated: int
    last_generated_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RecentInvoiceSummary(BaseModel):
    id: UUID
    invoice_number: str
    status: str
    total: int
    due_date: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class RecurringTemplateDetailResponse(RecurringTemplateResponse):
    recent_invoices: list[RecentInvoiceSummary] = Field(default_factory=list)


class GenerateInvoiceResponse(BaseModel):
    invoice_id: UUID
    invoice_number: str
    total: int
    portal_link: str
