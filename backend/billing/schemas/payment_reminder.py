from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class PaymentReminderResponse(BaseModel):
    id: UUID
    invoice_id: UUID
    kind: str
    days_offset: int
    scheduled_for: datetime
    status: str
    attempts: int
    error_message: str | None
    sent_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
