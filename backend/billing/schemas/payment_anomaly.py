from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class PaymentAnomalyResponse(BaseModel):
    id: UUID
    rail: str
    reference: str | None
    invoice_id: UUID | None
    reason: str
    payload: dict[str, Any] | None
    created_at: datetime

    model_config = {"from_attributes": True}
