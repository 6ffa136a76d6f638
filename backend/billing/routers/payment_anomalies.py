from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from billing.core.auth import get_current_organization
from billing.core.database import get_db
from billing.models.invoice import PaymentMethod
from billing.models.payment_anomaly import PaymentAnomaly
from billing.repositories.payment_anomaly_repository import PaymentAnomalyRepository
from billing.schemas.payment_anomaly import PaymentAnomalyResponse

router = APIRouter()


@router.get(
    "/",
    response_model=list[PaymentAnomalyResponse],
    summary="List payment anomalies",
    responses={401: {"description": "Unauthorized – invalid or missing API key"}},
)
async def list_payment_anomalies(
    rail: PaymentMethod | None = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[PaymentAnomaly]:
    """Rail notifications that were acknowledged but could not be applied."""
    return PaymentAnomalyRepository(db).get_all(
        rail=rail.value if rail else None, skip=skip, limit=limit
    )
