from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from billing.models.payment_anomaly import PaymentAnomaly


class PaymentAnomalyRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        rail: str,
        reason: str,
        reference: str | None = None,
        invoice_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> PaymentAnomaly:
        anomaly = PaymentAnomaly(
            rail=rail,
            reason=reason,
            reference=reference,
            invoice_id=invoice_id,
            payload=payload,
        )
        self.db.add(anomaly)
        self.db.commit()
        self.db.refresh(anomaly)
        return anomaly

    def get_all(
        self,
        rail: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[PaymentAnomaly]:
        query = self.db.query(PaymentAnomaly)
        if rail:
            query = query.filter(PaymentAnomaly.rail == rail)
        return query.order_by(PaymentAnomaly.created_at.desc()).offset(skip).limit(limit).all()
