from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from billing.models.recurring_template import RecurringTemplate
from billing.models.shared import ensure_utc
from billing.schemas.recurring_template import RecurringTemplateCreate, RecurringTemplateUpdate

_NULLABLE_FIELDS = {"client_phone", "client_address", "notes", "end_date"}


class RecurringTemplateRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_all(
        self,
        organization_id: UUID | None = None,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> list[RecurringTemplate]:
        query = self.db.query(RecurringTemplate)
        if organization_id is not None:
            query = query.filter(RecurringTemplate.organization_id == organization_id)
        if active_only:
            query = query.filter(RecurringTemplate.is_active.is_(True))
        return query.order_by(RecurringTemplate.created_at.desc()).offset(skip).limit(limit).all()

    def get_by_id(
        self, template_id: UUID, organization_id: UUID | None = None
    ) -> RecurringTemplate | None:
        query = self.db.query(RecurringTemplate).filter(RecurringTemplate.id == template_id)
        if organization_id is not None:
            query = query.filter(RecurringTemplate.organization_id == organization_id)
        return query.first()

    def create(
        self,
        data: RecurringTemplateCreate,
        organization_id: UUID,
        items: list[dict],
        next_due_date: datetime,
    ) -> RecurringTemplate:
        template = RecurringTemplate(
            organization_id=organization_id,
            client_name=data.client_name,
            client_email=data.client_email,
            client_phone=data.client_phone,
            client_address=data.client_address,
            items=items,
            currency=data.currency,
            notes=data.notes,
            frequency=data.frequency.value,
            next_due_date=next_due_date,
            anchor_day=next_due_date.day,
            end_date=ensure_utc(data.end_date),
            is_active=True,
        )
        self.db.add(template)
        self.db.commit()
        self.db.refresh(template)
        return template

    def update(
        self,
        template: RecurringTemplate,
        data: RecurringTemplateUpdate,
        items: list[dict] | None = None,
    ) -> RecurringTemplate:
        update_data = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in _NULLABLE_FIELDS
        }
        update_data.pop("items", None)

        if "frequency" in update_data and update_data["frequency"]:
            update_data["frequency"] = update_data["frequency"].value
        if "currency" in update_data and update_data["currency"]:
            update_data["currency"] = update_data["currency"].upper()
        if "end_date" in update_data:
            update_data["end_date"] = ensure_utc(update_data["end_date"])
        if items is not None:
            update_data["items"] = items

        for key, value in update_data.items():
            setattr(template, key, value)

        self.db.commit()
        self.db.refresh(template)
        return template

    def deactivate(self, template: RecurringTemplate) -> RecurringTemplate:
        template.is_active = False  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(template)
        return template

    def get_due(self, now: datetime) -> list[RecurringTemplate]:
        """Active templates whose next cycle is due and still inside the end date."""
        return (
            self.db.query(RecurringTemplate)
            .filter(
                RecurringTemplate.is_active.is_(True),
                RecurringTemplate.next_due_date <= now,
                or_(
                    RecurringTemplate.end_date.is_(None),
                    RecurringTemplate.end_date >= RecurringTemplate.next_due_date,
                ),
            )
            .order_by(RecurringTemplate.next_due_date.asc())
            .all()
        )

    def claim_cycle(
        self,
        template_id: UUID,
        expected_next_due_date: datetime,
        new_next_due_date: datetime,
        generated_at: datetime,
    ) -> bool:
        """Advance the schedule only if nobody else has advanced it yet.

        The ``next_due_date`` read by the caller is the compare-and-set key:
        a concurrent generation of the same cycle matches zero rows. Does not
        commit.
        """
        result = self.db.execute(
            update(RecurringTemplate)
            .where(
                RecurringTemplate.id == template_id,
                RecurringTemplate.next_due_date == expected_next_due_date,
                RecurringTemplate.is_active.is_(True),
                or_(
                    RecurringTemplate.end_date.is_(None),
                    RecurringTemplate.end_date >= expected_next_due_date,
                ),
            )
            .values(
                next_due_date=new_next_due_date,
                total_generated=RecurringTemplate.total_generated + 1,
                last_generated_at=generated_at,
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]
