"""Recurring templates and the invoices generated from them."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from billing.core.config import settings
from billing.core.errors import (
    GenerationConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from billing.models.invoice import Invoice
from billing.models.recurring_template import RecurringTemplate
from billing.models.shared import DEFAULT_ORGANIZATION_ID, ensure_utc, utc_now
from billing.repositories.invoice_repository import InvoiceRepository
from billing.repositories.recurring_template_repository import RecurringTemplateRepository
from billing.schemas.invoice import InvoiceCreate, LineItemInput
from billing.schemas.recurring_template import RecurringTemplateCreate, RecurringTemplateUpdate
from billing.services.amounts import normalize_line_items
from billing.services.invoice_ledger import InvoiceLedger
from billing.services.recurrence import next_due_date

logger = logging.getLogger(__name__)


@dataclass
class RecurringSweepResult:
    generated: list[str] = field(default_factory=list)
    conflicts: list[UUID] = field(default_factory=list)
    failures: dict[UUID, str] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.generated)


def _template_items(items: list) -> list[dict]:
    """Stored item template: description, quantity and rate only."""
    return [
        {"description": i["description"], "quantity": i["quantity"], "rate": i["rate"]}
        for i in normalize_line_items(items)
    ]


def _within_end_date(template: RecurringTemplate, due: datetime) -> bool:
    end_date = ensure_utc(template.end_date)  # type: ignore[arg-type]
    return end_date is None or due <= end_date


class RecurringInvoiceService:
    def __init__(self, db: Session, ledger: InvoiceLedger | None = None):
        self.db = db
        self.repo = RecurringTemplateRepository(db)
        self.invoices = InvoiceRepository(db)
        self.ledger = ledger or InvoiceLedger(db)

    def create_template(
        self,
        data: RecurringTemplateCreate,
        organization_id: UUID = DEFAULT_ORGANIZATION_ID,
        now: datetime | None = None,
    ) -> RecurringTemplate:
        now = ensure_utc(now) or utc_now()
        if data.currency not in settings.SUPPORTED_CURRENCIES:
            raise ValidationError(f"Unsupported currency: {data.currency}")
        start = ensure_utc(data.start_date) or now
        template = self.repo.create(
            data,
            organization_id=organization_id,
            items=_template_items(data.items),
            next_due_date=start,
        )
        logger.info(
            "Created %s recurring template %s for %s",
            template.frequency,
            template.id,
            template.client_name,
        )
        return template

    def list_templates(
        self,
        organization_id: UUID | None = None,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> list[RecurringTemplate]:
        return self.repo.get_all(organization_id, active_only=active_only, skip=skip, limit=limit)

    def get_template(
        self, template_id: UUID, organization_id: UUID | None = None
    ) -> RecurringTemplate:
        template = self.repo.get_by_id(template_id, organization_id)
        if template is None:
            raise NotFoundError("Recurring template not found")
        return template

    def recent_invoices(self, template_id: UUID, limit: int = 10) -> list[Invoice]:
        return self.invoices.recent_for_template(template_id, limit)

    def update_template(
        self,
        template_id: UUID,
        data: RecurringTemplateUpdate,
        organization_id: UUID | None = None,
    ) -> RecurringTemplate:
        template = self.get_template(template_id, organization_id)
        if data.currency and data.currency.upper() not in settings.SUPPORTED_CURRENCIES:
            raise ValidationError(f"Unsupported currency: {data.currency}")
        items = _template_items(data.items) if data.items is not None else None
        return self.repo.update(template, data, items=items)

    def deactivate_template(
        self, template_id: UUID, organization_id: UUID | None = None
    ) -> RecurringTemplate:
        template = self.get_template(template_id, organization_id)
        template = self.repo.deactivate(template)
        logger.info("Deactivated recurring template %s", template_id)
        return template

    def generate(
        self,
        template_id: UUID,
        organization_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        """Generate the invoice for the template's next cycle and advance it.

        The schedule advance and the invoice insert commit together. If another
        caller already claimed this cycle, raises GenerationConflictError and
        nothing is written.
        """
        now = ensure_utc(now) or utc_now()
        template = self.get_template(template_id, organization_id)
        if not template.is_active:
            raise InvalidStateError("Recurring template is not active")

        cycle_due = ensure_utc(template.next_due_date)  # type: ignore[arg-type]
        if cycle_due is None or not _within_end_date(template, cycle_due):
            raise InvalidStateError("Recurring template has passed its end date")

        new_due = next_due_date(cycle_due, template.frequency, template.anchor_day)  # type: ignore[arg-type]

        try:
            claimed = self.repo.claim_cycle(
                template.id,  # type: ignore[arg-type]
                expected_next_due_date=cycle_due,
                new_next_due_date=new_due,
                generated_at=now,
            )
            if not claimed:
                raise GenerationConflictError(
                    f"Cycle {cycle_due.date()} of template {template.id} was already generated"
                )

            data = InvoiceCreate(
                client_name=str(template.client_name),
                client_email=template.client_email,  # type: ignore[arg-type]
                client_phone=template.client_phone,  # type: ignore[arg-type]
                client_address=template.client_address,  # type: ignore[arg-type]
                currency=str(template.currency),
                line_items=[LineItemInput(**item) for item in template.items],  # type: ignore[union-attr]
                due_date=now + timedelta(days=settings.INVOICE_DUE_DAYS),
                notes=template.notes,  # type: ignore[arg-type]
                publish=True,
            )
            invoice = self.ledger.create(
                data,
                organization_id=template.organization_id,  # type: ignore[arg-type]
                recurring_template_id=template.id,  # type: ignore[arg-type]
                now=now,
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(invoice)
        logger.info(
            "Generated invoice %s from template %s (next due %s)",
            invoice.invoice_number,
            template.id,
            new_due.date(),
        )
        return invoice

    def process_due(self, now: datetime | None = None) -> RecurringSweepResult:
        """Generate every due cycle of every active template.

        Missed cycles are caught up, at most ``RECURRING_MAX_CATCH_UP`` per
        template per sweep, each as its own claim. Running twice at the same
        clock generates nothing the second time.
        """
        now = ensure_utc(now) or utc_now()
        result = RecurringSweepResult()
        max_cycles = max(1, settings.RECURRING_MAX_CATCH_UP)

        template_ids = [t.id for t in self.repo.get_due(now)]
        for template_id in template_ids:
            for _ in range(max_cycles):
                template = self.repo.get_by_id(template_id)
                if template is None or not template.is_active:
                    break
                cycle_due = ensure_utc(template.next_due_date)  # type: ignore[arg-type]
                if cycle_due is None or cycle_due > now or not _within_end_date(template, cycle_due):
                    break
                try:
                    invoice = self.generate(template_id, now=now)
                except GenerationConflictError:
                    logger.info("Template %s cycle claimed elsewhere, skipping", template_id)
                    result.conflicts.append(template_id)
                    break
                except Exception as e:
                    logger.exception("Failed to generate invoice for template %s", template_id)
                    result.failures[template_id] = str(e) or e.__class__.__name__
                    break
                result.generated.append(str(invoice.invoice_number))

        logger.info(
            "Recurring sweep: %d generated, %d conflicts, %d failures",
            len(result.generated),
            len(result.conflicts),
            len(result.failures),
        )
        return result
