import logging
import secrets
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing.core.config import settings
from billing.core.errors import InvalidStateError
from billing.models.invoice import Invoice, InvoiceStatus
from billing.models.shared import utc_now

logger = logging.getLogger(__name__)


def generate_access_token() -> str:
    """256-bit random token for unauthenticated portal access."""
    return secrets.token_hex(32)


def generate_invoice_number(prefix: str, now: datetime | None = None) -> str:
    """Build a ``PREFIX-YYYY-MM-XXXX`` number with a random 4-digit suffix."""
    now = now or utc_now()
    suffix = secrets.randbelow(10000)
    return f"{prefix}-{now.year}-{now.month:02d}-{suffix:04d}"


class InvoiceRepository:
    """Invoice persistence.

    Write methods only flush; the calling service owns the transaction so an
    invoice insert can share a commit with template or reminder changes.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_all(
        self,
        organization_id: UUID | None = None,
        skip: int = 0,
        limit: int = 100,
        status: InvoiceStatus | None = None,
        recurring_template_id: UUID | None = None,
        search: str | None = None,
    ) -> list[Invoice]:
        query = self.db.query(Invoice)

        if organization_id is not None:
            query = query.filter(Invoice.organization_id == organization_id)
        if status:
            query = query.filter(Invoice.status == status.value)
        if recurring_template_id:
            query = query.filter(Invoice.recurring_template_id == recurring_template_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(Invoice.client_name.ilike(pattern), Invoice.invoice_number.ilike(pattern))
            )

        return query.order_by(Invoice.created_at.desc()).offset(skip).limit(limit).all()

    def get_by_id(self, invoice_id: UUID, organization_id: UUID | None = None) -> Invoice | None:
        query = self.db.query(Invoice).filter(Invoice.id == invoice_id)
        if organization_id is not None:
            query = query.filter(Invoice.organization_id == organization_id)
        return query.first()

    def get_by_access_token(self, token: str) -> Invoice | None:
        return self.db.query(Invoice).filter(Invoice.access_token == token).first()

    def get_by_payment_ref(self, payment_ref: str) -> Invoice | None:
        return self.db.query(Invoice).filter(Invoice.payment_ref == payment_ref).first()

    def get_by_invoice_number(self, invoice_number: str) -> Invoice | None:
        return self.db.query(Invoice).filter(Invoice.invoice_number == invoice_number).first()

    def recent_for_template(self, template_id: UUID, limit: int = 10) -> list[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.recurring_template_id == template_id)
            .order_by(Invoice.created_at.desc())
            .limit(limit)
            .all()
        )

    def add_with_unique_number(
        self, invoice: Invoice, prefix: str, now: datetime | None = None
    ) -> Invoice:
        """Insert ``invoice`` under a fresh ``PREFIX-YYYY-MM-XXXX`` number.

        Numbers already taken are skipped before the insert. A number claimed
        concurrently after that check is rejected by the unique index; the
        insert runs in a SAVEPOINT so only it is undone and a new suffix is
        tried, leaving the rest of the caller's transaction intact.
        """
        if invoice.access_token is None:
            invoice.access_token = generate_access_token()  # type: ignore[assignment]

        for _ in range(max(1, settings.INVOICE_NUMBER_ATTEMPTS)):
            number = generate_invoice_number(prefix, now)
            if self.get_by_invoice_number(number) is not None:
                continue
            invoice.invoice_number = number  # type: ignore[assignment]
            try:
                with self.db.begin_nested():
                    self.db.add(invoice)
                    self.db.flush()
            except IntegrityError:
                logger.info("Invoice number %s was taken concurrently, retrying", number)
                continue
            return invoice

        raise InvalidStateError("Could not allocate a unique invoice number")

    def transition(
        self,
        invoice_id: UUID,
        from_statuses: Sequence[str],
        values: dict[str, Any],
    ) -> bool:
        """Conditionally update an invoice whose status is in ``from_statuses``.

        Returns False when no row matched, meaning another writer got there
        first or the invoice was never in an allowed status.
        """
        result = self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status.in_(list(from_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]

    def record_view(self, invoice_id: UUID, viewed_at: datetime) -> None:
        self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id)
            .values(view_count=Invoice.view_count + 1, last_viewed_at=viewed_at)
            .execution_options(synchronize_session=False)
        )

    def set_payment_reference(self, invoice_id: UUID, method: str, reference: str) -> bool:
        """Store the rail reference used to match a later notification."""
        return self.transition(
            invoice_id,
            (InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value),
            {"payment_method": method, "payment_ref": reference},
        )

    def set_pdf_url(self, invoice_id: UUID, pdf_url: str) -> None:
        self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id)
            .values(pdf_url=pdf_url)
            .execution_options(synchronize_session=False)
        )

    def mark_overdue(self, now: datetime) -> int:
        """Move every SENT invoice whose due date has passed to OVERDUE."""
        result = self.db.execute(
            update(Invoice)
            .where(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.due_date.isnot(None),
                Invoice.due_date < now,
            )
            .values(status=InvoiceStatus.OVERDUE.value)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    def reload(self, invoice: Invoice) -> Invoice:
        self.db.refresh(invoice)
        return invoice
