from uuid import UUID

from sqlalchemy.orm import Session

from billing.models.organization import Organization


class OrganizationRepository:
    """Read-only access to issuer details; organizations are managed elsewhere."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, org_id: UUID) -> Organization | None:
        return self.db.get(Organization, org_id)

    def invoice_prefix(self, org_id: UUID, default: str) -> str:
        """Upper-cased invoice number prefix for ``org_id``, or ``default``."""
        org = self.get_by_id(org_id)
        prefix = (org.invoice_prefix or "").strip() if org is not None else ""
        return prefix.upper() or default
