from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, String

from billing.core.database import Base
from billing.models.shared import CreatedAtMixin, UUIDType, generate_uuid


class ApiKeyStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class ApiKey(CreatedAtMixin, Base):
    """Bearer credential that scopes API calls to one issuing organization.

    Only the SHA-256 hash is stored; ``key_prefix`` lets operators tell keys apart.
    """

    __tablename__ = "api_keys"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    organization_id = Column(
        UUIDType,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    key_hash = Column(String(64), nullable=False, unique=True, index=True)
    key_prefix = Column(String(12), nullable=False)
    name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=ApiKeyStatus.ACTIVE.value)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
