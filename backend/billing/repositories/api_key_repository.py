import hashlib
import secrets
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from billing.core.errors import AccessDeniedError
from billing.models.api_key import ApiKey, ApiKeyStatus
from billing.models.shared import ensure_utc

KEY_PREFIX = "bil_"


def generate_api_key() -> str:
    return KEY_PREFIX + secrets.token_hex(32)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


class ApiKeyRepository:
    """Stores hashed API keys and resolves presented keys to their organization.

    Keys are provisioned by operators; there is no public issuance endpoint.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        organization_id: UUID,
        name: str | None = None,
        expires_at: datetime | None = None,
    ) -> tuple[ApiKey, str]:
        """Store a new key. The raw key is returned once and never persisted."""
        raw_key = generate_api_key()
        api_key = ApiKey(
            organization_id=organization_id,
            key_hash=hash_api_key(raw_key),
            key_prefix=raw_key[:12],
            name=name,
            expires_at=expires_at,
        )
        self.db.add(api_key)
        self.db.commit()
        self.db.refresh(api_key)
        return api_key, raw_key

    def get_by_hash(self, key_hash: str) -> ApiKey | None:
        return self.db.query(ApiKey).filter(ApiKey.key_hash == key_hash).first()

    def revoke(self, api_key: ApiKey) -> None:
        api_key.status = ApiKeyStatus.REVOKED.value  # type: ignore[assignment]
        self.db.commit()

    def authenticate(self, raw_key: str, now: datetime) -> ApiKey:
        """Resolve ``raw_key`` to a usable key and record the use.

        Raises AccessDeniedError for unknown, revoked or expired keys.
        """
        api_key = self.get_by_hash(hash_api_key(raw_key))
        if api_key is None:
            raise AccessDeniedError("Invalid API key")
        if api_key.status == ApiKeyStatus.REVOKED.value:
            raise AccessDeniedError("API key has been revoked")
        expires_at = ensure_utc(api_key.expires_at)  # type: ignore[arg-type]
        if expires_at is not None and expires_at <= now:
            raise AccessDeniedError("API key has expired")

        api_key.last_used_at = now  # type: ignore[assignment]
        self.db.commit()
        return api_key
