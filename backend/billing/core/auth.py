from datetime import UTC, datetime
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from billing.core.database import get_db
from billing.core.errors import AccessDeniedError, http_status_for
from billing.models.shared import DEFAULT_ORGANIZATION_ID
from billing.repositories.api_key_repository import ApiKeyRepository


def _bearer_key(request: Request) -> str | None:
    header = request.headers.get("Authorization")
    if header is None:
        return None
    scheme, _, raw_key = header.partition(" ")
    if scheme != "Bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization header format")
    if not raw_key.strip():
        raise HTTPException(status_code=401, detail="API key is required")
    return raw_key.strip()


def get_current_organization(
    request: Request,
    db: Session = Depends(get_db),
) -> UUID:
    """Organization the request acts for.

    Requests without an Authorization header run as the default organization.
    """
    raw_key = _bearer_key(request)
    if raw_key is None:
        return DEFAULT_ORGANIZATION_ID

    try:
        api_key = ApiKeyRepository(db).authenticate(raw_key, datetime.now(UTC))
    except AccessDeniedError as e:
        raise HTTPException(status_code=http_status_for(e), detail=str(e)) from e
    return api_key.organization_id  # type: ignore[return-value]
