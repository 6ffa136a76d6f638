"""Inbound payment notifications from Paystack and Safaricom."""

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from billing.core.database import get_db
from billing.core.errors import BillingError, http_status_for
from billing.services.reconciliation_service import ReconciliationService

router = APIRouter()

MPESA_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


@router.post("/webhook/paystack")
async def paystack_webhook(
    request: Request,
    paystack_signature: str | None = Header(None, alias="X-Paystack-Signature"),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Handle Paystack webhooks.

    The signature covers the raw body, so it is verified before the payload
    is parsed.
    """
    payload = await request.body()
    try:
        outcome = ReconciliationService(db).handle_paystack_webhook(payload, paystack_signature)
    except BillingError as e:
        raise HTTPException(status_code=http_status_for(e), detail=str(e)) from None
    return {"received": True, "status": outcome.value}


@router.post("/callback/mpesa")
async def mpesa_callback(request: Request, db: Session = Depends(get_db)) -> dict[str, Any]:
    """Handle M-Pesa STK callbacks. Well-formed callbacks are always accepted."""
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid callback format")

    try:
        ReconciliationService(db).handle_mpesa_callback(payload)
    except BillingError as e:
        raise HTTPException(status_code=http_status_for(e), detail=str(e)) from None
    return MPESA_ACK
