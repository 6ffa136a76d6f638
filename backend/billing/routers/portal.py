"""Public client portal: the access token in the URL is the only credential."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from billing.core.database import get_db
from billing.core.errors import BillingError, http_status_for
from billing.repositories.organization_repository import OrganizationRepository
from billing.schemas.portal import (
    MpesaPaymentRequest,
    MpesaPaymentResponse,
    PaystackPaymentResponse,
    PortalInvoice,
    PortalInvoiceResponse,
    PortalIssuer,
    PortalStatusResponse,
)
from billing.services.invoice_ledger import InvoiceLedger
from billing.services.reconciliation_service import ReconciliationService

router = APIRouter()


def _http_error(e: BillingError) -> HTTPException:
    return HTTPException(status_code=http_status_for(e), detail=str(e))


@router.get(
    "/invoice/{token}",
    response_model=PortalInvoiceResponse,
    summary="View invoice",
    responses={401: {"description": "Invoice not found or access denied"}},
)
async def view_invoice(token: str, db: Session = Depends(get_db)) -> PortalInvoiceResponse:
    """Show an invoice to its client and count the view."""
    try:
        invoice = InvoiceLedger(db).view(token)
    except BillingError as e:
        raise _http_error(e) from None

    organization = OrganizationRepository(db).get_by_id(invoice.organization_id)  # type: ignore[arg-type]
    return PortalInvoiceResponse(
        invoice=PortalInvoice.model_validate(invoice),
        business=PortalIssuer.model_validate(organization) if organization else None,
    )


@router.get(
    "/invoice/{token}/status",
    response_model=PortalStatusResponse,
    summary="Payment status",
    responses={401: {"description": "Invoice not found or access denied"}},
)
async def invoice_status(token: str, db: Session = Depends(get_db)) -> PortalStatusResponse:
    """Current payment status, polled by the portal after a payment is started."""
    try:
        invoice = InvoiceLedger(db).get_by_token(token)
    except BillingError as e:
        raise _http_error(e) from None
    return PortalStatusResponse(
        status=str(invoice.status),
        paid_at=invoice.paid_at,  # type: ignore[arg-type]
        payment_method=invoice.payment_method,  # type: ignore[arg-type]
    )


@router.post(
    "/invoice/{token}/mpesa",
    response_model=MpesaPaymentResponse,
    summary="Pay with M-Pesa",
    responses={
        400: {"description": "Invoice not payable or unsupported currency"},
        401: {"description": "Invoice not found or access denied"},
        502: {"description": "M-Pesa request failed"},
    },
)
def pay_with_mpesa(
    token: str,
    data: MpesaPaymentRequest,
    db: Session = Depends(get_db),
) -> MpesaPaymentResponse:
    """Send an STK push to the client's phone."""
    try:
        session = ReconciliationService(db).initiate_mpesa(token, data.phone_number)
    except BillingError as e:
        raise _http_error(e) from None
    return MpesaPaymentResponse(
        message=session.message or "STK push sent. Please check your phone to complete payment.",
        checkout_request_id=session.reference,
        demo=session.demo,
    )


@router.post(
    "/invoice/{token}/paystack",
    response_model=PaystackPaymentResponse,
    summary="Pay with card",
    responses={
        400: {"description": "Invoice not payable"},
        401: {"description": "Invoice not found or access denied"},
        502: {"description": "Paystack request failed"},
    },
)
def pay_with_paystack(token: str, db: Session = Depends(get_db)) -> PaystackPaymentResponse:
    """Start a Paystack checkout and return the URL to redirect the client to."""
    try:
        session = ReconciliationService(db).initiate_paystack(token)
    except BillingError as e:
        raise _http_error(e) from None
    return PaystackPaymentResponse(
        authorization_url=session.checkout_url or "",
        reference=session.reference,
    )
