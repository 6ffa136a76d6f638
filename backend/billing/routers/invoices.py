from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from billing.core.auth import get_current_organization
from billing.core.database import get_db
from billing.core.errors import BillingError, http_status_for
from billing.models.invoice import Invoice, InvoiceStatus
from billing.models.payment_reminder import PaymentReminder
from billing.repositories.invoice_repository import InvoiceRepository
from billing.repositories.organization_repository import OrganizationRepository
from billing.schemas.invoice import (
    InvoiceCreate,
    InvoiceCreatedResponse,
    InvoicePdfResponse,
    InvoiceResponse,
    InvoiceUpdate,
)
from billing.schemas.payment_reminder import PaymentReminderResponse
from billing.services.email_service import portal_link
from billing.services.invoice_ledger import InvoiceLedger
from billing.services.pdf_service import InvoiceRenderer, get_invoice_renderer

router = APIRouter()


def _http_error(e: BillingError) -> HTTPException:
    return HTTPException(status_code=http_status_for(e), detail=str(e))


@router.post(
    "/",
    response_model=InvoiceCreatedResponse,
    status_code=201,
    summary="Create invoice",
    responses={
        400: {"description": "Invalid invoice data"},
        401: {"description": "Unauthorized – invalid or missing API key"},
    },
)
async def create_invoice(
    data: InvoiceCreate,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> InvoiceCreatedResponse:
    """Create an invoice. Published invoices are SENT immediately and get reminders."""
    try:
        invoice = InvoiceLedger(db).create(data, organization_id=organization_id)
    except BillingError as e:
        raise _http_error(e) from None
    return InvoiceCreatedResponse(
        **InvoiceResponse.model_validate(invoice).model_dump(),
        portal_link=portal_link(str(invoice.access_token)),
    )


@router.get(
    "/",
    response_model=list[InvoiceResponse],
    summary="List invoices",
    responses={401: {"description": "Unauthorized – invalid or missing API key"}},
)
async def list_invoices(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    status: InvoiceStatus | None = None,
    recurring_template_id: UUID | None = None,
    search: str | None = Query(default=None, max_length=255),
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[Invoice]:
    """List invoices with optional filters."""
    return InvoiceRepository(db).get_all(
        organization_id=organization_id,
        skip=skip,
        limit=limit,
        status=status,
        recurring_template_id=recurring_template_id,
        search=search,
    )


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Get invoice",
    responses={
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Invoice not found"},
    },
)
async def get_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> Invoice:
    """Get an invoice by ID."""
    invoice = InvoiceRepository(db).get_by_id(invoice_id, organization_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.patch(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Update draft invoice",
    responses={
        400: {"description": "Invoice is not a draft"},
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Invoice not found"},
    },
)
async def update_invoice(
    invoice_id: UUID,
    data: InvoiceUpdate,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> Invoice:
    """Edit a draft invoice; amounts are recomputed when line items change."""
    try:
        return InvoiceLedger(db).update_draft(invoice_id, data, organization_id)
    except BillingError as e:
        raise _http_error(e) from None


@router.post(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    summary="Send invoice",
    responses={
        400: {"description": "Invoice cannot be sent"},
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Invoice not found"},
    },
)
async def send_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> Invoice:
    """Publish a draft invoice (DRAFT -> SENT) and schedule its reminders."""
    try:
        return InvoiceLedger(db).send(invoice_id, organization_id)
    except BillingError as e:
        raise _http_error(e) from None


@router.post(
    "/{invoice_id}/cancel",
    response_model=InvoiceResponse,
    summary="Cancel invoice",
    responses={
        400: {"description": "Paid invoices cannot be cancelled"},
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Invoice not found"},
    },
)
async def cancel_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> Invoice:
    """Cancel an unpaid invoice and its pending reminders."""
    try:
        return InvoiceLedger(db).cancel(invoice_id, organization_id)
    except BillingError as e:
        raise _http_error(e) from None


@router.post(
    "/{invoice_id}/pdf",
    response_model=InvoicePdfResponse,
    summary="Render invoice PDF",
    responses={
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Invoice not found"},
        503: {"description": "PDF rendering failed"},
    },
)
async def render_invoice_pdf(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
    renderer: InvoiceRenderer = Depends(get_invoice_renderer),
) -> InvoicePdfResponse:
    """Render the invoice to PDF, overwriting any previous rendering."""
    repo = InvoiceRepository(db)
    invoice = repo.get_by_id(invoice_id, organization_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")

    organization = OrganizationRepository(db).get_by_id(invoice.organization_id)  # type: ignore[arg-type]
    try:
        document = await renderer.render(invoice, organization)
    except BillingError as e:
        raise _http_error(e) from None

    repo.set_pdf_url(invoice.id, document.url)  # type: ignore[arg-type]
    db.commit()
    return InvoicePdfResponse(invoice_number=str(invoice.invoice_number), pdf_url=document.url)


@router.get(
    "/{invoice_id}/reminders",
    response_model=list[PaymentReminderResponse],
    summary="List invoice reminders",
    responses={
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Invoice not found"},
    },
)
async def list_invoice_reminders(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[PaymentReminder]:
    """List the payment reminders scheduled for an invoice."""
    ledger = InvoiceLedger(db)
    try:
        invoice = ledger.get(invoice_id, organization_id)
    except BillingError as e:
        raise _http_error(e) from None
    return ledger.reminders.list_for_invoice(invoice.id)  # type: ignore[arg-type]
