from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from billing.core.auth import get_current_organization
from billing.core.database import get_db
from billing.core.errors import BillingError, http_status_for
from billing.models.recurring_template import RecurringTemplate
from billing.schemas.recurring_template import (
    GenerateInvoiceResponse,
    RecentInvoiceSummary,
    RecurringTemplateCreate,
    RecurringTemplateDetailResponse,
    RecurringTemplateResponse,
    RecurringTemplateUpdate,
)
from billing.services.email_service import portal_link
from billing.services.recurring_invoice_service import RecurringInvoiceService

router = APIRouter()


def _http_error(e: BillingError) -> HTTPException:
    return HTTPException(status_code=http_status_for(e), detail=str(e))


@router.post(
    "/",
    response_model=RecurringTemplateResponse,
    status_code=201,
    summary="Create recurring template",
    responses={
        400: {"description": "Invalid template data"},
        401: {"description": "Unauthorized – invalid or missing API key"},
    },
)
async def create_recurring_template(
    data: RecurringTemplateCreate,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> RecurringTemplate:
    """Create a recurring template; the first cycle is due on the start date."""
    try:
        return RecurringInvoiceService(db).create_template(data, organization_id)
    except BillingError as e:
        raise _http_error(e) from None


@router.get(
    "/",
    response_model=list[RecurringTemplateResponse],
    summary="List recurring templates",
    responses={401: {"description": "Unauthorized – invalid or missing API key"}},
)
async def list_recurring_templates(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    active_only: bool = False,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[RecurringTemplate]:
    return RecurringInvoiceService(db).list_templates(
        organization_id, active_only=active_only, skip=skip, limit=limit
    )


@router.get(
    "/{template_id}",
    response_model=RecurringTemplateDetailResponse,
    summary="Get recurring template",
    responses={
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Recurring template not found"},
    },
)
async def get_recurring_template(
    template_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> RecurringTemplateDetailResponse:
    """Get a template with its most recently generated invoices."""
    service = RecurringInvoiceService(db)
    try:
        template = service.get_template(template_id, organization_id)
    except BillingError as e:
        raise _http_error(e) from None
    return RecurringTemplateDetailResponse(
        **RecurringTemplateResponse.model_validate(template).model_dump(),
        recent_invoices=[
            RecentInvoiceSummary.model_validate(invoice)
            for invoice in service.recent_invoices(template_id)
        ],
    )


@router.patch(
    "/{template_id}",
    response_model=RecurringTemplateResponse,
    summary="Update recurring template",
    responses={
        400: {"description": "Invalid template data"},
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Recurring template not found"},
    },
)
async def update_recurring_template(
    template_id: UUID,
    data: RecurringTemplateUpdate,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> RecurringTemplate:
    try:
        return RecurringInvoiceService(db).update_template(template_id, data, organization_id)
    except BillingError as e:
        raise _http_error(e) from None


@router.delete(
    "/{template_id}",
    response_model=RecurringTemplateResponse,
    summary="Deactivate recurring template",
    responses={
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Recurring template not found"},
    },
)
async def deactivate_recurring_template(
    template_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> RecurringTemplate:
    """Deactivate a template. Templates are never deleted."""
    try:
        return RecurringInvoiceService(db).deactivate_template(template_id, organization_id)
    except BillingError as e:
        raise _http_error(e) from None


@router.post(
    "/{template_id}/generate",
    response_model=GenerateInvoiceResponse,
    status_code=201,
    summary="Generate invoice now",
    responses={
        400: {"description": "Template is inactive or past its end date"},
        401: {"description": "Unauthorized – invalid or missing API key"},
        404: {"description": "Recurring template not found"},
        409: {"description": "This cycle was generated concurrently"},
    },
)
async def generate_invoice(
    template_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> GenerateInvoiceResponse:
    """Generate the next scheduled cycle now and advance the schedule."""
    try:
        invoice = RecurringInvoiceService(db).generate(template_id, organization_id)
    except BillingError as e:
        raise _http_error(e) from None
    return GenerateInvoiceResponse(
        invoice_id=invoice.id,  # type: ignore[arg-type]
        invoice_number=str(invoice.invoice_number),
        total=int(invoice.total),  # type: ignore[arg-type]
        portal_link=portal_link(str(invoice.access_token)),
    )
