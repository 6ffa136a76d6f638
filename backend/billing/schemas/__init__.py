from billing.schemas.invoice import (
    InvoiceCreate,
    InvoiceCreatedResponse,
    InvoicePdfResponse,
    InvoiceResponse,
    InvoiceUpdate,
    LineItem,
    LineItemInput,
)
from billing.schemas.payment_anomaly import PaymentAnomalyResponse
from billing.schemas.payment_reminder import PaymentReminderResponse
from billing.schemas.portal import (
    MpesaPaymentRequest,
    MpesaPaymentResponse,
    PaystackPaymentResponse,
    PortalInvoice,
    PortalInvoiceResponse,
    PortalIssuer,
    PortalStatusResponse,
)
from billing.schemas.recurring_template import (
    GenerateInvoiceResponse,
    RecentInvoiceSummary,
    RecurringTemplateCreate,
    RecurringTemplateDetailResponse,
    RecurringTemplateResponse,
    RecurringTemplateUpdate,
)

__all__ = [
    "GenerateInvoiceResponse",
    "InvoiceCreate",
    "InvoiceCreatedResponse",
    "InvoicePdfResponse",
    "InvoiceResponse",
    "InvoiceUpdate",
    "LineItem",
    "LineItemInput",
    "MpesaPaymentRequest",
    "MpesaPaymentResponse",
    "PaymentAnomalyResponse",
    "PaymentReminderResponse",
    "PaystackPaymentResponse",
    "PortalInvoice",
    "PortalInvoiceResponse",
    "PortalIssuer",
    "PortalStatusResponse",
    "RecentInvoiceSummary",
    "RecurringTemplateCreate",
    "RecurringTemplateDetailResponse",
    "RecurringTemplateResponse",
    "RecurringTemplateUpdate",
]
