from billing.models.api_key import ApiKey, ApiKeyStatus
from billing.models.invoice import (
    PAYABLE_STATUSES,
    Invoice,
    InvoiceStatus,
    PaymentMethod,
)
from billing.models.organization import Organization
from billing.models.payment_anomaly import PaymentAnomaly
from billing.models.payment_reminder import PaymentReminder, ReminderKind, ReminderStatus
from billing.models.recurring_template import Frequency, RecurringTemplate

__all__ = [
    "ApiKey",
    "ApiKeyStatus",
    "Frequency",
    "Invoice",
    "InvoiceStatus",
    "Organization",
    "PAYABLE_STATUSES",
    "PaymentAnomaly",
    "PaymentMethod",
    "PaymentReminder",
    "RecurringTemplate",
    "ReminderKind",
    "ReminderStatus",
]
