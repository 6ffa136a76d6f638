from billing.repositories.api_key_repository import ApiKeyRepository
from billing.repositories.invoice_repository import InvoiceRepository
from billing.repositories.organization_repository import OrganizationRepository
from billing.repositories.payment_anomaly_repository import PaymentAnomalyRepository
from billing.repositories.payment_reminder_repository import PaymentReminderRepository
from billing.repositories.recurring_template_repository import RecurringTemplateRepository

__all__ = [
    "ApiKeyRepository",
    "InvoiceRepository",
    "OrganizationRepository",
    "PaymentAnomalyRepository",
    "PaymentReminderRepository",
    "RecurringTemplateRepository",
]
