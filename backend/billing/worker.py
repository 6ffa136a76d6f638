import logging
from typing import Any

from arq import cron

from billing.core.database import SessionLocal
from billing.services.invoice_ledger import InvoiceLedger
from billing.services.recurring_invoice_service import RecurringInvoiceService
from billing.services.reminder_service import ReminderService
from billing.tasks import redis_settings

logger = logging.getLogger(__name__)


async def process_recurring_templates_task(ctx: dict[str, Any]) -> int:
    """Background task: generate invoices for every due recurring template cycle.

    Runs hourly. Conflicting and failing templates are logged and skipped.
    """
    db = SessionLocal()
    try:
        result = RecurringInvoiceService(db).process_due()
        for template_id, reason in result.failures.items():
            logger.error("Recurring template %s failed: %s", template_id, reason)
        return result.count
    finally:
        db.close()


async def process_payment_reminders_task(ctx: dict[str, Any]) -> int:
    """Background task: send due payment reminders.

    Runs every 15 minutes. Returns the number of reminders sent.
    """
    db = SessionLocal()
    try:
        result = await ReminderService(db).process_due()
        return result.sent
    finally:
        db.close()


async def mark_overdue_invoices_task(ctx: dict[str, Any]) -> int:
    """Background task: move sent invoices past their due date to OVERDUE.

    Runs hourly.
    """
    db = SessionLocal()
    try:
        return InvoiceLedger(db).mark_overdue()
    finally:
        db.close()


class WorkerSettings:
    functions = [
        process_recurring_templates_task,
        process_payment_reminders_task,
        mark_overdue_invoices_task,
    ]
    cron_jobs = [
        cron(process_recurring_templates_task, minute={0}),  # hourly
        cron(process_payment_reminders_task, minute={0, 15, 30, 45}),
        cron(mark_overdue_invoices_task, minute={5}),  # hourly
    ]
    redis_settings = redis_settings
