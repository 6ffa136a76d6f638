"""Tests for worker background tasks and cron job registration."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from billing.models.invoice import InvoiceStatus
from billing.schemas.invoice import InvoiceCreate, LineItemInput
from billing.services.invoice_ledger import InvoiceLedger
from billing.services.recurring_invoice_service import RecurringSweepResult
from billing.services.reminder_service import ReminderSweepResult
from billing.worker import (
    WorkerSettings,
    mark_overdue_invoices_task,
    process_payment_reminders_task,
    process_recurring_templates_task,
)


class TestProcessRecurringTemplatesTask:
    @pytest.mark.asyncio
    async def test_returns_generated_count(self):
        mock_service = MagicMock()
        mock_service.process_due.return_value = RecurringSweepResult(
            generated=["INV-2026-03-0001", "INV-2026-03-0002"]
        )

        with patch("billing.worker.RecurringInvoiceService", return_value=mock_service):
            result = await process_recurring_templates_task({})

        assert result == 2
        mock_service.process_due.assert_called_once()

    @pytest.mark.asyncio
    async def test_failures_are_logged(self, caplog):
        mock_service = MagicMock()
        mock_service.process_due.return_value = RecurringSweepResult(failures={"tpl-1": "boom"})

        with patch("billing.worker.RecurringInvoiceService", return_value=mock_service):
            result = await process_recurring_templates_task({})

        assert result == 0
        assert "tpl-1" in caplog.text

    @pytest.mark.asyncio
    async def test_runs_against_database(self):
        assert await process_recurring_templates_task({}) == 0


class TestProcessPaymentRemindersTask:
    @pytest.mark.asyncio
    async def test_returns_sent_count(self):
        mock_service = MagicMock()
        mock_service.process_due = AsyncMock(return_value=ReminderSweepResult(sent=3, failed=1))

        with patch("billing.worker.ReminderService", return_value=mock_service):
            result = await process_payment_reminders_task({})

        assert result == 3
        mock_service.process_due.assert_awaited_once()


class TestMarkOverdueInvoicesTask:
    @pytest.mark.asyncio
    async def test_marks_past_due_invoices(self, db_session):
        ledger = InvoiceLedger(db_session)
        invoice = ledger.create(
            InvoiceCreate(
                client_name="Acme Ltd",
                line_items=[LineItemInput(description="Retainer", quantity=1, rate=1000)],
                due_date=datetime.now(UTC) - timedelta(days=1),
            )
        )

        result = await mark_overdue_invoices_task({})

        db_session.expire_all()
        assert result == 1
        assert ledger.get(invoice.id).status == InvoiceStatus.OVERDUE.value


class TestWorkerSettings:
    def test_functions_registered(self):
        assert set(WorkerSettings.functions) == {
            process_recurring_templates_task,
            process_payment_reminders_task,
            mark_overdue_invoices_task,
        }

    def test_cron_jobs(self):
        jobs = {job.coroutine: job for job in WorkerSettings.cron_jobs}
        assert jobs[process_recurring_templates_task].minute == {0}
        assert jobs[process_payment_reminders_task].minute == {0, 15, 30, 45}
        assert jobs[mark_overdue_invoices_task].minute == {5}
