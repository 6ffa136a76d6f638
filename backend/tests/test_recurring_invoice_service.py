"""Tests for recurring templates, manual generation and the recurring sweep."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest

from billing.core.errors import (
    GenerationConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from billing.models.invoice import InvoiceStatus
from billing.models.shared import DEFAULT_ORGANIZATION_ID, ensure_utc
from billing.repositories.invoice_repository import InvoiceRepository
from billing.repositories.recurring_template_repository import RecurringTemplateRepository
from billing.schemas.invoice import LineItemInput
from billing.schemas.recurring_template import RecurringTemplateCreate, RecurringTemplateUpdate
from billing.services.recurring_invoice_service import RecurringInvoiceService


def _dt(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 9, 0, tzinfo=UTC)


def _template_data(**overrides):  # type: ignore[no-untyped-def]
    defaults = {
        "client_name": "Acme Ltd",
        "client_email": "accounts@acme.test",
        "items": [LineItemInput(description="Retainer", quantity=1, rate=100000)],
        "currency": "KES",
        "frequency": "monthly",
        "start_date": _dt(2024, 1, 15),
    }
    defaults.update(overrides)
    return RecurringTemplateCreate(**defaults)


@pytest.fixture
def service(db_session):
    return RecurringInvoiceService(db_session)


class TestTemplateManagement:
    def test_create_anchors_on_start_date(self, service):
        template = service.create_template(_template_data(start_date=_dt(2024, 1, 31)))

        assert ensure_utc(template.next_due_date) == _dt(2024, 1, 31)
        assert template.anchor_day == 31
        assert template.total_generated == 0
        assert template.is_active is True
        assert template.organization_id == DEFAULT_ORGANIZATION_ID

    def test_create_defaults_to_now(self, service):
        now = _dt(2026, 6, 1)
        template = service.create_template(_template_data(start_date=None), now=now)
        assert ensure_utc(template.next_due_date) == now

    def test_items_stored_without_amounts(self, service):
        template = service.create_template(_template_data())
        assert template.items == [{"description": "Retainer", "quantity": 1, "rate": 100000}]

    def test_unsupported_currency(self, service):
        with pytest.raises(ValidationError, match="Unsupported currency"):
            service.create_template(_template_data(currency="XYZ"))

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError, match="end_date"):
            _template_data(end_date=_dt(2023, 12, 1))

    def test_update(self, service):
        template = service.create_template(_template_data())
        updated = service.update_template(
            template.id,
            RecurringTemplateUpdate(
                frequency="quarterly",
                items=[LineItemInput(description="Support", quantity=2, rate=5000)],
            ),
        )
        assert updated.frequency == "quarterly"
        assert updated.items == [{"description": "Support", "quantity": 2, "rate": 5000}]

    def test_update_clears_end_date(self, service):
        template = service.create_template(_template_data(end_date=_dt(2024, 6, 1)))
        updated = service.update_template(template.id, RecurringTemplateUpdate(end_date=None))
        assert updated.end_date is None

    def test_deactivate(self, service):
        template = service.create_template(_template_data())
        assert service.deactivate_template(template.id).is_active is False

    def test_scoped_to_organization(self, service):
        template = service.create_template(_template_data())
        with pytest.raises(NotFoundError):
            service.get_template(template.id, uuid4())

    def test_list_active_only(self, service):
        active = service.create_template(_template_data())
        inactive = service.create_template(_template_data(client_name="Old Client"))
        service.deactivate_template(inactive.id)

        ids = {t.id for t in service.list_templates(DEFAULT_ORGANIZATION_ID, active_only=True)}
        assert ids == {active.id}


class TestGenerate:
    def test_monthly_cycle(self, service):
        template = service.create_template(_template_data())
        now = _dt(2024, 1, 15)

        invoice = service.generate(template.id, now=now)

        assert invoice.status == InvoiceStatus.SENT.value
        assert invoice.recurring_template_id == template.id
        assert ensure_utc(invoice.due_date) == now + timedelta(days=30)
        assert invoice.total == 101500
        refreshed = service.get_template(template.id)
        assert ensure_utc(refreshed.next_due_date) == _dt(2024, 2, 15)
        assert refreshed.total_generated == 1
        assert ensure_utc(refreshed.last_generated_at) == now

    def test_copies_client_details(self, service):
        template = service.create_template(
            _template_data(client_phone="0712345678", notes="Thanks for your business")
        )
        invoice = service.generate(template.id, now=_dt(2024, 1, 15))
        assert invoice.client_name == "Acme Ltd"
        assert invoice.client_phone == "0712345678"
        assert invoice.notes == "Thanks for your business"

    def test_month_end_schedule_keeps_anchor(self, service):
        template = service.create_template(_template_data(start_date=_dt(2024, 1, 31)))
        dues = []
        for _ in range(3):
            service.generate(template.id, now=_dt(2024, 5, 1))
            dues.append(ensure_utc(service.get_template(template.id).next_due_date))
        assert dues == [_dt(2024, 2, 29), _dt(2024, 3, 31), _dt(2024, 4, 30)]

    def test_inactive_template(self, service):
        template = service.create_template(_template_data())
        service.deactivate_template(template.id)
        with pytest.raises(InvalidStateError, match="not active"):
            service.generate(template.id, now=_dt(2024, 1, 15))

    def test_past_end_date(self, service):
        template = service.create_template(_template_data(end_date=_dt(2024, 2, 1)))
        service.generate(template.id, now=_dt(2024, 1, 15))
        with pytest.raises(InvalidStateError, match="end date"):
            service.generate(template.id, now=_dt(2024, 2, 15))

    def test_stale_claim_conflicts(self, service, db_session):
        template = service.create_template(_template_data())
        cycle_due = ensure_utc(template.next_due_date)
        service.generate(template.id, now=_dt(2024, 1, 15))

        claimed = RecurringTemplateRepository(db_session).claim_cycle(
            template.id,
            expected_next_due_date=cycle_due,
            new_next_due_date=_dt(2024, 2, 15),
            generated_at=_dt(2024, 1, 15),
        )
        db_session.rollback()
        assert claimed is False

    def test_conflict_writes_nothing(self, service, db_session):
        template = service.create_template(_template_data())
        with (
            patch.object(RecurringTemplateRepository, "claim_cycle", return_value=False),
            pytest.raises(GenerationConflictError),
        ):
            service.generate(template.id, now=_dt(2024, 1, 15))

        assert InvoiceRepository(db_session).get_all() == []
        assert service.get_template(template.id).total_generated == 0

    def test_invoice_failure_rolls_back_claim(self, service, db_session):
        template = service.create_template(_template_data())
        with (
            patch.object(service.ledger, "create", side_effect=RuntimeError("boom")),
            pytest.raises(RuntimeError),
        ):
            service.generate(template.id, now=_dt(2024, 1, 15))

        refreshed = service.get_template(template.id)
        assert ensure_utc(refreshed.next_due_date) == _dt(2024, 1, 15)
        assert refreshed.total_generated == 0

    def test_number_race_keeps_claim(self, service):
        template = service.create_template(_template_data())
        with patch(
            "billing.repositories.invoice_repository.generate_invoice_number",
            return_value="INV-2024-01-0001",
        ):
            service.generate(template.id, now=_dt(2024, 1, 15))

        numbers = iter(["INV-2024-01-0001", "INV-2024-01-0002"])
        with (
            patch(
                "billing.repositories.invoice_repository.generate_invoice_number",
                side_effect=lambda prefix, now: next(numbers),
            ),
            patch.object(InvoiceRepository, "get_by_invoice_number", return_value=None),
        ):
            invoice = service.generate(template.id, now=_dt(2024, 1, 20))

        assert invoice.invoice_number == "INV-2024-01-0002"
        refreshed = service.get_template(template.id)
        assert ensure_utc(refreshed.next_due_date) == _dt(2024, 3, 15)
        assert refreshed.total_generated == 2

    def test_recent_invoices(self, service):
        template = service.create_template(_template_data())
        first = service.generate(template.id, now=_dt(2024, 1, 15))
        assert [i.id for i in service.recent_invoices(template.id)] == [first.id]


class TestProcessDue:
    def test_generates_due_templates(self, service):
        due = service.create_template(_template_data(start_date=_dt(2024, 1, 15)))
        service.create_template(_template_data(start_date=_dt(2024, 3, 1)))

        result = service.process_due(now=_dt(2024, 1, 20))

        assert result.count == 1
        assert service.get_template(due.id).total_generated == 1

    def test_running_twice_is_idempotent(self, service, db_session):
        service.create_template(_template_data())
        now = _dt(2024, 1, 20)

        first = service.process_due(now=now)
        second = service.process_due(now=now)

        assert first.count == 1
        assert second.count == 0
        assert len(InvoiceRepository(db_session).get_all()) == 1

    def test_catches_up_missed_cycles(self, service):
        template = service.create_template(
            _template_data(frequency="weekly", start_date=_dt(2024, 1, 1))
        )
        result = service.process_due(now=_dt(2024, 1, 23))

        assert result.count == 4
        assert ensure_utc(service.get_template(template.id).next_due_date) == _dt(2024, 1, 29)

    def test_catch_up_is_capped(self, service):
        service.create_template(_template_data(frequency="weekly", start_date=_dt(2024, 1, 1)))
        with patch("billing.services.recurring_invoice_service.settings") as mock_settings:
            mock_settings.RECURRING_MAX_CATCH_UP = 2
            mock_settings.INVOICE_DUE_DAYS = 30
            mock_settings.SUPPORTED_CURRENCIES = ["KES"]
            result = service.process_due(now=_dt(2024, 3, 1))
        assert result.count == 2

    def test_stops_at_end_date(self, service):
        template = service.create_template(
            _template_data(
                frequency="weekly", start_date=_dt(2024, 1, 1), end_date=_dt(2024, 1, 10)
            )
        )
        result = service.process_due(now=_dt(2024, 2, 1))

        assert result.count == 2
        assert service.get_template(template.id).total_generated == 2

    def test_skips_inactive(self, service):
        template = service.create_template(_template_data())
        service.deactivate_template(template.id)
        assert service.process_due(now=_dt(2024, 2, 1)).count == 0

    def test_conflict_is_recorded(self, service):
        template = service.create_template(_template_data())
        with patch.object(RecurringTemplateRepository, "claim_cycle", return_value=False):
            result = service.process_due(now=_dt(2024, 1, 20))

        assert result.count == 0
        assert result.conflicts == [template.id]

    def test_failure_does_not_stop_other_templates(self, service):
        broken = service.create_template(_template_data(client_name="Broken"))
        healthy = service.create_template(_template_data(client_name="Healthy"))
        original_generate = service.generate

        def generate(template_id, organization_id=None, now=None):  # type: ignore[no-untyped-def]
            if template_id == broken.id:
                raise RuntimeError("smtp down")
            return original_generate(template_id, organization_id, now)

        with patch.object(service, "generate", side_effect=generate):
            result = service.process_due(now=_dt(2024, 1, 20))

        assert result.failures == {broken.id: "smtp down"}
        assert result.count == 1
        assert service.get_template(healthy.id).total_generated == 1
