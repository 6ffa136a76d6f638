"""HTTP tests for the invoice, template, portal, payment and anomaly endpoints."""

import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from billing import tasks
from billing.core.config import settings
from billing.core.errors import DocumentRenderError
from billing.main import app
from billing.models.organization import Organization
from billing.models.shared import DEFAULT_ORGANIZATION_ID
from billing.repositories.api_key_repository import ApiKeyRepository
from billing.routers import sweeps
from billing.services.pdf_service import RenderedDocument, get_invoice_renderer

SECRET = "sk_test_secret"


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def other_org_key(db_session):
    org = Organization(name="Other Co", invoice_prefix="OTH")
    db_session.add(org)
    db_session.commit()
    _, raw_key = ApiKeyRepository(db_session).create(org.id, name="ci")
    return raw_key


def _invoice_payload(**overrides):  # type: ignore[no-untyped-def]
    payload = {
        "client_name": "Acme Ltd",
        "client_email": "accounts@acme.test",
        "currency": "KES",
        "line_items": [{"description": "Design", "quantity": 2, "rate": 1000}],
        "due_date": (datetime.now(UTC) + timedelta(days=30)).isoformat(),
    }
    payload.update(overrides)
    return payload


def _create_invoice(client, **overrides):  # type: ignore[no-untyped-def]
    response = client.post("/v1/invoices/", json=_invoice_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


def _sign(body: bytes) -> str:
    return hmac.new(SECRET.encode(), body, hashlib.sha512).hexdigest()


class TestRoot:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"


class TestInvoicesApi:
    def test_create(self, client):
        data = _create_invoice(client)

        assert data["status"] == "SENT"
        assert data["subtotal"] == 2000
        assert data["tax_amount"] == 30
        assert data["total"] == 2030
        assert data["invoice_number"].startswith("INV-")
        assert data["portal_link"].endswith(f"/invoice/{data['access_token']}")

    def test_create_draft(self, client):
        assert _create_invoice(client, publish=False)["status"] == "DRAFT"

    def test_create_without_items(self, client):
        response = client.post("/v1/invoices/", json=_invoice_payload(line_items=[]))
        assert response.status_code == 422

    def test_create_unsupported_currency(self, client):
        response = client.post("/v1/invoices/", json=_invoice_payload(currency="XYZ"))
        assert response.status_code == 400
        assert "Unsupported currency" in response.json()["detail"]

    def test_list_and_filter(self, client):
        sent = _create_invoice(client)
        draft = _create_invoice(client, publish=False, client_name="Globex")

        all_ids = {i["id"] for i in client.get("/v1/invoices/").json()}
        drafts = client.get("/v1/invoices/", params={"status": "DRAFT"}).json()
        searched = client.get("/v1/invoices/", params={"search": "glob"}).json()

        assert all_ids == {sent["id"], draft["id"]}
        assert [i["id"] for i in drafts] == [draft["id"]]
        assert [i["id"] for i in searched] == [draft["id"]]

    def test_get(self, client):
        created = _create_invoice(client)
        response = client.get(f"/v1/invoices/{created['id']}")
        assert response.status_code == 200
        assert response.json()["invoice_number"] == created["invoice_number"]

    def test_get_not_found(self, client):
        response = client.get("/v1/invoices/00000000-0000-0000-0000-00000000beef")
        assert response.status_code == 404

    def test_update_draft(self, client):
        draft = _create_invoice(client, publish=False)
        response = client.patch(
            f"/v1/invoices/{draft['id']}",
            json={"line_items": [{"description": "Audit", "quantity": 1, "rate": 5000}]},
        )
        assert response.status_code == 200
        assert response.json()["total"] == 5075

    def test_update_sent_rejected(self, client):
        sent = _create_invoice(client)
        response = client.patch(f"/v1/invoices/{sent['id']}", json={"notes": "edit"})
        assert response.status_code == 400

    def test_send_and_reminders(self, client):
        draft = _create_invoice(client, publish=False)

        response = client.post(f"/v1/invoices/{draft['id']}/send")
        reminders = client.get(f"/v1/invoices/{draft['id']}/reminders").json()

        assert response.status_code == 200
        assert response.json()["status"] == "SENT"
        assert {r["kind"] for r in reminders} == {"before_due", "on_due", "overdue_7", "overdue_14"}

    def test_cancel(self, client):
        sent = _create_invoice(client)

        response = client.post(f"/v1/invoices/{sent['id']}/cancel")
        reminders = client.get(f"/v1/invoices/{sent['id']}/reminders").json()

        assert response.json()["status"] == "CANCELLED"
        assert {r["status"] for r in reminders} == {"cancelled"}

    def test_render_pdf(self, client):
        sent = _create_invoice(client)
        renderer = MagicMock()
        renderer.render = AsyncMock(
            return_value=RenderedDocument(
                content=b"%PDF",
                path="/tmp/x.pdf",
                url=f"/invoices/{sent['invoice_number']}.pdf",
            )
        )
        app.dependency_overrides[get_invoice_renderer] = lambda: renderer
        try:
            response = client.post(f"/v1/invoices/{sent['id']}/pdf")
        finally:
            app.dependency_overrides.pop(get_invoice_renderer, None)

        assert response.status_code == 200
        assert response.json()["pdf_url"] == f"/invoices/{sent['invoice_number']}.pdf"
        assert client.get(f"/v1/invoices/{sent['id']}").json()["pdf_url"] == response.json()["pdf_url"]

    def test_render_pdf_failure(self, client):
        sent = _create_invoice(client)
        renderer = MagicMock()
        renderer.render = AsyncMock(side_effect=DocumentRenderError("Failed to render invoice"))
        app.dependency_overrides[get_invoice_renderer] = lambda: renderer
        try:
            response = client.post(f"/v1/invoices/{sent['id']}/pdf")
        finally:
            app.dependency_overrides.pop(get_invoice_renderer, None)

        assert response.status_code == 503


class TestAuth:
    def test_api_key_scopes_organization(self, client, other_org_key):
        headers = {"Authorization": f"Bearer {other_org_key}"}
        response = client.post("/v1/invoices/", json=_invoice_payload(), headers=headers)
        own = _create_invoice(client)

        assert response.status_code == 201
        assert response.json()["invoice_number"].startswith("OTH-")
        listed = {i["id"] for i in client.get("/v1/invoices/", headers=headers).json()}
        assert listed == {response.json()["id"]}
        assert client.get(f"/v1/invoices/{own['id']}", headers=headers).status_code == 404

    def test_invalid_key(self, client):
        response = client.get("/v1/invoices/", headers={"Authorization": "Bearer bil_nope"})
        assert response.status_code == 401

    def test_bad_header_format(self, client):
        response = client.get("/v1/invoices/", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_revoked_key(self, client, db_session):
        repo = ApiKeyRepository(db_session)
        api_key, raw_key = repo.create(DEFAULT_ORGANIZATION_ID)
        repo.revoke(api_key)

        response = client.get("/v1/invoices/", headers={"Authorization": f"Bearer {raw_key}"})
        assert response.status_code == 401
        assert "revoked" in response.json()["detail"]

    def test_expired_key(self, client, db_session):
        _, raw_key = ApiKeyRepository(db_session).create(
            DEFAULT_ORGANIZATION_ID, expires_at=datetime.now(UTC) - timedelta(minutes=1)
        )

        response = client.get("/v1/invoices/", headers={"Authorization": f"Bearer {raw_key}"})
        assert response.status_code == 401
        assert response.json()["detail"] == "API key has expired"

    def test_empty_bearer(self, client):
        response = client.get("/v1/invoices/", headers={"Authorization": "Bearer "})
        assert response.status_code == 401


class TestRecurringTemplatesApi:
    def _create(self, client, **overrides):  # type: ignore[no-untyped-def]
        payload = {
            "client_name": "Acme Ltd",
            "client_email": "accounts@acme.test",
            "items": [{"description": "Retainer", "quantity": 1, "rate": 100000}],
            "frequency": "monthly",
            "start_date": "2024-01-15T09:00:00+00:00",
        }
        payload.update(overrides)
        response = client.post("/v1/recurring_templates/", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    def test_create_and_get(self, client):
        template = self._create(client)
        response = client.get(f"/v1/recurring_templates/{template['id']}")

        assert response.status_code == 200
        assert response.json()["anchor_day"] == 15
        assert response.json()["recent_invoices"] == []

    def test_invalid_frequency(self, client):
        response = client.post(
            "/v1/recurring_templates/",
            json={
                "client_name": "Acme",
                "client_email": "a@b.test",
                "items": [{"description": "x", "quantity": 1, "rate": 1}],
                "frequency": "daily",
            },
        )
        assert response.status_code == 422

    def test_generate(self, client):
        template = self._create(client)

        response = client.post(f"/v1/recurring_templates/{template['id']}/generate")
        detail = client.get(f"/v1/recurring_templates/{template['id']}").json()

        assert response.status_code == 201
        assert response.json()["total"] == 101500
        assert "/invoice/" in response.json()["portal_link"]
        assert detail["total_generated"] == 1
        assert detail["next_due_date"].startswith("2024-02-15")
        assert [i["id"] for i in detail["recent_invoices"]] == [response.json()["invoice_id"]]

    def test_update(self, client):
        template = self._create(client)
        response = client.patch(
            f"/v1/recurring_templates/{template['id']}", json={"frequency": "yearly"}
        )
        assert response.status_code == 200
        assert response.json()["frequency"] == "yearly"

    def test_deactivate_then_generate(self, client):
        template = self._create(client)

        response = client.delete(f"/v1/recurring_templates/{template['id']}")
        generate = client.post(f"/v1/recurring_templates/{template['id']}/generate")

        assert response.json()["is_active"] is False
        assert generate.status_code == 400

    def test_list(self, client):
        template = self._create(client)
        ids = [t["id"] for t in client.get("/v1/recurring_templates/").json()]
        assert ids == [template["id"]]

    def test_not_found(self, client):
        response = client.get("/v1/recurring_templates/00000000-0000-0000-0000-00000000beef")
        assert response.status_code == 404


class TestPortalApi:
    def test_view_counts_and_hides_internals(self, client):
        created = _create_invoice(client)
        token = created["access_token"]

        client.get(f"/portal/invoice/{token}")
        response = client.get(f"/portal/invoice/{token}")
        invoice = client.get(f"/v1/invoices/{created['id']}").json()

        body = response.json()
        assert response.status_code == 200
        assert body["invoice"]["invoice_number"] == created["invoice_number"]
        assert body["business"]["name"] == "Default Test Organization"
        assert "access_token" not in body["invoice"]
        assert "organization_id" not in body["invoice"]
        assert invoice["view_count"] == 2

    def test_unknown_token(self, client):
        response = client.get("/portal/invoice/does-not-exist")
        assert response.status_code == 401
        assert response.json()["detail"] == "Invoice not found or access denied"

    def test_status(self, client):
        created = _create_invoice(client)
        response = client.get(f"/portal/invoice/{created['access_token']}/status")
        assert response.json() == {"status": "SENT", "paid_at": None, "payment_method": None}

    def test_mpesa_demo_then_callback(self, client, monkeypatch):
        monkeypatch.setattr(settings, "mpesa_consumer_key", "")
        created = _create_invoice(client)
        token = created["access_token"]

        push = client.post(f"/portal/invoice/{token}/mpesa", json={"phone_number": "0712345678"})
        checkout_id = push.json()["checkout_request_id"]
        callback = {
            "Body": {
                "stkCallback": {
                    "CheckoutRequestID": checkout_id,
                    "ResultCode": 0,
                    "ResultDesc": "ok",
                    "CallbackMetadata": {
                        "Item": [
                            {"Name": "Amount", "Value": 21},
                            {"Name": "MpesaReceiptNumber", "Value": "QKX1"},
                        ]
                    },
                }
            }
        }
        ack = client.post("/payments/callback/mpesa", json=callback)
        status = client.get(f"/portal/invoice/{token}/status").json()

        assert push.status_code == 200
        assert push.json()["demo"] is True
        assert ack.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
        assert status["status"] == "PAID"
        assert status["payment_method"] == "mpesa"

    def test_mpesa_invalid_phone(self, client, monkeypatch):
        monkeypatch.setattr(settings, "mpesa_consumer_key", "")
        created = _create_invoice(client)
        response = client.post(
            f"/portal/invoice/{created['access_token']}/mpesa",
            json={"phone_number": "0812345678"},
        )
        assert response.status_code == 400

    def test_paystack_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "paystack_secret_key", "")
        created = _create_invoice(client)
        response = client.post(f"/portal/invoice/{created['access_token']}/paystack")
        assert response.status_code == 502

    def test_pay_draft_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "mpesa_consumer_key", "")
        draft = _create_invoice(client, publish=False)
        response = client.post(
            f"/portal/invoice/{draft['access_token']}/mpesa",
            json={"phone_number": "0712345678"},
        )
        assert response.status_code == 400


class TestPaymentCallbacksApi:
    def test_paystack_webhook(self, client, monkeypatch):
        monkeypatch.setattr(settings, "paystack_secret_key", SECRET)
        created = _create_invoice(client)
        body = json.dumps(
            {
                "event": "charge.success",
                "data": {
                    "reference": "INV-ref-1",
                    "amount": created["total"],
                    "currency": "KES",
                    "metadata": {"invoice_id": created["id"]},
                },
            }
        ).encode()

        first = client.post(
            "/payments/webhook/paystack",
            content=body,
            headers={"X-Paystack-Signature": _sign(body), "Content-Type": "application/json"},
        )
        second = client.post(
            "/payments/webhook/paystack",
            content=body,
            headers={"X-Paystack-Signature": _sign(body), "Content-Type": "application/json"},
        )

        assert first.json() == {"received": True, "status": "applied"}
        assert second.json() == {"received": True, "status": "duplicate"}
        assert client.get(f"/v1/invoices/{created['id']}").json()["status"] == "PAID"

    def test_paystack_bad_signature(self, client, monkeypatch):
        monkeypatch.setattr(settings, "paystack_secret_key", SECRET)
        response = client.post(
            "/payments/webhook/paystack",
            content=b'{"event":"charge.success"}',
            headers={"X-Paystack-Signature": "deadbeef"},
        )
        assert response.status_code == 401

    def test_mpesa_unknown_reference_acknowledged(self, client):
        callback = {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_x", "ResultCode": 1}}}

        response = client.post("/payments/callback/mpesa", json=callback)
        anomalies = client.get("/v1/payment_anomalies/", params={"rail": "mpesa"}).json()

        assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
        assert [a["reference"] for a in anomalies] == ["ws_CO_x"]

    def test_mpesa_malformed(self, client):
        response = client.post("/payments/callback/mpesa", json={"Body": {}})
        assert response.status_code == 400

    def test_mpesa_invalid_json(self, client):
        response = client.post(
            "/payments/callback/mpesa",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_anomalies_filtered_by_rail(self, client):
        client.post(
            "/payments/callback/mpesa",
            json={"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_y", "ResultCode": 0}}},
        )
        assert client.get("/v1/payment_anomalies/", params={"rail": "paystack"}).json() == []


class TestSweepsApi:
    def test_enqueues_sweep(self, client, monkeypatch):
        enqueue = AsyncMock(return_value=MagicMock(job_id="job-1"))
        monkeypatch.setitem(sweeps.SWEEPS, "overdue", enqueue)

        response = client.post("/v1/sweeps/overdue")

        assert response.status_code == 202
        assert response.json() == {"job_id": "job-1", "status": "queued"}
        enqueue.assert_awaited_once_with()

    def test_already_queued(self, client, monkeypatch):
        monkeypatch.setitem(sweeps.SWEEPS, "reminders", AsyncMock(return_value=None))

        response = client.post("/v1/sweeps/reminders")

        assert response.status_code == 202
        assert response.json() == {"job_id": None, "status": "already_queued"}

    def test_unknown_sweep(self, client):
        assert client.post("/v1/sweeps/vacuum").status_code == 404

    def test_requires_valid_key(self, client):
        response = client.post(
            "/v1/sweeps/recurring", headers={"Authorization": "Bearer bil_nope"}
        )
        assert response.status_code == 401

    def test_any_organization_key_triggers_global_sweep(self, client, monkeypatch, other_org_key):
        enqueue = AsyncMock(return_value=MagicMock(job_id="job-2"))
        monkeypatch.setitem(sweeps.SWEEPS, "recurring", enqueue)

        response = client.post(
            "/v1/sweeps/recurring", headers={"Authorization": f"Bearer {other_org_key}"}
        )

        assert response.status_code == 202
        enqueue.assert_awaited_once_with()

    def test_routes_use_task_helpers(self):
        assert sweeps.SWEEPS == {
            "recurring": tasks.enqueue_recurring_sweep,
            "reminders": tasks.enqueue_reminder_sweep,
            "overdue": tasks.enqueue_overdue_sweep,
        }
