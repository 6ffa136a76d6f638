"""Paystack hosted-checkout provider.

The client is redirected to Paystack's authorization URL; settlement is
confirmed by a ``charge.success`` webhook signed with HMAC-SHA512 over the
raw request body.
"""

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx

from billing.core.config import settings
from billing.core.errors import PaymentProviderError, ValidationError
from billing.models.invoice import PaymentMethod
from billing.models.shared import utc_now
from billing.services.payment_provider import CheckoutSession, PaymentProviderBase, WebhookResult

logger = logging.getLogger(__name__)


class PaystackProvider(PaymentProviderBase):
    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.secret_key = settings.paystack_secret_key if secret_key is None else secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.timeout = timeout or settings.paystack_timeout_seconds

    @property
    def provider_name(self) -> PaymentMethod:
        return PaymentMethod.PAYSTACK

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """Check ``X-Paystack-Signature`` against the raw body."""
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    @staticmethod
    def build_reference(invoice_id: UUID, now: datetime) -> str:
        return f"INV-{invoice_id}-{int(now.timestamp() * 1000)}"

    def initialize_transaction(
        self,
        invoice_id: UUID,
        invoice_number: str,
        amount: int,
        currency: str,
        email: str | None,
        callback_url: str,
        now: datetime | None = None,
    ) -> CheckoutSession:
        """Create a hosted checkout for ``amount`` minor units."""
        if not self.secret_key:
            raise PaymentProviderError("Payment gateway not configured")
        if not email:
            raise ValidationError("Client email is required for card payments")

        now = now or utc_now()
        payload = {
            "email": email,
            "amount": amount,
            "currency": currency,
            "reference": self.build_reference(invoice_id, now),
            "callback_url": callback_url,
            "metadata": {"invoice_id": str(invoice_id), "invoice_number": invoice_number},
        }

        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(
                    f"{self.base_url}/transaction/initialize",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                )
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PaymentProviderError(f"Paystack request failed: {e}") from e

        if not data.get("status"):
            raise PaymentProviderError(data.get("message") or "Payment initialization failed")

        result = data.get("data") or {}
        logger.info("Paystack checkout %s created for %s", result.get("reference"), invoice_number)
        return CheckoutSession(
            reference=str(result.get("reference") or payload["reference"]),
            checkout_url=result.get("authorization_url"),
        )

    def parse_webhook(self, payload: dict[str, Any]) -> WebhookResult:
        event_type = str(payload.get("event") or "")
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {}
        metadata = data.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}

        amount = data.get("amount")
        return WebhookResult(
            event_type=event_type,
            reference=data.get("reference"),
            status="succeeded" if event_type == "charge.success" else None,
            amount=amount if isinstance(amount, int) and not isinstance(amount, bool) else None,
            currency=str(data["currency"]).upper() if data.get("currency") else None,
            invoice_id=str(metadata["invoice_id"]) if metadata.get("invoice_id") else None,
            metadata=metadata,
        )
