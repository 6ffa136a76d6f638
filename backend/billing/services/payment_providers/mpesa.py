"""M-Pesa (Safaricom Daraja) STK push provider.

Flow:
1. Fetch an OAuth token with the consumer key and secret
2. POST an STK push; the customer confirms the charge on their phone
3. Safaricom calls back with the CheckoutRequestID and a ResultCode

Without a consumer key the provider runs in demo mode and returns synthetic
``ws_CO_<ms>`` checkout identifiers without calling Safaricom.
"""

import base64
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from billing.core.config import settings
from billing.core.errors import PaymentProviderError, ValidationError
from billing.models.invoice import PaymentMethod
from billing.models.shared import utc_now
from billing.services.payment_provider import CheckoutSession, PaymentProviderBase, WebhookResult

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"

# Daraja timestamps are East Africa Time
_EAT = timezone(timedelta(hours=3))
_PHONE_RE = re.compile(r"^254[17]\d{8}$")


def normalize_phone(phone: str) -> str:
    """Normalise a Kenyan mobile number to ``2547XXXXXXXX`` form."""
    digits = re.sub(r"[\s\-()]", "", phone or "").lstrip("+")
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "17":
        digits = "254" + digits
    if not _PHONE_RE.match(digits):
        raise ValidationError("Invalid M-Pesa phone number")
    return digits


def to_whole_shillings(amount: int) -> int:
    """STK push only accepts whole units; round minor units up."""
    return max(1, math.ceil(amount / 100))


class MpesaProvider(PaymentProviderBase):
    def __init__(
        self,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        shortcode: str | None = None,
        passkey: str | None = None,
        callback_url: str | None = None,
        environment: str | None = None,
        timeout: float | None = None,
    ):
        self.consumer_key = settings.mpesa_consumer_key if consumer_key is None else consumer_key
        self.consumer_secret = consumer_secret or settings.mpesa_consumer_secret
        self.shortcode = shortcode or settings.mpesa_shortcode
        self.passkey = passkey or settings.mpesa_passkey
        self.callback_url = callback_url or settings.mpesa_callback_url
        self.environment = environment or settings.mpesa_environment
        self.timeout = timeout or settings.mpesa_timeout_seconds
        self._base_url = PRODUCTION_URL if self.environment == "production" else SANDBOX_URL

    @property
    def provider_name(self) -> PaymentMethod:
        return PaymentMethod.MPESA

    @property
    def demo_mode(self) -> bool:
        return not self.consumer_key

    def password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    @staticmethod
    def timestamp(now: datetime) -> str:
        return now.astimezone(_EAT).strftime("%Y%m%d%H%M%S")

    def get_access_token(self) -> str:
        url = f"{self._base_url}/oauth/v1/generate?grant_type=client_credentials"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.get(url, auth=(self.consumer_key, self.consumer_secret))
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PaymentProviderError(f"M-Pesa authentication failed: {e}") from e

        token = data.get("access_token")
        if not token:
            raise PaymentProviderError("M-Pesa authentication returned no access token")
        return str(token)

    def initiate_stk_push(
        self,
        phone_number: str,
        amount: int,
        account_reference: str,
        description: str,
        now: datetime | None = None,
    ) -> CheckoutSession:
        """Ask Safaricom to prompt ``phone_number`` for ``amount`` minor units."""
        now = now or utc_now()
        phone = normalize_phone(phone_number)

        if self.demo_mode:
            reference = f"ws_CO_{int(now.timestamp() * 1000)}"
            logger.warning("M-Pesa not configured, demo STK push %s for %s", reference, phone)
            return CheckoutSession(
                reference=reference,
                message="STK push sent (demo mode). No charge will be made.",
                demo=True,
            )

        timestamp = self.timestamp(now)
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": to_whole_shillings(amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference[:12],
            "TransactionDesc": description[:13],
        }

        token = self.get_access_token()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(
                    f"{self._base_url}/mpesa/stkpush/v1/processrequest",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PaymentProviderError(f"M-Pesa STK push failed: {e}") from e

        checkout_id = data.get("CheckoutRequestID")
        if str(data.get("ResponseCode")) != "0" or not checkout_id:
            reason = data.get("errorMessage") or data.get("ResponseDescription") or "unknown error"
            raise PaymentProviderError(f"M-Pesa STK push rejected: {reason}")

        logger.info("M-Pesa STK push %s sent to %s", checkout_id, phone)
        return CheckoutSession(
            reference=str(checkout_id),
            message=data.get("CustomerMessage")
            or "STK push sent. Please check your phone to complete payment.",
        )

    def parse_webhook(self, payload: dict[str, Any]) -> WebhookResult:
        """Parse an STK callback. Raises ValidationError when malformed."""
        body = payload.get("Body") if isinstance(payload, dict) else None
        callback = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(callback, dict):
            raise ValidationError("Invalid callback format")

        checkout_id = callback.get("CheckoutRequestID")
        if not isinstance(checkout_id, str) or not checkout_id:
            raise ValidationError("Callback is missing CheckoutRequestID")
        try:
            result_code = int(callback.get("ResultCode"))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise ValidationError("Callback is missing ResultCode") from None

        items: dict[str, Any] = {}
        metadata = callback.get("CallbackMetadata")
        if isinstance(metadata, dict):
            for item in metadata.get("Item") or []:
                if isinstance(item, dict) and "Name" in item:
                    items[str(item["Name"])] = item.get("Value")

        amount: int | None = None
        if items.get("Amount") is not None:
            try:
                amount = int(Decimal(str(items["Amount"])) * 100)
            except InvalidOperation:
                amount = None

        succeeded = result_code == 0
        return WebhookResult(
            event_type="stk_callback",
            reference=checkout_id,
            status="succeeded" if succeeded else "failed",
            amount=amount,
            currency=settings.mpesa_currency,
            receipt=str(items["MpesaReceiptNumber"]) if items.get("MpesaReceiptNumber") else None,
            failure_reason=None if succeeded else str(callback.get("ResultDesc") or "Payment failed"),
            metadata={"result_code": result_code, "phone_number": items.get("PhoneNumber")},
        )
