"""Payment initiation from the client portal and reconciliation of rail notifications.

Notifications that cannot be applied to an invoice are acknowledged to the
sender and stored as PaymentAnomaly rows for operator review.
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from billing.core.config import settings
from billing.core.errors import AuthenticityError, InvalidStateError, ValidationError
from billing.models.invoice import PAYABLE_STATUSES, Invoice, InvoiceStatus, PaymentMethod
from billing.models.shared import utc_now
from billing.repositories.invoice_repository import InvoiceRepository
from billing.repositories.payment_anomaly_repository import PaymentAnomalyRepository
from billing.services.invoice_ledger import InvoiceLedger
from billing.services.payment_provider import CheckoutSession
from billing.services.payment_providers.mpesa import MpesaProvider, to_whole_shillings
from billing.services.payment_providers.paystack import PaystackProvider

logger = logging.getLogger(__name__)


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    ANOMALY = "anomaly"
    IGNORED = "ignored"


class ReconciliationService:
    def __init__(
        self,
        db: Session,
        ledger: InvoiceLedger | None = None,
        mpesa: MpesaProvider | None = None,
        paystack: PaystackProvider | None = None,
    ):
        self.db = db
        self.invoices = InvoiceRepository(db)
        self.anomalies = PaymentAnomalyRepository(db)
        self.ledger = ledger or InvoiceLedger(db)
        self.mpesa = mpesa or MpesaProvider()
        self.paystack = paystack or PaystackProvider()

    def _payable_invoice(self, token: str) -> Invoice:
        invoice = self.ledger.get_by_token(token)
        if invoice.status == InvoiceStatus.PAID.value:
            raise InvalidStateError("Invoice already paid")
        if invoice.status not in PAYABLE_STATUSES:
            raise InvalidStateError("Invoice is not payable")
        return invoice

    def _store_reference(self, invoice: Invoice, method: PaymentMethod, reference: str) -> None:
        if not self.invoices.set_payment_reference(invoice.id, method.value, reference):  # type: ignore[arg-type]
            self.db.rollback()
            raise InvalidStateError("Invoice is no longer payable")
        self.db.commit()

    def initiate_mpesa(
        self, token: str, phone_number: str, now: datetime | None = None
    ) -> CheckoutSession:
        """Send an STK push for the invoice behind ``token``."""
        invoice = self._payable_invoice(token)
        if invoice.currency != settings.mpesa_currency:
            raise ValidationError(f"M-Pesa only supports {settings.mpesa_currency} payments")

        session = self.mpesa.initiate_stk_push(
            phone_number,
            int(invoice.total),  # type: ignore[arg-type]
            account_reference=str(invoice.invoice_number),
            description="Invoice",
            now=now,
        )
        self._store_reference(invoice, self.mpesa.provider_name, session.reference)
        return session

    def initiate_paystack(self, token: str, now: datetime | None = None) -> CheckoutSession:
        """Open a Paystack checkout for the invoice behind ``token``."""
        invoice = self._payable_invoice(token)
        session = self.paystack.initialize_transaction(
            invoice_id=invoice.id,  # type: ignore[arg-type]
            invoice_number=str(invoice.invoice_number),
            amount=int(invoice.total),  # type: ignore[arg-type]
            currency=str(invoice.currency),
            email=invoice.client_email,  # type: ignore[arg-type]
            callback_url=f"{settings.CLIENT_URL.rstrip('/')}/invoice/{token}/callback",
            now=now or utc_now(),
        )
        self._store_reference(invoice, self.paystack.provider_name, session.reference)
        return session

    def _anomaly(
        self,
        rail: PaymentMethod,
        reason: str,
        reference: str | None,
        payload: dict[str, Any],
        invoice_id: UUID | None = None,
    ) -> ReconciliationOutcome:
        logger.warning(
            "Unreconciled %s notification (ref %s, invoice %s): %s",
            rail.value,
            reference,
            invoice_id,
            reason,
        )
        self.anomalies.create(
            rail=rail.value,
            reason=reason,
            reference=reference,
            invoice_id=invoice_id,
            payload=payload,
        )
        return ReconciliationOutcome.ANOMALY

    def _settle(
        self,
        invoice: Invoice,
        rail: PaymentMethod,
        reference: str,
        receipt: str | None,
        payload: dict[str, Any],
    ) -> ReconciliationOutcome:
        try:
            result = self.ledger.mark_paid(invoice.id, rail, reference, receipt=receipt)  # type: ignore[arg-type]
        except InvalidStateError:
            return self._anomaly(
                rail,
                f"Payment received for {str(invoice.status).lower()} invoice",
                reference,
                payload,
                invoice_id=invoice.id,  # type: ignore[arg-type]
            )
        if result.already_paid:
            if result.invoice.payment_ref != reference:
                return self._anomaly(
                    rail,
                    f"Invoice already paid under reference {result.invoice.payment_ref}",
                    reference,
                    payload,
                    invoice_id=invoice.id,  # type: ignore[arg-type]
                )
            return ReconciliationOutcome.DUPLICATE
        return ReconciliationOutcome.APPLIED

    def handle_mpesa_callback(self, payload: dict[str, Any]) -> ReconciliationOutcome:
        """Apply an STK callback. Malformed payloads raise ValidationError."""
        rail = self.mpesa.provider_name
        result = self.mpesa.parse_webhook(payload)
        reference = str(result.reference)

        invoice = self.invoices.get_by_payment_ref(reference)
        if invoice is None or invoice.payment_method != rail.value:
            return self._anomaly(rail, "Unknown checkout reference", reference, payload)

        if not result.succeeded:
            logger.warning(
                "M-Pesa payment failed for %s: %s", invoice.invoice_number, result.failure_reason
            )
            return ReconciliationOutcome.IGNORED

        expected = to_whole_shillings(int(invoice.total)) * 100  # type: ignore[arg-type]
        if result.amount is not None and result.amount != expected:
            return self._anomaly(
                rail,
                f"Amount mismatch: received {result.amount}, expected {expected}",
                reference,
                payload,
                invoice_id=invoice.id,  # type: ignore[arg-type]
            )

        return self._settle(invoice, rail, reference, result.receipt, payload)

    def handle_paystack_webhook(
        self, raw_body: bytes, signature: str | None
    ) -> ReconciliationOutcome:
        """Verify and apply a Paystack webhook.

        The signature is checked against the raw bytes before anything is
        parsed or looked up.
        """
        if not self.paystack.verify_webhook_signature(raw_body, signature):
            logger.warning(
                "Rejected Paystack webhook: %s signature", "invalid" if signature else "missing"
            )
            raise AuthenticityError("Invalid signature")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Malformed webhook body") from None
        if not isinstance(payload, dict):
            raise ValidationError("Malformed webhook body")

        rail = self.paystack.provider_name
        result = self.paystack.parse_webhook(payload)
        if not result.succeeded:
            logger.info("Ignoring Paystack event %s", result.event_type or "<none>")
            return ReconciliationOutcome.IGNORED

        reference = result.reference
        try:
            invoice_id = UUID(str(result.invoice_id))
        except ValueError:
            return self._anomaly(rail, "Missing invoice id", reference, payload)

        invoice = self.invoices.get_by_id(invoice_id)
        if invoice is None:
            return self._anomaly(rail, "Unknown invoice", reference, payload)

        if result.amount != invoice.total or result.currency != invoice.currency:
            return self._anomaly(
                rail,
                f"Amount mismatch: received {result.amount} {result.currency}, "
                f"expected {invoice.total} {invoice.currency}",
                reference,
                payload,
                invoice_id=invoice_id,
            )

        if not reference:
            return self._anomaly(
                rail, "Missing reference", None, payload, invoice_id=invoice_id
            )

        return self._settle(invoice, rail, reference, None, payload)
