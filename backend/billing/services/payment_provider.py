"""Payment provider abstraction layer.

Supports the two collection rails: M-Pesa STK push and Paystack checkout.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from billing.models.invoice import PaymentMethod


@dataclass
class CheckoutSession:
    """Result of initiating a payment with a provider."""

    reference: str
    checkout_url: str | None = None
    message: str | None = None
    demo: bool = False


@dataclass
class WebhookResult:
    """Result of parsing a provider notification.

    ``amount`` is in minor currency units.
    """

    event_type: str
    reference: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    receipt: str | None = None
    invoice_id: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentProviderBase(ABC):
    """Abstract base class for payment providers."""

    @property
    @abstractmethod
    def provider_name(self) -> PaymentMethod:
        """Return the payment method enum value."""
        pass  # pragma: no cover

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> WebhookResult:
        """Parse a notification payload and return structured result."""
        pass  # pragma: no cover

