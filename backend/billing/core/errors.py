"""Domain errors raised by the billing services.

Everything subclasses ``ValueError`` so callers that only care about
"the request was refused" can keep catching ``ValueError``; routers map the
concrete classes onto HTTP status codes.
"""


class BillingError(ValueError):
    """Base class for all billing engine errors."""


class ValidationError(BillingError):
    """Input rejected before any state change."""


class NotFoundError(BillingError):
    """Resource does not exist for the calling organization."""


class InvalidStateError(BillingError):
    """Operation is not allowed for the resource's current status."""


class GenerationConflictError(InvalidStateError):
    """Another caller already claimed this recurring cycle."""


class AccessDeniedError(BillingError):
    """Portal access token missing or unknown."""


class AuthenticityError(BillingError):
    """Inbound notification failed signature verification."""


class PaymentProviderError(BillingError):
    """A payment provider call failed or timed out."""


class DocumentRenderError(BillingError):
    """PDF rendering failed after all retry attempts."""


_HTTP_STATUS: list[tuple[type[BillingError], int]] = [
    (GenerationConflictError, 409),
    (NotFoundError, 404),
    (AccessDeniedError, 401),
    (AuthenticityError, 401),
    (PaymentProviderError, 502),
    (DocumentRenderError, 503),
]


def http_status_for(error: BillingError) -> int:
    """HTTP status code routers use for a domain error; 400 by default."""
    for error_type, status_code in _HTTP_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 400
