"""Tests for mapping domain errors onto HTTP status codes."""

import pytest

from billing.core.errors import (
    AccessDeniedError,
    AuthenticityError,
    BillingError,
    DocumentRenderError,
    GenerationConflictError,
    InvalidStateError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
    http_status_for,
)


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (ValidationError("bad"), 400),
        (InvalidStateError("wrong state"), 400),
        (GenerationConflictError("claimed"), 409),
        (NotFoundError("missing"), 404),
        (AccessDeniedError("denied"), 401),
        (AuthenticityError("bad signature"), 401),
        (PaymentProviderError("timeout"), 502),
        (DocumentRenderError("crashed"), 503),
        (BillingError("other"), 400),
    ],
)
def test_http_status_for(error, status_code):
    assert http_status_for(error) == status_code


def test_errors_are_value_errors():
    assert issubclass(BillingError, ValueError)
