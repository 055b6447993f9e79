# Overview: Pytest coverage for the error kinds and statuses handed to the API layer.

import pytest

from caja.errors import (
    CajaError,
    CurrencyInUseError,
    CurrencyNotFoundError,
    CustomerRequiredError,
    HomeCurrencyMissingError,
    InconsistentTotalError,
    InsufficientFundsError,
    NoOpenTillError,
    PendingWorkError,
    RateOutOfRangeError,
    TillAlreadyOpenError,
    TillBusyError,
    TillClosedError,
    TillConflictError,
    TillNotFoundError,
    TransactionNotFoundError,
)
from caja.services import till_service
from caja.validation import ValidationError


OPERATOR_ID = 1


@pytest.mark.parametrize('error_class, kind, status', [
    (CajaError, 'CAJA_ERROR', 400),
    (ValidationError, 'VALIDATION', 400),
    (CurrencyNotFoundError, 'NOT_FOUND', 404),
    (TillNotFoundError, 'NOT_FOUND', 404),
    (TransactionNotFoundError, 'NOT_FOUND', 404),
    (NoOpenTillError, 'NO_OPEN_TILL', 404),
    (TillAlreadyOpenError, 'ALREADY_OPEN', 409),
    (TillClosedError, 'TILL_CLOSED', 409),
    (PendingWorkError, 'PENDING_WORK', 409),
    (CurrencyInUseError, 'IN_USE', 409),
    (TillConflictError, 'CONFLICT', 409),
    (InsufficientFundsError, 'INSUFFICIENT_FUNDS', 400),
    (InconsistentTotalError, 'INCONSISTENT_TOTAL', 400),
    (RateOutOfRangeError, 'RATE_OUT_OF_RANGE', 400),
    (CustomerRequiredError, 'CUSTOMER_REQUIRED', 400),
    (HomeCurrencyMissingError, 'HOME_CURRENCY_MISSING', 500),
    (TillBusyError, 'BUSY', 503),
])
def test_kind_status_and_payload(error_class, kind, status):
    error = error_class('Something went wrong')

    assert error.kind == kind
    assert error.http_status == status
    assert error.message == 'Something went wrong'
    assert str(error) == 'Something went wrong'
    assert error.to_dict() == {'error': kind, 'message': 'Something went wrong'}


def test_validation_error_is_a_value_error():
    assert issubclass(ValidationError, ValueError)
    assert issubclass(ValidationError, CajaError)


def test_raised_error_payload(db_session, open_till):
    with pytest.raises(TillAlreadyOpenError) as excinfo:
        till_service.open_till(OPERATOR_ID)

    payload = excinfo.value.to_dict()
    assert excinfo.value.http_status == 409
    assert payload['error'] == 'ALREADY_OPEN'
    assert 'already has an open till' in payload['message']
