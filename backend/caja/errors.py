# Overview: Domain error kinds raised by the ledger core.

"""
Every rejected operation raises one of these with a human-readable message.

`kind` is a stable identifier the API layer maps to its own error payload;
`http_status` is the status that layer is expected to answer with.
"""


class CajaError(Exception):
    kind = "CAJA_ERROR"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class NotFoundError(CajaError):
    kind = "NOT_FOUND"
    http_status = 404


class CurrencyNotFoundError(NotFoundError):
    pass


class TillNotFoundError(NotFoundError):
    pass


class TransactionNotFoundError(NotFoundError):
    pass


class TillAlreadyOpenError(CajaError):
    kind = "ALREADY_OPEN"
    http_status = 409


class NoOpenTillError(CajaError):
    kind = "NO_OPEN_TILL"
    http_status = 404


class TillClosedError(CajaError):
    kind = "TILL_CLOSED"
    http_status = 409


class InsufficientFundsError(CajaError):
    kind = "INSUFFICIENT_FUNDS"


class InconsistentTotalError(CajaError):
    kind = "INCONSISTENT_TOTAL"


class RateOutOfRangeError(CajaError):
    kind = "RATE_OUT_OF_RANGE"


class CustomerRequiredError(CajaError):
    kind = "CUSTOMER_REQUIRED"


class PendingWorkError(CajaError):
    kind = "PENDING_WORK"
    http_status = 409


class CurrencyInUseError(CajaError):
    kind = "IN_USE"
    http_status = 409


class HomeCurrencyMissingError(CajaError):
    kind = "HOME_CURRENCY_MISSING"
    http_status = 500


class TillBusyError(CajaError):
    """Lock on the till could not be acquired within the bounded wait."""
    kind = "BUSY"
    http_status = 503


class TillConflictError(CajaError):
    """Till, balance or lot changed underneath us (optimistic version check)."""
    kind = "CONFLICT"
    http_status = 409
