from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    MAX_LEVEL = "MAX_LEVEL"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    ON_COOLDOWN = "ON_COOLDOWN"
    DISABLED = "DISABLED"
    SLOT_LIMIT = "SLOT_LIMIT"
    CLOCK_SKEW = "CLOCK_SKEW"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    TRANSIENT = "TRANSIENT"


class Rejection(BaseModel):
    """Expected business outcome that callers branch on (not an exception)."""

    code: ErrorCode
    message: str

    class Config:
        frozen = True


def reject(code: ErrorCode, message: str) -> Rejection:
    return Rejection(code=code, message=message)


class EconomyError(Exception):
    """Base class for errors raised by the economy core."""

    code = ErrorCode.VALIDATION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigValidationError(EconomyError):
    """Raised when an economy config violates an invariant.

    Args:
        field (str): dotted path of the offending field, e.g. ``treasury.payout_percentage``
        message (str): human readable reason
    """

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.reason = message


class InvalidRequestError(EconomyError):
    code = ErrorCode.VALIDATION


class NotFoundError(EconomyError):
    code = ErrorCode.NOT_FOUND


class ConcurrentModificationError(EconomyError):
    """Internal retry signal for the per-player atomic update."""

    code = ErrorCode.CONCURRENT_MODIFICATION


class TransientFailure(EconomyError):
    code = ErrorCode.TRANSIENT
