"""
Domain errors.

Every failure the service reports to a caller is one of these. Each class
carries the numeric ``code`` placed in the response envelope and the HTTP
status the API layer answers with.
"""

from enum import IntEnum
from typing import Any, Optional


class ErrorCode(IntEnum):
    SUCCESS = 0
    VALIDATION_ERROR = -1
    AMOUNT_MISMATCH = -2
    ILLEGAL_TRANSITION = -3
    INSUFFICIENT_FUNDS = -4
    CONFLICT = -5
    NOT_FOUND = -6
    FORBIDDEN = -7
    UNAUTHENTICATED = -401
    TOKEN_EXPIRED = -402
    INTERNAL_ERROR = -500


class DomainException(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    http_status: int = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(DomainException):
    """Malformed or incomplete input"""
    code = ErrorCode.VALIDATION_ERROR
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field=field)
        self.field = field


class AmountMismatch(DomainException):
    code = ErrorCode.AMOUNT_MISMATCH
    http_status = 400

    def __init__(self, message: str, expected: float, actual: float):
        super().__init__(message, expected=expected, actual=actual)
        self.expected = expected
        self.actual = actual


class IllegalTransition(DomainException):
    code = ErrorCode.ILLEGAL_TRANSITION
    http_status = 409

    def __init__(self, from_status: str, to_status: str, reason: Optional[str] = None):
        message = reason or f"cannot change order status from {from_status} to {to_status}"
        super().__init__(message, from_status=from_status, to_status=to_status)
        self.from_status = from_status
        self.to_status = to_status


class InsufficientFunds(DomainException):
    code = ErrorCode.INSUFFICIENT_FUNDS
    http_status = 402

    def __init__(self, balance: float, amount: float):
        super().__init__("insufficient balance", balance=balance, amount=amount)
        self.balance = balance
        self.amount = amount


class ConflictError(DomainException):
    """A concurrent change won the race for the same record"""
    code = ErrorCode.CONFLICT
    http_status = 409


class NotFound(DomainException):
    code = ErrorCode.NOT_FOUND
    http_status = 404

    def __init__(self, entity: str, key: Any = None):
        message = f"{entity} not found" if key is None else f"{entity} {key} not found"
        super().__init__(message, entity=entity, key=key)
        self.entity = entity


class Forbidden(DomainException):
    code = ErrorCode.FORBIDDEN
    http_status = 403


class Unauthenticated(DomainException):
    code = ErrorCode.UNAUTHENTICATED
    http_status = 401


class TokenExpired(Unauthenticated):
    code = ErrorCode.TOKEN_EXPIRED

    def __init__(self, message: str = "token expired, please log in again"):
        super().__init__(message)
