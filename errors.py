"""
Engine Errors
=============
Error taxonomy for the order lifecycle and pricing engine.

Every rejection is raised before anything is written, so a caller that
catches one of these knows the order is unchanged.
"""

from enum import Enum
from typing import Optional


class OrderEngineError(Exception):
    """Base class for all engine rejections."""
    pass


class ValidationError(OrderEngineError):
    """Raised for malformed or incomplete input (missing choice, bad quantity)."""
    pass


class InvalidTransition(OrderEngineError):
    """Raised when a status change is not permitted from the current state."""

    def __init__(self, message: str, from_status: Optional[str] = None, to_status: Optional[str] = None):
        super().__init__(message)
        self.from_status = from_status
        self.to_status = to_status


class VoucherRejection(Enum):
    """Validator failure modes, in check order."""
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    BELOW_MINIMUM = "below_minimum"


class VoucherRejected(OrderEngineError):
    """Raised when a voucher cannot be applied to an order."""

    def __init__(self, reason: VoucherRejection, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class ScheduleViolation(OrderEngineError):
    """Raised when a pre-order slot falls outside the published windows."""
    pass


class OrderNotFoundError(OrderEngineError):
    """Raised when an order id does not resolve."""
    pass


class PermissionDeniedError(OrderEngineError):
    """Raised when the actor's role does not allow the operation."""
    pass


class ConcurrentModificationError(OrderEngineError):
    """Raised when the order changed between read and write."""
    pass
