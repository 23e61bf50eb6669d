"""
Voucher Validator
=================
Checks a voucher code against an order amount and computes the discount.

Checks run in a fixed order and stop at the first failure:
    1. exists and active      -> INVALID_CODE
    2. not expired            -> EXPIRED
    3. usage limit not hit    -> USAGE_LIMIT_REACHED
    4. order meets minimum    -> BELOW_MINIMUM

Validation is read-only. Redemption (usage_count + 1) happens in the
store together with order placement.
"""

import re
import logging
from typing import Dict, Any, Optional
from datetime import datetime
from dataclasses import dataclass

from prometheus_client import Counter

from errors import ValidationError, VoucherRejected, VoucherRejection
from models import Voucher, Promotion, DiscountType, round_money, utcnow


logger = logging.getLogger(__name__)


VOUCHER_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MIN_CODE_LENGTH = 3
MAX_CODE_LENGTH = 50


voucher_validations = Counter(
    'voucher_validations_total',
    'Voucher validation results',
    ['result']
)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def format_amount(amount: float) -> str:
    """Render a peso amount without a trailing .0 for whole numbers."""
    amount = round_money(amount)
    if amount == int(amount):
        return str(int(amount))
    return f"{amount:.2f}".rstrip("0")


@dataclass(frozen=True)
class VoucherCheck:
    """Result of a voucher validation."""
    valid: bool
    discount: float
    message: Optional[str] = None
    reason: Optional[VoucherRejection] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "discount": self.discount,
            "message": self.message,
            "reason": self.reason.value if self.reason else None,
            "code": self.code,
        }

    def raise_for_rejection(self):
        """
        Raises:
            VoucherRejected: If the check failed
        """
        if not self.valid:
            raise VoucherRejected(self.reason, self.message)


# ============================================================================
# DISCOUNT MATH
# ============================================================================

def compute_voucher_discount(voucher: Voucher, amount: float) -> float:
    """
    Discount a voucher gives on an amount.

    Percentage vouchers are capped by max_discount when one is set.
    """
    if voucher.discount_type == DiscountType.PERCENTAGE:
        discount = amount * voucher.value / 100
        if voucher.max_discount is not None:
            discount = min(discount, voucher.max_discount)
    else:
        discount = voucher.value

    return round_money(max(0.0, discount))


def compute_promotion_discount(promotion: Promotion, subtotal: float) -> float:
    if promotion.discount_type == DiscountType.PERCENTAGE:
        discount = subtotal * promotion.discount_value / 100
    else:
        discount = promotion.discount_value
    return round_money(max(0.0, discount))


# ============================================================================
# VALIDATION
# ============================================================================

def check_voucher(
    voucher: Optional[Voucher],
    amount: float,
    now: Optional[datetime] = None
) -> VoucherCheck:
    """
    Run the ordered voucher checks.

    Args:
        voucher: Stored voucher, or None when the code did not resolve
        amount: Order subtotal the voucher applies to
        now: Evaluation time (defaults to current UTC time)

    Returns:
        VoucherCheck with the discount, or the first failure
    """
    now = now or utcnow()
    code = voucher.code if voucher else None

    if voucher is None or not voucher.active:
        return _rejected(VoucherRejection.INVALID_CODE, "Invalid voucher code", code)

    if now >= voucher.expires_at:
        return _rejected(VoucherRejection.EXPIRED, "Voucher has expired", code)

    if voucher.usage_limit > 0 and voucher.usage_count >= voucher.usage_limit:
        return _rejected(VoucherRejection.USAGE_LIMIT_REACHED, "Voucher usage limit reached", code)

    if amount < voucher.min_order_amount:
        return _rejected(
            VoucherRejection.BELOW_MINIMUM,
            f"Minimum order amount is ₱{format_amount(voucher.min_order_amount)}",
            code
        )

    discount = compute_voucher_discount(voucher, amount)
    voucher_validations.labels(result='valid').inc()

    return VoucherCheck(valid=True, discount=discount, code=code)


def _rejected(reason: VoucherRejection, message: str, code: Optional[str]) -> VoucherCheck:
    voucher_validations.labels(result=reason.value).inc()
    logger.warning(
        f"Voucher rejected: {message}",
        extra={"voucher_code": code, "reason": reason.value}
    )
    return VoucherCheck(valid=False, discount=0.0, message=message, reason=reason, code=code)


# ============================================================================
# OWNER-SIDE DEFINITIONS
# ============================================================================

def validate_voucher_definition(voucher: Voucher) -> Voucher:
    """
    Validate a voucher before it is saved.

    Returns:
        The voucher with its code normalized to upper case

    Raises:
        ValidationError: If the definition is malformed
    """
    code = (voucher.code or "").strip()

    if len(code) < MIN_CODE_LENGTH:
        raise ValidationError(f"Voucher code must be at least {MIN_CODE_LENGTH} characters")

    if len(code) > MAX_CODE_LENGTH:
        raise ValidationError(f"Voucher code must be {MAX_CODE_LENGTH} characters or less")

    if not VOUCHER_CODE_PATTERN.match(code):
        raise ValidationError(
            "Voucher code can only contain letters, numbers, hyphens, and underscores"
        )

    if voucher.value <= 0:
        raise ValidationError("Voucher value must be greater than 0")

    if voucher.discount_type == DiscountType.PERCENTAGE and voucher.value > 100:
        raise ValidationError("Percentage discount cannot exceed 100")

    if voucher.min_order_amount < 0:
        raise ValidationError("Minimum order amount cannot be negative")

    if voucher.max_discount is not None and voucher.max_discount <= 0:
        raise ValidationError("Max discount must be greater than 0")

    if voucher.usage_limit < 0:
        raise ValidationError("Usage limit cannot be negative")

    voucher.code = code.upper()
    if voucher.discount_type == DiscountType.FIXED:
        voucher.max_discount = None

    return voucher
