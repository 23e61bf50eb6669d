"""
Pricing Calculator
==================
Pure, idempotent totals for an order.

    subtotal = sum(unit_price x quantity)
    discount = clamp(discount, 0, subtotal)
    total    = max(0, subtotal + platform_fee + delivery_fee - discount)

Bundle lines carry the bundle price as their unit price, so constituents
never enter the subtotal. All money is rounded to 2 decimals.
"""

from typing import Dict, Any, Iterable
from dataclasses import dataclass

from models import Order, OrderItem, round_money


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: float
    platform_fee: float
    delivery_fee: float
    discount: float
    total: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "platform_fee": self.platform_fee,
            "delivery_fee": self.delivery_fee,
            "discount": self.discount,
            "total": self.total,
        }


def compute_subtotal(items: Iterable[OrderItem]) -> float:
    return round_money(sum(item.unit_price * item.quantity for item in items))


def platform_fee_for(enabled: bool, amount: float) -> float:
    """Configured platform fee, or 0 when the owner disabled it."""
    if not enabled:
        return 0.0
    return round_money(max(0.0, amount))


def compute_totals(
    items: Iterable[OrderItem],
    platform_fee: float = 0.0,
    delivery_fee: float = 0.0,
    discount: float = 0.0
) -> PriceBreakdown:
    """
    Compute order totals.

    Args:
        items: Order lines
        platform_fee: Platform fee already resolved against settings
        delivery_fee: Delivery fee (0 for pickup orders)
        discount: Requested discount; clamped to [0, subtotal]

    Returns:
        PriceBreakdown
    """
    subtotal = compute_subtotal(items)
    platform_fee = round_money(max(0.0, platform_fee))
    delivery_fee = round_money(max(0.0, delivery_fee))
    discount = round_money(min(max(0.0, discount), subtotal))

    total = round_money(max(0.0, subtotal + platform_fee + delivery_fee - discount))

    return PriceBreakdown(
        subtotal=subtotal,
        platform_fee=platform_fee,
        delivery_fee=delivery_fee,
        discount=discount,
        total=total,
    )


def reprice(order: Order) -> PriceBreakdown:
    """Totals for an order's current items with its existing fees and discount."""
    return compute_totals(
        order.items,
        platform_fee=order.platform_fee,
        delivery_fee=order.delivery_fee,
        discount=order.discount,
    )


def apply_breakdown(order: Order, breakdown: PriceBreakdown) -> Order:
    order.subtotal = breakdown.subtotal
    order.platform_fee = breakdown.platform_fee
    order.delivery_fee = breakdown.delivery_fee
    order.discount = breakdown.discount
    order.total = breakdown.total
    return order
