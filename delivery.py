"""
Delivery Fee Calculator
=======================
Distance tiers, then a per-area (barangay) fallback.

    0 .. free radius        free
    free .. flat radius     flat fee
    beyond flat radius      fee_per_km x (distance - flat radius)
                            (+ flat fee when configured)
"""

import re
import logging
from typing import List, Optional, Iterable
from dataclasses import dataclass

from errors import ValidationError
from models import DeliveryFee, round_money


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryTiers:
    """Distance policy for delivery fees."""
    free_radius_km: float = 0.5
    flat_radius_km: float = 1.0
    flat_fee: float = 20.0
    fee_per_km: float = 15.0
    charge_flat_fee_beyond_flat_radius: bool = False

    @classmethod
    def from_config(cls, pricing_config, fee_per_km: Optional[float] = None) -> 'DeliveryTiers':
        """Build tiers from PricingConfig, optionally overriding the per-km rate."""
        return cls(
            free_radius_km=pricing_config.free_radius_km,
            flat_radius_km=pricing_config.flat_radius_km,
            flat_fee=pricing_config.flat_fee,
            fee_per_km=pricing_config.fee_per_kilometer if fee_per_km is None else fee_per_km,
            charge_flat_fee_beyond_flat_radius=pricing_config.charge_flat_fee_beyond_flat_radius,
        )


def fee_for_distance(distance_km: float, tiers: DeliveryTiers = DeliveryTiers()) -> float:
    """
    Delivery fee for a distance.

    Raises:
        ValidationError: If distance is negative
    """
    if distance_km is None or distance_km < 0:
        raise ValidationError(f"Invalid delivery distance: {distance_km}")

    if distance_km <= tiers.free_radius_km:
        return 0.0

    if distance_km <= tiers.flat_radius_km:
        return round_money(tiers.flat_fee)

    metered = tiers.fee_per_km * (distance_km - tiers.flat_radius_km)
    if tiers.charge_flat_fee_beyond_flat_radius:
        metered += tiers.flat_fee

    return round_money(metered)


# ============================================================================
# PER-AREA FEES
# ============================================================================

def _normalize_area(text: str) -> str:
    """Lower-case and fold hyphens/whitespace runs to one space."""
    return re.sub(r"[\s\-]+", " ", (text or "").lower()).strip()


def find_area_fee(address: Optional[str], fees: Iterable[DeliveryFee]) -> Optional[DeliveryFee]:
    """
    Find the barangay fee whose name appears in an address.

    The longest matching name wins, so "San Jose Norte" is preferred over
    "San Jose".
    """
    if not address:
        return None

    haystack = f" {_normalize_area(address)} "
    best = None

    for fee in fees:
        needle = _normalize_area(fee.barangay)
        if not needle:
            continue
        if re.search(rf"(?<![a-z0-9]){re.escape(needle)}(?![a-z0-9])", haystack):
            if best is None or len(needle) > len(_normalize_area(best.barangay)):
                best = fee

    return best


def validate_area_fee(barangay: str, fee: float) -> DeliveryFee:
    """
    Raises:
        ValidationError: If the barangay is blank or the fee negative
    """
    name = (barangay or "").strip()
    if not name:
        raise ValidationError("Barangay name is required")

    if fee is None or fee < 0:
        raise ValidationError(f"Delivery fee cannot be negative: {fee}")

    return DeliveryFee(barangay=name, fee=round_money(fee))


def resolve_delivery_fee(
    distance_km: Optional[float],
    address: Optional[str],
    area_fees: List[DeliveryFee],
    tiers: DeliveryTiers
) -> float:
    """
    Fee for a delivery order.

    Distance wins when known; otherwise the address is matched against
    area fees; otherwise 0.
    """
    if distance_km is not None:
        return fee_for_distance(distance_km, tiers)

    match = find_area_fee(address, area_fees)
    if match is not None:
        return round_money(match.fee)

    logger.info("No distance or matching barangay for delivery, fee is 0")
    return 0.0
