"""
Menu Module
===========
In-memory menu index used to resolve order selections.

The index is built once per request from store rows and is read-only
afterwards. It never talks to the store itself.

Responsibilities:
- Lookup of items, variants and choice groups by id
- "From" pricing for items with variants
- Deterministic validation of raw menu rows
"""

import logging
from typing import Dict, List, Any, Optional, Iterable
from collections import defaultdict

from prometheus_client import Counter

from models import MenuItem, MenuItemVariant, MenuItemChoiceGroup


logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

# Validation limits
MAX_MENU_SIZE = 1000
MAX_ITEM_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 500
MAX_ITEM_PRICE = 100000.00


# ============================================================================
# METRICS
# ============================================================================

menu_validation_errors = Counter(
    'menu_validation_errors_total',
    'Menu rows rejected while building the index',
    ['error_type']
)


# ============================================================================
# ROW VALIDATION
# ============================================================================

def normalize_price(price: Any) -> Optional[float]:
    """Normalize price to float (deterministic)."""
    try:
        if isinstance(price, bool):
            return None
        if isinstance(price, (int, float)):
            price_float = float(price)
        elif isinstance(price, str):
            price_clean = price.replace("₱", "").replace(",", "").strip()
            price_float = float(price_clean)
        else:
            return None

        if price_float < 0 or price_float > MAX_ITEM_PRICE:
            return None

        return round(price_float, 2)

    except (ValueError, TypeError):
        return None


def validate_item_row(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Validate a raw menu item row.

    Returns the cleaned row, or None when the row is unusable.
    """
    if not isinstance(row, dict):
        return None

    if "item_id" not in row or "name" not in row or "price" not in row:
        menu_validation_errors.labels(error_type='missing_fields').inc()
        return None

    name = str(row["name"]).strip()
    if not name or len(name) > MAX_ITEM_NAME_LENGTH:
        menu_validation_errors.labels(error_type='invalid_name').inc()
        return None

    price = normalize_price(row["price"])
    if price is None:
        menu_validation_errors.labels(error_type='invalid_price').inc()
        return None

    description = str(row.get("description") or "").strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        description = description[:MAX_DESCRIPTION_LENGTH] + "..."

    cleaned = dict(row)
    cleaned.update(name=name, price=price, description=description)
    return cleaned


# ============================================================================
# MENU INDEX
# ============================================================================

class MenuIndex:
    """
    Read-only lookup over one snapshot of the menu.

    Variants are keyed by item, choice groups by their bundle, both kept in
    display order.
    """

    def __init__(
        self,
        items: Iterable[MenuItem],
        variants: Iterable[MenuItemVariant] = (),
        choice_groups: Iterable[MenuItemChoiceGroup] = ()
    ):
        self.items: Dict[str, MenuItem] = {}
        self.variants: Dict[str, MenuItemVariant] = {}
        self._variants_by_item: Dict[str, List[MenuItemVariant]] = defaultdict(list)
        self.choice_groups: Dict[str, MenuItemChoiceGroup] = {}
        self._groups_by_item: Dict[str, List[MenuItemChoiceGroup]] = defaultdict(list)

        for item in items:
            self.items[item.item_id] = item

        for variant in variants:
            self.variants[variant.variant_id] = variant
            self._variants_by_item[variant.menu_item_id].append(variant)

        for group in sorted(choice_groups, key=lambda g: g.order):
            self.choice_groups[group.group_id] = group
            self._groups_by_item[group.menu_item_id].append(group)

    @classmethod
    def from_rows(
        cls,
        item_rows: List[Dict[str, Any]],
        variant_rows: List[Dict[str, Any]] = (),
        group_rows: List[Dict[str, Any]] = ()
    ) -> 'MenuIndex':
        """
        Build an index from raw store rows, dropping invalid item rows.

        Args:
            item_rows: Menu item rows
            variant_rows: Variant rows
            group_rows: Choice group rows with nested choices

        Returns:
            MenuIndex
        """
        items = []
        for row in list(item_rows)[:MAX_MENU_SIZE]:
            cleaned = validate_item_row(row)
            if cleaned is None:
                logger.warning(f"Skipping invalid menu row: {row.get('item_id') if isinstance(row, dict) else row!r}")
                continue
            items.append(MenuItem.from_dict(cleaned))

        return cls(
            items=items,
            variants=[MenuItemVariant.from_dict(v) for v in variant_rows],
            choice_groups=[MenuItemChoiceGroup.from_dict(g) for g in group_rows],
        )

    def get_item(self, item_id: str) -> Optional[MenuItem]:
        return self.items.get(item_id)

    def get_variant(self, variant_id: str) -> Optional[MenuItemVariant]:
        return self.variants.get(variant_id)

    def has_variants(self, item_id: str) -> bool:
        return bool(self._variants_by_item.get(item_id))

    def choice_groups_for(self, item_id: str) -> List[MenuItemChoiceGroup]:
        """Choice groups of a bundle, in display order."""
        return list(self._groups_by_item.get(item_id, []))

    def from_price(self, item_id: str) -> Optional[float]:
        """
        Display price of an item.

        Items with variants are priced from their cheapest available
        variant; otherwise the item's own price.
        """
        item = self.items.get(item_id)
        if item is None:
            return None

        available = [v.price for v in self._variants_by_item.get(item_id, []) if v.available]
        if available:
            return min(available)
        return item.price

    def __len__(self):
        return len(self.items)
