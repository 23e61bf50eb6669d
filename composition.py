"""
Order Composition
=================
Resolves a menu selection (item + optional variant + optional bundle
choices) into a concrete, priced order line.

Rules:
- Items with variants need a variant; the variant price is the unit price
- Bundles always sell at the bundle's own price; choices change only the
  resolved constituents
- Everything else uses the menu item's base price
"""

import logging
from typing import Dict, List, Any, Optional, Set
from dataclasses import dataclass, field

from prometheus_client import Counter

from errors import ValidationError
from menu import MenuIndex
from models import (
    OrderItem,
    SelectedChoice,
    BundleItem,
    MenuItem,
    MenuItemChoice,
    round_money,
)


logger = logging.getLogger(__name__)


MAX_QUANTITY_PER_LINE = 100


composition_failures = Counter(
    'order_composition_failures_total',
    'Rejected menu selections',
    ['reason']
)


@dataclass(frozen=True)
class ItemSelection:
    """A customer's pick from the menu, before pricing."""
    menu_item_id: str
    quantity: int = 1
    variant_id: Optional[str] = None
    choices: Dict[str, str] = field(default_factory=dict)  # group_id -> choice name

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ItemSelection':
        return cls(
            menu_item_id=data["menu_item_id"],
            quantity=data.get("quantity", 1),
            variant_id=data.get("variant_id"),
            choices=dict(data.get("choices") or {}),
        )


def _reject(reason: str, message: str):
    composition_failures.labels(reason=reason).inc()
    logger.warning(message)
    raise ValidationError(message)


def normalize_quantity(quantity: Any) -> int:
    """
    Validate a line quantity.

    Raises:
        ValidationError: If quantity is not an integer in range
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        _reject('invalid_quantity', f"Quantity must be a whole number: {quantity!r}")

    if quantity < 1:
        _reject('invalid_quantity', f"Quantity must be at least 1: {quantity}")

    if quantity > MAX_QUANTITY_PER_LINE:
        _reject('invalid_quantity', f"Quantity cannot exceed {MAX_QUANTITY_PER_LINE}: {quantity}")

    return quantity


def merge_lines(lines: List[OrderItem]) -> List[OrderItem]:
    """
    Collapse identical lines (same item, variant, choices and unit price)
    into one, keeping the position of the first.

    Raises:
        ValidationError: If a merged quantity is out of range
    """
    merged: List[OrderItem] = []
    for line in lines:
        for index, existing in enumerate(merged):
            if existing.line_key == line.line_key and existing.unit_price == line.unit_price:
                merged[index] = existing.with_quantity(
                    normalize_quantity(existing.quantity + line.quantity)
                )
                break
        else:
            merged.append(line)
    return merged


class OrderComposer:
    """
    Builds priced order lines against one menu snapshot.

    Stateless apart from the index; safe to reuse for every line of a
    request.
    """

    def __init__(self, menu: MenuIndex):
        self.menu = menu

    def build_line(self, selection: ItemSelection) -> OrderItem:
        """
        Resolve a selection into an order line.

        Args:
            selection: Item, quantity, variant and choice picks

        Returns:
            Priced, immutable OrderItem

        Raises:
            ValidationError: If the selection cannot be resolved
        """
        quantity = normalize_quantity(selection.quantity)

        item = self.menu.get_item(selection.menu_item_id)
        if item is None:
            _reject('unknown_item', f"Menu item not found: {selection.menu_item_id}")

        if not item.available:
            _reject('unavailable', f"{item.name} is currently unavailable")

        if item.is_bundle:
            if selection.variant_id:
                _reject('unexpected_variant', f"{item.name} is a bundle and has no variants")
            return self._build_bundle_line(item, selection, quantity)

        if selection.choices:
            _reject('unexpected_choices', f"{item.name} is not a bundle and takes no choices")

        if self.menu.has_variants(item.item_id):
            return self._build_variant_line(item, selection, quantity)

        if selection.variant_id:
            _reject('unexpected_variant', f"{item.name} has no variants")

        return OrderItem(
            menu_item_id=item.item_id,
            name=item.name,
            unit_price=round_money(item.price),
            quantity=quantity,
        )

    def build_lines(self, selections: List[ItemSelection]) -> List[OrderItem]:
        return [self.build_line(selection) for selection in selections]

    # ========================================================================
    # VARIANTS
    # ========================================================================

    def _build_variant_line(self, item: MenuItem, selection: ItemSelection, quantity: int) -> OrderItem:
        if not selection.variant_id:
            _reject('missing_variant', f"Please select an option for {item.name}")

        variant = self.menu.get_variant(selection.variant_id)
        if variant is None or variant.menu_item_id != item.item_id:
            _reject('unknown_variant', f"Variant {selection.variant_id} does not belong to {item.name}")

        if not variant.available:
            _reject('unavailable', f"{item.name} ({variant.name}) is currently unavailable")

        return OrderItem(
            menu_item_id=item.item_id,
            name=f"{item.name} ({variant.name})",
            unit_price=round_money(variant.price),
            quantity=quantity,
            variant_id=variant.variant_id,
            variant_name=variant.name,
        )

    # ========================================================================
    # BUNDLES
    # ========================================================================

    def _build_bundle_line(self, item: MenuItem, selection: ItemSelection, quantity: int) -> OrderItem:
        groups = self.menu.choice_groups_for(item.item_id)
        groups_by_id = {group.group_id: group for group in groups}

        for group_id in selection.choices:
            if group_id not in groups_by_id:
                _reject('unknown_group', f"Choice group {group_id} does not belong to {item.name}")

        selected_choices: Dict[str, SelectedChoice] = {}
        picked: List[MenuItemChoice] = []

        for group in groups:
            choice_name = selection.choices.get(group.group_id)

            if not choice_name:
                if group.required:
                    _reject('missing_choice', f"Please select {group.name} for {item.name}")
                continue

            choice = group.find_choice(choice_name)
            if choice is None:
                _reject('unknown_choice', f"{choice_name} is not an option for {group.name}")

            if not choice.available:
                _reject('unavailable', f"{choice_name} is currently unavailable")

            selected_choices[group.group_id] = SelectedChoice(
                name=choice.name,
                price=round_money(choice.price),
            )
            picked.append(choice)

        bundle_items = self._fixed_constituents(item, groups)
        for choice in picked:
            resolved = self._resolve_choice(choice)
            if resolved is not None:
                bundle_items.append(resolved)

        name = item.name
        if picked:
            name = f"{item.name} - {', '.join(choice.name for choice in picked)}"

        return OrderItem(
            menu_item_id=item.item_id,
            name=name,
            unit_price=round_money(item.price),
            quantity=quantity,
            selected_choices=selected_choices,
            bundle_items=tuple(bundle_items),
        )

    def _fixed_constituents(self, item: MenuItem, groups) -> List[BundleItem]:
        """Declared constituents that no choice in any group refers to."""
        referenced: Set[str] = {
            choice.menu_item_id
            for group in groups
            for choice in group.choices
            if choice.menu_item_id
        }

        fixed = []
        for component in sorted(item.bundle_items, key=lambda c: c.order):
            if component.menu_item_id in referenced:
                continue

            constituent = self.menu.get_item(component.menu_item_id)
            if constituent is None:
                logger.warning(
                    f"Bundle {item.item_id} lists missing item {component.menu_item_id}"
                )
                continue

            fixed.append(BundleItem(
                menu_item_id=constituent.item_id,
                name=constituent.name,
                price=round_money(constituent.price),
            ))

        return fixed

    def _resolve_choice(self, choice: MenuItemChoice) -> Optional[BundleItem]:
        # Label-only choices have no concrete item behind them
        if not choice.menu_item_id:
            return None

        constituent = self.menu.get_item(choice.menu_item_id)
        if constituent is None:
            _reject('unknown_item', f"Menu item not found for choice {choice.name}")

        if choice.variant_id:
            variant = self.menu.get_variant(choice.variant_id)
            if variant is None:
                _reject('unknown_variant', f"Variant not found for choice {choice.name}")
            return BundleItem(
                menu_item_id=constituent.item_id,
                variant_id=variant.variant_id,
                name=f"{constituent.name} ({variant.name})",
                price=round_money(variant.price),
            )

        return BundleItem(
            menu_item_id=constituent.item_id,
            name=constituent.name,
            price=round_money(constituent.price),
        )
