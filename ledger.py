"""
Order Modification Ledger
=========================
Append-only audit trail of post-creation changes.

One record is written per logical edit, in the same store call that
persists the change. Records are never updated or deleted.

Snapshots:
    item edits     {"items": [...], "subtotal": x, "total": y}
    status changes {"status": "..."}
"""

import json
import uuid
import logging
from typing import List, Optional, Dict, Any
from datetime import datetime

from prometheus_client import Counter

from errors import ValidationError
from models import (
    Actor,
    Order,
    OrderItem,
    OrderModification,
    ModificationType,
    utcnow,
)
from order_state import OrderStatus


logger = logging.getLogger(__name__)


ITEM_EDIT_TYPES = {
    ModificationType.ITEM_ADDED,
    ModificationType.ITEM_REMOVED,
    ModificationType.ITEM_QUANTITY_CHANGED,
    ModificationType.ITEM_PRICE_CHANGED,
    ModificationType.ORDER_EDITED,
}


ledger_records = Counter(
    'order_modifications_total',
    'Audit records appended',
    ['modification_type']
)


# ============================================================================
# SNAPSHOTS
# ============================================================================

def items_snapshot(items: List[OrderItem], subtotal: float, total: float) -> str:
    return json.dumps({
        "items": [item.to_dict() for item in items],
        "subtotal": subtotal,
        "total": total,
    })


def order_snapshot(order: Order) -> str:
    return items_snapshot(order.items, order.subtotal, order.total)


def _tally(items: List[OrderItem]) -> Dict[str, Dict[str, Any]]:
    # Repeated lines add up under one key
    tally: Dict[str, Dict[str, Any]] = {}
    for item in items:
        entry = tally.setdefault(item.line_key, {"name": item.name, "quantity": 0, "prices": []})
        entry["quantity"] += item.quantity
        if item.unit_price not in entry["prices"]:
            entry["prices"].append(item.unit_price)
    return tally


def _prices(entry: Dict[str, Any]) -> str:
    return "/".join(f"₱{price:.2f}" for price in entry["prices"])


def summarize_item_changes(previous: List[OrderItem], current: List[OrderItem]) -> str:
    """
    Short human-readable diff of two item lists.

    Lines are matched by item, variant and choices. Example:
        "added: Fries x2; removed: Soda; qty: Burger 1→3"
    """
    before = _tally(previous)
    after = _tally(current)

    added = []
    changed = []
    repriced = []

    for key, entry in after.items():
        old = before.get(key)
        if old is None:
            added.append(f"{entry['name']} x{entry['quantity']}")
            continue
        if old["quantity"] != entry["quantity"]:
            changed.append(f"{entry['name']} {old['quantity']}→{entry['quantity']}")
        if old["prices"] != entry["prices"]:
            repriced.append(f"{entry['name']} {_prices(old)}→{_prices(entry)}")

    removed = [entry["name"] for key, entry in before.items() if key not in after]

    parts = []
    if added:
        parts.append(f"added: {', '.join(added)}")
    if removed:
        parts.append(f"removed: {', '.join(removed)}")
    if changed:
        parts.append(f"qty: {', '.join(changed)}")
    if repriced:
        parts.append(f"price: {', '.join(repriced)}")

    return "; ".join(parts) or "items updated"


# ============================================================================
# RECORD BUILDERS
# ============================================================================

def _record(
    order_id: str,
    actor: Actor,
    modification_type: ModificationType,
    previous_value: str,
    new_value: str,
    item_details: Optional[str],
    timestamp: Optional[datetime]
) -> OrderModification:
    return OrderModification(
        modification_id=str(uuid.uuid4()),
        order_id=order_id,
        modified_by=actor.user_id,
        modified_by_name=actor.name,
        modification_type=modification_type,
        previous_value=previous_value,
        new_value=new_value,
        item_details=item_details,
        timestamp=timestamp or utcnow(),
    )


def item_edit_record(
    before: Order,
    after: Order,
    actor: Actor,
    modification_type: ModificationType,
    item_details: Optional[str] = None,
    timestamp: Optional[datetime] = None
) -> OrderModification:
    """
    Audit record for an item edit.

    Args:
        before: Order as it was read
        after: Order with new items and recomputed totals
        actor: Owner making the edit
        modification_type: One of the item edit types
        item_details: Caller summary; derived from the diff when omitted
        timestamp: Record time (defaults to now)
    """
    if modification_type not in ITEM_EDIT_TYPES:
        raise ValidationError(f"Not an item edit type: {modification_type.value}")

    details = item_details.strip() if item_details and item_details.strip() else None
    if details is None:
        details = summarize_item_changes(before.items, after.items)

    return _record(
        order_id=after.order_id,
        actor=actor,
        modification_type=modification_type,
        previous_value=order_snapshot(before),
        new_value=order_snapshot(after),
        item_details=details,
        timestamp=timestamp,
    )


def status_change_record(
    order_id: str,
    actor: Actor,
    previous_status: OrderStatus,
    new_status: OrderStatus,
    timestamp: Optional[datetime] = None
) -> OrderModification:
    """Audit record for a status transition."""
    return _record(
        order_id=order_id,
        actor=actor,
        modification_type=ModificationType.STATUS_CHANGED,
        previous_value=json.dumps({"status": previous_status.value}),
        new_value=json.dumps({"status": new_status.value}),
        item_details=f'Status changed from "{previous_status.label}" to "{new_status.label}"',
        timestamp=timestamp,
    )


def parse_snapshot(value: str) -> Dict[str, Any]:
    """Decode a stored snapshot; malformed values decode to {}."""
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Undecodable modification snapshot")
        return {}
    return decoded if isinstance(decoded, dict) else {}


# ============================================================================
# READ SIDE
# ============================================================================

class ModificationLedger:
    """Per-order history over the store."""

    def __init__(self, store):
        self.store = store

    async def history(self, order_id: str) -> List[OrderModification]:
        """Records for an order, oldest first."""
        records = await self.store.list_modifications(order_id)
        return sorted(records, key=lambda record: record.timestamp)

    @staticmethod
    def count(record: OrderModification):
        ledger_records.labels(modification_type=record.modification_type.value).inc()
