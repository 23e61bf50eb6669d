"""
Data Model
==========
Entities shared by the engine and the store.

Order lines are frozen snapshots: once priced, a line never follows later
menu price changes. Orders themselves are mutable records that the engine
copies, changes and hands to the store as a whole.
"""

from typing import Dict, List, Any, Mapping, Optional, Tuple
from types import MappingProxyType
from datetime import datetime, timezone
from dataclasses import dataclass, field
from enum import Enum

from order_state import OrderStatus, OrderType, Fulfillment


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp.

    Accepts datetimes, ISO strings and epoch milliseconds. Naive values
    are taken as UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def round_money(amount: float) -> float:
    return round(float(amount), 2)


# ============================================================================
# ENUMS
# ============================================================================

class Role(Enum):
    OWNER = "owner"
    CUSTOMER = "customer"


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentPlan(Enum):
    FULL = "full"
    DOWNPAYMENT = "downpayment"


class RemainingPaymentMethod(Enum):
    ONLINE = "online"
    CASH = "cash"


class ModificationType(Enum):
    ITEM_ADDED = "item_added"
    ITEM_REMOVED = "item_removed"
    ITEM_QUANTITY_CHANGED = "item_quantity_changed"
    ITEM_PRICE_CHANGED = "item_price_changed"
    ORDER_EDITED = "order_edited"
    STATUS_CHANGED = "status_changed"


def _enum_or_none(enum_cls, value):
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    return enum_cls(value)


# ============================================================================
# IDENTITY
# ============================================================================

@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as supplied by the identity provider."""
    user_id: str
    name: str
    role: Role

    @property
    def is_owner(self) -> bool:
        return self.role == Role.OWNER


# ============================================================================
# ORDER LINES (immutable snapshots)
# ============================================================================

@dataclass(frozen=True)
class SelectedChoice:
    name: str
    price: float

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "price": self.price}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SelectedChoice':
        return cls(name=data["name"], price=float(data.get("price", 0)))


@dataclass(frozen=True)
class BundleItem:
    """Resolved constituent of a bundle line."""
    menu_item_id: str
    name: str
    price: float
    variant_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "menu_item_id": self.menu_item_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "price": self.price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BundleItem':
        return cls(
            menu_item_id=data["menu_item_id"],
            name=data["name"],
            price=float(data.get("price", 0)),
            variant_id=data.get("variant_id"),
        )


@dataclass(frozen=True)
class OrderItem:
    """
    Immutable, priced order line.

    CRITICAL: frozen=True means the price captured at order time can never
    drift with the menu.
    Choices are a read-only mapping and lines are hashable.
    """
    menu_item_id: str
    name: str
    unit_price: float
    quantity: int
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    selected_choices: Mapping[str, SelectedChoice] = field(default_factory=dict, hash=False)
    bundle_items: Tuple[BundleItem, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "selected_choices", MappingProxyType(dict(self.selected_choices)))
        object.__setattr__(self, "bundle_items", tuple(self.bundle_items))

    @property
    def price(self) -> float:
        """Line total (unit price x quantity)."""
        return round_money(self.unit_price * self.quantity)

    @property
    def line_key(self) -> str:
        """Identity of the line for diffing (item + variant + choices)."""
        choices = "|".join(
            f"{group_id}:{choice.name}"
            for group_id, choice in sorted(self.selected_choices.items())
        )
        return f"{self.menu_item_id}:{self.variant_id or ''}:{choices}"

    def with_quantity(self, new_quantity: int) -> 'OrderItem':
        """Create new line with updated quantity (immutable)."""
        return OrderItem(
            menu_item_id=self.menu_item_id,
            name=self.name,
            unit_price=self.unit_price,
            quantity=new_quantity,
            variant_id=self.variant_id,
            variant_name=self.variant_name,
            selected_choices=dict(self.selected_choices),
            bundle_items=self.bundle_items,
        )

    def with_unit_price(self, new_unit_price: float) -> 'OrderItem':
        """Create new line with an owner-adjusted unit price."""
        return OrderItem(
            menu_item_id=self.menu_item_id,
            name=self.name,
            unit_price=round_money(new_unit_price),
            quantity=self.quantity,
            variant_id=self.variant_id,
            variant_name=self.variant_name,
            selected_choices=dict(self.selected_choices),
            bundle_items=self.bundle_items,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "menu_item_id": self.menu_item_id,
            "name": self.name,
            "price": self.price,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "variant_id": self.variant_id,
            "variant_name": self.variant_name,
            "selected_choices": {
                group_id: choice.to_dict()
                for group_id, choice in self.selected_choices.items()
            } or None,
            "bundle_items": [b.to_dict() for b in self.bundle_items] or None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OrderItem':
        quantity = int(data.get("quantity", 1))
        unit_price = data.get("unit_price")
        if unit_price is None:
            # Older rows only carry the line total
            unit_price = float(data.get("price", 0)) / max(quantity, 1)

        return cls(
            menu_item_id=data["menu_item_id"],
            name=data["name"],
            unit_price=round_money(unit_price),
            quantity=quantity,
            variant_id=data.get("variant_id"),
            variant_name=data.get("variant_name"),
            selected_choices={
                group_id: SelectedChoice.from_dict(choice)
                for group_id, choice in (data.get("selected_choices") or {}).items()
            },
            bundle_items=tuple(
                BundleItem.from_dict(b) for b in (data.get("bundle_items") or [])
            ),
        )


# ============================================================================
# ORDER
# ============================================================================

@dataclass
class CustomerSnapshot:
    """Customer contact details captured when the order is placed."""
    name: str
    phone: str
    address: Optional[str] = None
    gcash_number: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "gcash_number": self.gcash_number,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CustomerSnapshot':
        return cls(
            name=data.get("name", ""),
            phone=data.get("phone", ""),
            address=data.get("address"),
            gcash_number=data.get("gcash_number"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )


@dataclass
class Order:
    order_id: str
    customer_id: str
    customer: CustomerSnapshot
    items: List[OrderItem]
    order_type: OrderType
    status: OrderStatus
    subtotal: float = 0.0
    platform_fee: float = 0.0
    delivery_fee: float = 0.0
    discount: float = 0.0
    total: float = 0.0
    pre_order_fulfillment: Optional[Fulfillment] = None
    pre_order_scheduled_at: Optional[datetime] = None
    payment_plan: Optional[PaymentPlan] = None
    downpayment_amount: Optional[float] = None
    downpayment_proof_url: Optional[str] = None
    remaining_payment_method: Optional[RemainingPaymentMethod] = None
    remaining_payment_proof_url: Optional[str] = None
    payment_screenshot: Optional[str] = None
    voucher_code: Optional[str] = None
    promotion_id: Optional[str] = None
    denial_reason: Optional[str] = None
    estimated_prep_time: Optional[int] = None
    estimated_delivery_time: Optional[int] = None
    special_instructions: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 1

    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "platform_fee": self.platform_fee,
            "delivery_fee": self.delivery_fee,
            "discount": self.discount,
            "total": self.total,
            "order_type": self.order_type.value,
            "status": self.status.value,
            "pre_order_fulfillment": self.pre_order_fulfillment.value if self.pre_order_fulfillment else None,
            "pre_order_scheduled_at": to_iso(self.pre_order_scheduled_at),
            "payment_plan": self.payment_plan.value if self.payment_plan else None,
            "downpayment_amount": self.downpayment_amount,
            "downpayment_proof_url": self.downpayment_proof_url,
            "remaining_payment_method": self.remaining_payment_method.value if self.remaining_payment_method else None,
            "remaining_payment_proof_url": self.remaining_payment_proof_url,
            "payment_screenshot": self.payment_screenshot,
            "voucher_code": self.voucher_code,
            "promotion_id": self.promotion_id,
            "denial_reason": self.denial_reason,
            "estimated_prep_time": self.estimated_prep_time,
            "estimated_delivery_time": self.estimated_delivery_time,
            "special_instructions": self.special_instructions,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Order':
        return cls(
            order_id=data["order_id"],
            customer_id=data["customer_id"],
            customer=CustomerSnapshot.from_dict(data.get("customer") or {}),
            items=[OrderItem.from_dict(i) for i in data.get("items", [])],
            subtotal=float(data.get("subtotal", 0)),
            platform_fee=float(data.get("platform_fee", 0)),
            delivery_fee=float(data.get("delivery_fee") or 0),
            discount=float(data.get("discount", 0)),
            total=float(data.get("total", 0)),
            order_type=OrderType(data["order_type"]),
            status=OrderStatus(data["status"]),
            pre_order_fulfillment=_enum_or_none(Fulfillment, data.get("pre_order_fulfillment")),
            pre_order_scheduled_at=parse_datetime(data.get("pre_order_scheduled_at")),
            payment_plan=_enum_or_none(PaymentPlan, data.get("payment_plan")),
            downpayment_amount=data.get("downpayment_amount"),
            downpayment_proof_url=data.get("downpayment_proof_url"),
            remaining_payment_method=_enum_or_none(RemainingPaymentMethod, data.get("remaining_payment_method")),
            remaining_payment_proof_url=data.get("remaining_payment_proof_url"),
            payment_screenshot=data.get("payment_screenshot"),
            voucher_code=data.get("voucher_code"),
            promotion_id=data.get("promotion_id"),
            denial_reason=data.get("denial_reason"),
            estimated_prep_time=data.get("estimated_prep_time"),
            estimated_delivery_time=data.get("estimated_delivery_time"),
            special_instructions=data.get("special_instructions"),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=parse_datetime(data.get("updated_at")) or utcnow(),
            version=int(data.get("version", 1)),
        )


# ============================================================================
# AUDIT LEDGER
# ============================================================================

@dataclass(frozen=True)
class OrderModification:
    """Immutable audit record of a post-creation change."""
    modification_id: str
    order_id: str
    modified_by: str
    modified_by_name: str
    modification_type: ModificationType
    previous_value: str
    new_value: str
    item_details: Optional[str]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "modification_id": self.modification_id,
            "order_id": self.order_id,
            "modified_by": self.modified_by,
            "modified_by_name": self.modified_by_name,
            "modification_type": self.modification_type.value,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "item_details": self.item_details,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OrderModification':
        return cls(
            modification_id=data["modification_id"],
            order_id=data["order_id"],
            modified_by=data["modified_by"],
            modified_by_name=data.get("modified_by_name", ""),
            modification_type=ModificationType(data["modification_type"]),
            previous_value=data["previous_value"],
            new_value=data["new_value"],
            item_details=data.get("item_details"),
            timestamp=parse_datetime(data["timestamp"]),
        )


# ============================================================================
# MENU
# ============================================================================

@dataclass(frozen=True)
class BundleComponent:
    """Declared constituent of a bundle menu item."""
    menu_item_id: str
    order: int = 0


@dataclass(frozen=True)
class MenuItem:
    item_id: str
    name: str
    price: float
    category: str = "Other"
    description: str = ""
    available: bool = True
    is_bundle: bool = False
    bundle_items: Tuple[BundleComponent, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MenuItem':
        return cls(
            item_id=data["item_id"],
            name=data["name"],
            price=float(data["price"]),
            category=data.get("category") or "Other",
            description=data.get("description") or "",
            available=bool(data.get("available", True)),
            is_bundle=bool(data.get("is_bundle", False)),
            bundle_items=tuple(
                BundleComponent(menu_item_id=b["menu_item_id"], order=int(b.get("order", 0)))
                for b in (data.get("bundle_items") or [])
            ),
        )


@dataclass(frozen=True)
class MenuItemVariant:
    variant_id: str
    menu_item_id: str
    name: str
    price: float
    available: bool = True
    sku: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MenuItemVariant':
        return cls(
            variant_id=data["variant_id"],
            menu_item_id=data["menu_item_id"],
            name=data["name"],
            price=float(data["price"]),
            available=bool(data.get("available", True)),
            sku=data.get("sku"),
        )


@dataclass(frozen=True)
class MenuItemChoice:
    name: str
    price: float = 0.0
    available: bool = True
    order: int = 0
    menu_item_id: Optional[str] = None   # Concrete item substituted into the bundle
    variant_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MenuItemChoice':
        return cls(
            name=data["name"],
            price=float(data.get("price", 0)),
            available=bool(data.get("available", True)),
            order=int(data.get("order", 0)),
            menu_item_id=data.get("menu_item_id"),
            variant_id=data.get("variant_id"),
        )


@dataclass(frozen=True)
class MenuItemChoiceGroup:
    group_id: str
    menu_item_id: str
    name: str
    order: int = 0
    required: bool = False
    choices: Tuple[MenuItemChoice, ...] = field(default_factory=tuple)

    def find_choice(self, name: str) -> Optional[MenuItemChoice]:
        for choice in self.choices:
            if choice.name == name:
                return choice
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MenuItemChoiceGroup':
        choices = [MenuItemChoice.from_dict(c) for c in (data.get("choices") or [])]
        return cls(
            group_id=data["group_id"],
            menu_item_id=data["menu_item_id"],
            name=data["name"],
            order=int(data.get("order", 0)),
            required=bool(data.get("required", False)),
            choices=tuple(sorted(choices, key=lambda c: c.order)),
        )


# ============================================================================
# DISCOUNTS & FEES
# ============================================================================

@dataclass
class Voucher:
    code: str
    discount_type: DiscountType
    value: float
    expires_at: datetime
    min_order_amount: float = 0.0
    max_discount: Optional[float] = None
    usage_limit: int = 0          # 0 means unlimited
    usage_count: int = 0
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "discount_type": self.discount_type.value,
            "value": self.value,
            "min_order_amount": self.min_order_amount,
            "max_discount": self.max_discount,
            "expires_at": to_iso(self.expires_at),
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Voucher':
        max_discount = data.get("max_discount")
        return cls(
            code=data["code"],
            discount_type=DiscountType(data["discount_type"]),
            value=float(data["value"]),
            min_order_amount=float(data.get("min_order_amount", 0)),
            max_discount=float(max_discount) if max_discount is not None else None,
            expires_at=parse_datetime(data["expires_at"]),
            usage_limit=int(data.get("usage_limit", 0)),
            usage_count=int(data.get("usage_count", 0)),
            active=bool(data.get("active", True)),
        )


@dataclass
class Promotion:
    promotion_id: str
    title: str
    discount_type: DiscountType
    discount_value: float
    start_date: datetime
    end_date: datetime
    active: bool = True
    description: str = ""

    def is_running(self, now: datetime) -> bool:
        return self.active and self.start_date <= now <= self.end_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promotion_id": self.promotion_id,
            "title": self.title,
            "description": self.description,
            "discount_type": self.discount_type.value,
            "discount_value": self.discount_value,
            "start_date": to_iso(self.start_date),
            "end_date": to_iso(self.end_date),
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Promotion':
        return cls(
            promotion_id=data["promotion_id"],
            title=data.get("title", ""),
            description=data.get("description") or "",
            discount_type=DiscountType(data["discount_type"]),
            discount_value=float(data["discount_value"]),
            start_date=parse_datetime(data["start_date"]),
            end_date=parse_datetime(data["end_date"]),
            active=bool(data.get("active", True)),
        )


@dataclass(frozen=True)
class DeliveryFee:
    barangay: str
    fee: float

    def to_dict(self) -> Dict[str, Any]:
        return {"barangay": self.barangay, "fee": self.fee}


@dataclass(frozen=True)
class DenialReason:
    reason: str
    is_preset: bool
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "is_preset": self.is_preset,
            "created_at": to_iso(self.created_at),
        }


# ============================================================================
# RESTAURANT SETTINGS
# ============================================================================

@dataclass(frozen=True)
class PreorderScheduleEntry:
    date: str        # YYYY-MM-DD
    start_time: str  # HH:MM, 24h
    end_time: str    # HH:MM, 24h

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "start_time": self.start_time, "end_time": self.end_time}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PreorderScheduleEntry':
        start = data["start_time"]
        return cls(
            date=data["date"],
            start_time=start,
            end_time=data.get("end_time") or start,
        )


@dataclass(frozen=True)
class PreorderSchedule:
    restrictions_enabled: bool = False
    dates: Tuple[PreorderScheduleEntry, ...] = field(default_factory=tuple)

    def entry_for(self, date: str) -> Optional[PreorderScheduleEntry]:
        for entry in self.dates:
            if entry.date == date:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "restrictions_enabled": self.restrictions_enabled,
            "dates": [entry.to_dict() for entry in self.dates],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PreorderSchedule':
        if not data:
            return cls()
        return cls(
            restrictions_enabled=bool(data.get("restrictions_enabled", False)),
            dates=tuple(PreorderScheduleEntry.from_dict(d) for d in data.get("dates", [])),
        )


@dataclass(frozen=True)
class RestaurantSettings:
    """Owner-controlled pricing and scheduling settings."""
    platform_fee_enabled: bool = False
    platform_fee: float = 0.0
    fee_per_kilometer: float = 15.0
    preorder_schedule: PreorderSchedule = field(default_factory=PreorderSchedule)
    average_prep_time: int = 20
    average_delivery_time: int = 30

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform_fee_enabled": self.platform_fee_enabled,
            "platform_fee": self.platform_fee,
            "fee_per_kilometer": self.fee_per_kilometer,
            "preorder_schedule": self.preorder_schedule.to_dict(),
            "average_prep_time": self.average_prep_time,
            "average_delivery_time": self.average_delivery_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RestaurantSettings':
        return cls(
            platform_fee_enabled=bool(data.get("platform_fee_enabled", False)),
            platform_fee=float(data.get("platform_fee") or 0),
            fee_per_kilometer=float(data.get("fee_per_kilometer", 15)),
            preorder_schedule=PreorderSchedule.from_dict(data.get("preorder_schedule")),
            average_prep_time=int(data.get("average_prep_time", 20)),
            average_delivery_time=int(data.get("average_delivery_time", 30)),
        )
