"""
Request Schemas
===============
Pydantic request bodies for the HTTP API.

Prices are never accepted from customers: order lines are menu selections
that the engine prices itself.
"""

from datetime import datetime
from typing import Dict, List, Optional, Literal

from pydantic import BaseModel, Field

from composition import ItemSelection
from models import CustomerSnapshot, PreorderScheduleEntry, Voucher, DiscountType, parse_datetime


class ItemSelectionIn(BaseModel):
    menu_item_id: str
    quantity: int = 1
    variant_id: Optional[str] = None
    choices: Dict[str, str] = Field(default_factory=dict, description="Choice group id -> choice name")

    def to_selection(self) -> ItemSelection:
        return ItemSelection(
            menu_item_id=self.menu_item_id,
            quantity=self.quantity,
            variant_id=self.variant_id,
            choices=dict(self.choices),
        )


class CustomerIn(BaseModel):
    name: str
    phone: str
    address: Optional[str] = None
    gcash_number: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_snapshot(self) -> CustomerSnapshot:
        return CustomerSnapshot(
            name=self.name,
            phone=self.phone,
            address=self.address,
            gcash_number=self.gcash_number,
            latitude=self.latitude,
            longitude=self.longitude,
        )


class CreateOrderIn(BaseModel):
    customer: CustomerIn
    items: List[ItemSelectionIn]
    order_type: Literal["dine-in", "takeaway", "delivery", "pre-order"]
    pre_order_fulfillment: Optional[Literal["pickup", "delivery"]] = None
    pre_order_scheduled_at: Optional[datetime] = None
    voucher_code: Optional[str] = None
    promotion_id: Optional[str] = None
    distance_km: Optional[float] = Field(None, ge=0, description="Route distance from the restaurant")
    payment_plan: Optional[Literal["full", "downpayment"]] = None
    downpayment_amount: Optional[float] = None
    downpayment_proof_url: Optional[str] = None
    remaining_payment_method: Optional[Literal["online", "cash"]] = None
    payment_screenshot: Optional[str] = None
    special_instructions: Optional[str] = None


class TransitionIn(BaseModel):
    status: Literal[
        "pre-order-pending", "pending", "accepted", "ready", "in-transit",
        "delivered", "completed", "denied", "cancelled"
    ]
    reason: Optional[str] = None
    estimated_prep_time: Optional[int] = None


class AcceptIn(BaseModel):
    estimated_prep_time: Optional[int] = Field(None, description="Minutes; defaults to the restaurant average")


class DenyIn(BaseModel):
    reason: str


class EditItemsIn(BaseModel):
    items: List[ItemSelectionIn]
    note: Optional[str] = None


class AddItemIn(BaseModel):
    item: ItemSelectionIn
    note: Optional[str] = None


class QuantityIn(BaseModel):
    quantity: int
    note: Optional[str] = None


class PriceIn(BaseModel):
    unit_price: float
    note: Optional[str] = None


class PaymentProofIn(BaseModel):
    proof_url: str


class VoucherCheckIn(BaseModel):
    code: str
    amount: float = Field(..., ge=0)


class VoucherIn(BaseModel):
    code: str
    discount_type: Literal["percentage", "fixed"]
    value: float
    expires_at: datetime
    min_order_amount: float = 0
    max_discount: Optional[float] = None
    usage_limit: int = 0
    active: bool = True

    def to_voucher(self) -> Voucher:
        return Voucher(
            code=self.code,
            discount_type=DiscountType(self.discount_type),
            value=self.value,
            expires_at=parse_datetime(self.expires_at),
            min_order_amount=self.min_order_amount,
            max_discount=self.max_discount,
            usage_limit=self.usage_limit,
            active=self.active,
        )


class ScheduleEntryIn(BaseModel):
    date: str = Field(..., description="YYYY-MM-DD")
    start_time: str = Field(..., description="HH:MM, 24h")
    end_time: str = Field(..., description="HH:MM, 24h")

    def to_entry(self) -> PreorderScheduleEntry:
        return PreorderScheduleEntry(date=self.date, start_time=self.start_time, end_time=self.end_time)


class ScheduleIn(BaseModel):
    restrictions_enabled: bool
    dates: List[ScheduleEntryIn] = Field(default_factory=list)


class SettingsIn(BaseModel):
    platform_fee_enabled: Optional[bool] = None
    platform_fee: Optional[float] = None
    fee_per_kilometer: Optional[float] = None
    average_prep_time: Optional[int] = None
    average_delivery_time: Optional[int] = None


class DeliveryFeeIn(BaseModel):
    barangay: str
    fee: float


class DeliveryFeesIn(BaseModel):
    fees: List[DeliveryFeeIn]
