"""
Order Service
=============
Entry point for every customer and owner action on orders.

Responsibilities:
- Gate creation (schedule, voucher, composition, pricing)
- Route status changes through the state machine
- Route item edits through the ledger
- Persist each mutation with one atomic store call

The service holds no locks and no global state: the store is injected,
and a lost race surfaces as ConcurrentModificationError for the caller
to retry.
"""

import uuid
import structlog
from typing import Optional, Dict, Any, List, Union, Callable, Iterable, Tuple
from datetime import datetime, timedelta
from dataclasses import replace

from prometheus_client import Counter, Histogram

from config import Config, get_config
from db import OrderStore
from errors import (
    OrderEngineError,
    ValidationError,
    InvalidTransition,
    OrderNotFoundError,
    PermissionDeniedError,
)
from composition import ItemSelection, OrderComposer, merge_lines, normalize_quantity
from delivery import DeliveryTiers, resolve_delivery_fee, validate_area_fee
from denial import DenialReasonCatalog, normalize_reason
from ledger import ITEM_EDIT_TYPES, ModificationLedger, item_edit_record, status_change_record
from models import (
    Actor,
    CustomerSnapshot,
    DeliveryFee,
    DenialReason,
    ModificationType,
    Order,
    OrderItem,
    OrderModification,
    PaymentPlan,
    PreorderSchedule,
    PreorderScheduleEntry,
    Promotion,
    RemainingPaymentMethod,
    RestaurantSettings,
    Voucher,
    round_money,
    utcnow,
)
from order_state import (
    OrderStatus,
    OrderType,
    Fulfillment,
    Track,
    TransitionKind,
    OrderStateMachine,
    initial_status,
    track_for,
)
from pricing import compute_totals, platform_fee_for, reprice, apply_breakdown
from scheduler import build_schedule, add_entry, remove_entry, ensure_slot_allowed, is_slot_allowed
from vouchers import (
    VoucherCheck,
    check_voucher,
    compute_promotion_discount,
    normalize_code,
    validate_voucher_definition,
)


# Structured logging
logger = structlog.get_logger(__name__)


# ============================================================================
# METRICS
# ============================================================================

orders_created = Counter(
    'orders_created_total',
    'Orders placed',
    ['order_type']
)
order_value = Histogram(
    'order_value_pesos',
    'Order total distribution',
    buckets=(100, 250, 500, 1000, 2500, 5000, 10000)
)
order_edits = Counter(
    'order_edits_total',
    'Post-creation item edits',
    ['modification_type']
)
order_operation_failures = Counter(
    'order_operation_failures_total',
    'Rejected or failed order operations',
    ['operation', 'error']
)


# ============================================================================
# POLICY
# ============================================================================

# Item edits are only possible before the order leaves the kitchen
EDITABLE_STATUSES = {
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.PRE_ORDER_PENDING,
}

# Statuses a customer may cancel their own order from
CUSTOMER_CANCELLABLE_STATUSES = {
    OrderStatus.PENDING,
    OrderStatus.DENIED,
    OrderStatus.PRE_ORDER_PENDING,
}

PAYMENT_FULLY_PAID = "Fully paid"
PAYMENT_INITIALLY_PAID = "Initially paid"


LineInput = Union[OrderItem, ItemSelection]


def payment_status(order: Order) -> Optional[str]:
    """
    Derived payment status from the proof-of-payment references.

    Returns:
        "Fully paid", "Initially paid", or None when no proof exists
    """
    if order.payment_plan == PaymentPlan.DOWNPAYMENT:
        if order.downpayment_proof_url and order.remaining_payment_proof_url:
            return PAYMENT_FULLY_PAID
        if order.downpayment_proof_url:
            return PAYMENT_INITIALLY_PAID
        return None

    if order.payment_screenshot:
        return PAYMENT_FULLY_PAID
    return None


class OrderService:
    """
    Order lifecycle and pricing operations.

    Args:
        store: Backing OrderStore
        config: Deployment configuration (defaults to get_config())
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: OrderStore,
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.config = config or get_config()
        self.clock = clock
        self.ledger = ModificationLedger(store)
        self.denial_reasons = DenialReasonCatalog(
            store,
            self.config.restaurant.denial_reason_presets
        )

    # ========================================================================
    # HELPERS
    # ========================================================================

    @staticmethod
    def _require_owner(actor: Actor, operation: str):
        if not actor.is_owner:
            order_operation_failures.labels(operation=operation, error='permission').inc()
            logger.warning("owner_required", operation=operation, user_id=actor.user_id)
            raise PermissionDeniedError(f"Only owners can {operation.replace('_', ' ')}")

    async def _load(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order not found: {order_id}")
        return order

    async def _load_visible(self, actor: Actor, order_id: str) -> Order:
        order = await self._load(order_id)
        if not actor.is_owner and order.customer_id != actor.user_id:
            raise PermissionDeniedError("Unauthorized to access this order")
        return order

    async def _save(
        self,
        order: Order,
        operation: str,
        modification: Optional[OrderModification] = None
    ) -> Order:
        expected_version = order.version
        order.updated_at = self.clock()

        try:
            return await self.store.save_order(order, expected_version, modification)

        except OrderEngineError as e:
            order_operation_failures.labels(operation=operation, error=type(e).__name__).inc()
            logger.warning(
                "order_save_rejected",
                order_id=order.order_id,
                operation=operation,
                error=str(e)
            )
            raise

        except Exception:
            order_operation_failures.labels(operation=operation, error='store').inc()
            logger.error(
                "order_save_failed",
                order_id=order.order_id,
                operation=operation,
                exc_info=True
            )
            raise

    async def get_settings(self) -> RestaurantSettings:
        """Saved owner settings, or configuration defaults before the first save."""
        stored = await self.store.get_settings()
        if stored is not None:
            return stored

        return RestaurantSettings(
            platform_fee_enabled=self.config.pricing.platform_fee_enabled,
            platform_fee=self.config.pricing.platform_fee,
            fee_per_kilometer=self.config.pricing.fee_per_kilometer,
            average_prep_time=self.config.restaurant.average_prep_time,
            average_delivery_time=self.config.restaurant.average_delivery_time,
        )

    # ========================================================================
    # CREATION
    # ========================================================================

    async def create_order(
        self,
        actor: Actor,
        customer: CustomerSnapshot,
        items: List[ItemSelection],
        order_type: OrderType,
        fulfillment: Optional[Fulfillment] = None,
        scheduled_at: Optional[datetime] = None,
        voucher_code: Optional[str] = None,
        promotion_id: Optional[str] = None,
        distance_km: Optional[float] = None,
        payment_plan: Optional[PaymentPlan] = None,
        downpayment_amount: Optional[float] = None,
        downpayment_proof_url: Optional[str] = None,
        remaining_payment_method: Optional[RemainingPaymentMethod] = None,
        payment_screenshot: Optional[str] = None,
        special_instructions: Optional[str] = None
    ) -> Order:
        """
        Price and place a new order for the calling customer.

        Lines are always re-resolved against the current menu; callers never
        supply prices.

        Raises:
            PermissionDeniedError: If the actor is not a customer
            ValidationError: If input is incomplete or inconsistent
            ScheduleViolation: If a pre-order slot is outside the schedule
            VoucherRejected: If the voucher cannot be applied
        """
        if actor.is_owner:
            order_operation_failures.labels(operation='create_order', error='permission').inc()
            raise PermissionDeniedError("Only customers can create orders")

        now = self.clock()
        settings = await self.get_settings()

        self._validate_customer(customer, special_instructions)

        if not items:
            raise ValidationError("Order must have at least one item")

        if order_type == OrderType.PRE_ORDER:
            if fulfillment is None:
                raise ValidationError("Pre-orders need a fulfillment method (pickup or delivery)")
            if scheduled_at is None:
                raise ValidationError("Pre-orders need a scheduled date and time")
            if scheduled_at.tzinfo is None:
                # Naive times are restaurant-local
                scheduled_at = scheduled_at.replace(tzinfo=self.config.restaurant.timezone)
            if scheduled_at <= now:
                raise ValidationError("Pre-order must be scheduled in the future")
            ensure_slot_allowed(
                settings.preorder_schedule,
                scheduled_at,
                self.config.restaurant.timezone
            )
        elif fulfillment is not None or scheduled_at is not None:
            raise ValidationError("Only pre-orders take a fulfillment method or schedule")

        track = track_for(order_type, fulfillment)
        if track == Track.DELIVERY and not (customer.address or "").strip():
            raise ValidationError("Delivery address is required")

        if voucher_code and promotion_id:
            raise ValidationError("A voucher cannot be combined with a promotion")

        menu = await self.store.load_menu()
        lines = OrderComposer(menu).build_lines(items)

        subtotal = compute_totals(lines).subtotal
        platform_fee = platform_fee_for(settings.platform_fee_enabled, settings.platform_fee)

        delivery_fee = 0.0
        if track == Track.DELIVERY:
            area_fees = [] if distance_km is not None else await self.store.list_delivery_fees()
            delivery_fee = resolve_delivery_fee(
                distance_km,
                customer.address,
                area_fees,
                DeliveryTiers.from_config(self.config.pricing, settings.fee_per_kilometer)
            )

        discount = 0.0
        code = None
        if voucher_code:
            code = normalize_code(voucher_code)
            check = check_voucher(await self.store.get_voucher(code), subtotal, now)
            check.raise_for_rejection()
            discount = check.discount

        if promotion_id:
            promotion = await self.store.get_promotion(promotion_id)
            if promotion is None or not promotion.is_running(now):
                raise ValidationError("Promotion is not currently active")
            discount = compute_promotion_discount(promotion, subtotal)

        breakdown = compute_totals(lines, platform_fee, delivery_fee, discount)

        self._validate_payment(payment_plan, downpayment_amount, breakdown.total)

        order = Order(
            order_id=str(uuid.uuid4()),
            customer_id=actor.user_id,
            customer=customer,
            items=lines,
            order_type=order_type,
            status=initial_status(order_type),
            pre_order_fulfillment=fulfillment,
            pre_order_scheduled_at=scheduled_at,
            payment_plan=payment_plan,
            downpayment_amount=round_money(downpayment_amount) if downpayment_amount is not None else None,
            downpayment_proof_url=downpayment_proof_url,
            remaining_payment_method=remaining_payment_method,
            payment_screenshot=payment_screenshot,
            voucher_code=code,
            promotion_id=promotion_id,
            estimated_delivery_time=settings.average_delivery_time if track == Track.DELIVERY else None,
            special_instructions=(special_instructions or "").strip() or None,
            created_at=now,
            updated_at=now,
        )
        apply_breakdown(order, breakdown)

        try:
            placed = await self.store.place_order(order, code)
        except OrderEngineError as e:
            order_operation_failures.labels(operation='create_order', error=type(e).__name__).inc()
            logger.warning("order_placement_rejected", error=str(e), voucher_code=code)
            raise
        except Exception:
            order_operation_failures.labels(operation='create_order', error='store').inc()
            logger.error("order_placement_failed", customer_id=actor.user_id, exc_info=True)
            raise

        orders_created.labels(order_type=order_type.value).inc()
        order_value.observe(placed.total)

        logger.info(
            "order_created",
            order_id=placed.order_id,
            customer_id=placed.customer_id,
            order_type=order_type.value,
            status=placed.status.value,
            total=placed.total,
            voucher_code=code
        )

        return placed

    def _validate_customer(self, customer: CustomerSnapshot, special_instructions: Optional[str]):
        if not (customer.name or "").strip():
            raise ValidationError("Customer name is required")

        if not (customer.phone or "").strip():
            raise ValidationError("Customer phone is required")

        limit = self.config.restaurant.max_special_instructions
        if special_instructions and len(special_instructions) > limit:
            raise ValidationError(
                f"Landmark/Special instructions must be {limit} characters or less"
            )

    @staticmethod
    def _validate_payment(plan: Optional[PaymentPlan], downpayment_amount: Optional[float], total: float):
        if plan == PaymentPlan.DOWNPAYMENT:
            if downpayment_amount is None or downpayment_amount <= 0:
                raise ValidationError("Downpayment amount is required for a downpayment plan")
            if downpayment_amount > total:
                raise ValidationError("Downpayment cannot exceed the order total")
        elif downpayment_amount is not None:
            raise ValidationError("Downpayment amount is only allowed with a downpayment plan")

    # ========================================================================
    # STATUS TRANSITIONS
    # ========================================================================

    async def transition_status(
        self,
        actor: Actor,
        order_id: str,
        new_status: OrderStatus,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Order:
        """
        Move an order to a new status.

        Args:
            actor: Caller; owners drive the lifecycle, customers may only cancel
            order_id: Order to change
            new_status: Target status
            metadata: Optional "reason" (deny) and "estimated_prep_time" (accept)

        Returns:
            The stored order

        Raises:
            InvalidTransition: If the move is not allowed from the current status
            ValidationError: If a denial has no reason
            PermissionDeniedError: If the actor may not make this change
        """
        if not actor.is_owner:
            if new_status == OrderStatus.CANCELLED:
                return await self.cancel_order(actor, order_id)
            self._require_owner(actor, 'change_order_status')

        order = await self._load(order_id)
        return await self._apply_transition(actor, order, new_status, metadata or {})

    async def _apply_transition(
        self,
        actor: Actor,
        order: Order,
        new_status: OrderStatus,
        metadata: Dict[str, Any]
    ) -> Order:
        previous = order.status

        # Re-requesting the current status changes nothing
        if new_status == previous and not previous.is_terminal():
            logger.info("status_unchanged", order_id=order.order_id, status=previous.value)
            return order

        machine = OrderStateMachine(
            order.order_id,
            order.order_type,
            previous,
            order.pre_order_fulfillment
        )

        try:
            kind = machine.classify(new_status)
        except InvalidTransition:
            order_operation_failures.labels(operation='transition_status', error='InvalidTransition').inc()
            raise

        reason = None
        if kind == TransitionKind.DENY:
            reason = normalize_reason(metadata.get("reason"))

        prep_time = None
        if new_status == OrderStatus.ACCEPTED:
            prep_time = metadata.get("estimated_prep_time")
            if prep_time is None:
                prep_time = (await self.get_settings()).average_prep_time
            if isinstance(prep_time, bool) or not isinstance(prep_time, int) or prep_time <= 0:
                raise ValidationError(f"Estimated prep time must be a positive number of minutes: {prep_time!r}")

        machine.transition(new_status, reason)

        order.status = new_status
        order.denial_reason = reason
        if prep_time is not None:
            order.estimated_prep_time = prep_time

        record = status_change_record(order.order_id, actor, previous, new_status, self.clock())
        saved = await self._save(order, 'transition_status', record)
        ModificationLedger.count(record)

        if kind == TransitionKind.DENY:
            await self.denial_reasons.remember(reason)

        logger.info(
            "order_status_changed",
            order_id=saved.order_id,
            from_status=previous.value,
            to_status=new_status.value,
            kind=kind.value,
            actor=actor.user_id
        )

        return saved

    async def accept_order(
        self,
        actor: Actor,
        order_id: str,
        estimated_prep_time: Optional[int] = None
    ) -> Order:
        """Accept an order, defaulting the prep estimate to the restaurant average."""
        return await self.transition_status(
            actor,
            order_id,
            OrderStatus.ACCEPTED,
            {"estimated_prep_time": estimated_prep_time}
        )

    async def deny_order(self, actor: Actor, order_id: str, reason: str) -> Order:
        """
        Deny an order with a mandatory reason.

        A new free-text reason is remembered for reuse.
        """
        return await self.transition_status(actor, order_id, OrderStatus.DENIED, {"reason": reason})

    async def cancel_order(self, actor: Actor, order_id: str) -> Order:
        """
        Cancel an order.

        Owners may cancel any non-terminal order. Customers may cancel their
        own pending, denied or pre-order-pending orders; pre-orders only up
        to the configured notice before the scheduled time.
        """
        order = await self._load_visible(actor, order_id)

        if not actor.is_owner:
            if order.status not in CUSTOMER_CANCELLABLE_STATUSES:
                order_operation_failures.labels(operation='cancel_order', error='InvalidTransition').inc()
                raise InvalidTransition(
                    "Customers can only cancel pending, denied or pre-order-pending orders",
                    order.status.value,
                    OrderStatus.CANCELLED.value
                )

            if order.order_type == OrderType.PRE_ORDER and order.pre_order_scheduled_at:
                notice = timedelta(hours=self.config.restaurant.preorder_cancel_notice_hours)
                if order.pre_order_scheduled_at - self.clock() < notice:
                    raise ValidationError(
                        "Pre-orders can only be cancelled at least 1 day before the scheduled order date"
                    )

        return await self._apply_transition(actor, order, OrderStatus.CANCELLED, {})

    # ========================================================================
    # ITEM EDITS
    # ========================================================================

    async def edit_order_items(
        self,
        actor: Actor,
        order_id: str,
        new_items: List[LineInput],
        modification_type: ModificationType = ModificationType.ORDER_EDITED,
        note: Optional[str] = None
    ) -> Order:
        """
        Replace an order's items, recomputing totals and appending one
        audit record in the same store call.

        Args:
            actor: Owner making the edit
            order_id: Order to edit
            new_items: Full new item list (priced lines or menu selections)
            modification_type: Audit record type
            note: Short summary; derived from the diff when omitted

        Raises:
            PermissionDeniedError: If the actor is not the owner
            InvalidTransition: If the order's status does not allow edits
            ValidationError: If the item list is empty or malformed, or the
                modification type is not an item edit
        """
        self._require_owner(actor, 'modify_order_items')
        if modification_type not in ITEM_EDIT_TYPES:
            raise ValidationError(f"Not an item edit type: {modification_type.value}")

        order = await self._load(order_id)
        lines = merge_lines(await self._resolve_lines(new_items))
        return await self._edit_items(actor, order, lines, modification_type, note)

    async def add_order_item(
        self,
        actor: Actor,
        order_id: str,
        item: LineInput,
        note: Optional[str] = None
    ) -> Order:
        """Add a line; an identical existing line has its quantity increased."""
        self._require_owner(actor, 'modify_order_items')
        order = await self._load(order_id)
        (line,) = await self._resolve_lines([item])

        lines = merge_lines(list(order.items) + [line])
        return await self._edit_items(actor, order, lines, ModificationType.ITEM_ADDED, note)

    async def remove_order_item(
        self,
        actor: Actor,
        order_id: str,
        line_index: int,
        note: Optional[str] = None
    ) -> Order:
        self._require_owner(actor, 'modify_order_items')
        order = await self._load(order_id)
        self._check_line_index(order, line_index)

        lines = [line for i, line in enumerate(order.items) if i != line_index]
        return await self._edit_items(actor, order, lines, ModificationType.ITEM_REMOVED, note)

    async def change_item_quantity(
        self,
        actor: Actor,
        order_id: str,
        line_index: int,
        quantity: int,
        note: Optional[str] = None
    ) -> Order:
        self._require_owner(actor, 'modify_order_items')
        order = await self._load(order_id)
        self._check_line_index(order, line_index)

        lines = list(order.items)
        lines[line_index] = lines[line_index].with_quantity(normalize_quantity(quantity))
        return await self._edit_items(actor, order, lines, ModificationType.ITEM_QUANTITY_CHANGED, note)

    async def change_item_price(
        self,
        actor: Actor,
        order_id: str,
        line_index: int,
        unit_price: float,
        note: Optional[str] = None
    ) -> Order:
        """Owner price override for one line (e.g. a goodwill adjustment)."""
        self._require_owner(actor, 'modify_order_items')
        order = await self._load(order_id)
        self._check_line_index(order, line_index)

        if unit_price is None or unit_price < 0:
            raise ValidationError(f"Unit price cannot be negative: {unit_price}")

        lines = list(order.items)
        lines[line_index] = lines[line_index].with_unit_price(unit_price)
        return await self._edit_items(actor, order, lines, ModificationType.ITEM_PRICE_CHANGED, note)

    @staticmethod
    def _check_line_index(order: Order, line_index: int):
        if isinstance(line_index, bool) or not isinstance(line_index, int) \
                or not 0 <= line_index < len(order.items):
            raise ValidationError(f"No item at position {line_index} in this order")

    async def _resolve_lines(self, items: List[LineInput]) -> List[OrderItem]:
        composer = None
        lines = []

        for item in items:
            if isinstance(item, ItemSelection):
                if composer is None:
                    composer = OrderComposer(await self.store.load_menu())
                lines.append(composer.build_line(item))
            elif isinstance(item, OrderItem):
                normalize_quantity(item.quantity)
                if item.unit_price < 0:
                    raise ValidationError(f"Unit price cannot be negative for {item.name}")
                lines.append(item)
            else:
                raise ValidationError(f"Unsupported order line: {item!r}")

        return lines

    async def _edit_items(
        self,
        actor: Actor,
        order: Order,
        lines: List[OrderItem],
        modification_type: ModificationType,
        note: Optional[str]
    ) -> Order:
        if order.status not in EDITABLE_STATUSES:
            order_operation_failures.labels(operation='edit_items', error='InvalidTransition').inc()
            raise InvalidTransition(
                f"Order items cannot be modified in the current state ({order.status.value})",
                order.status.value,
                order.status.value
            )

        if not lines:
            raise ValidationError("Order must have at least one item")

        before = Order.from_dict(order.to_dict())

        order.items = list(lines)
        apply_breakdown(order, reprice(order))

        record = item_edit_record(before, order, actor, modification_type, note, self.clock())
        saved = await self._save(order, 'edit_items', record)

        order_edits.labels(modification_type=modification_type.value).inc()
        ModificationLedger.count(record)

        logger.info(
            "order_items_edited",
            order_id=saved.order_id,
            modification_type=modification_type.value,
            details=record.item_details,
            subtotal=saved.subtotal,
            total=saved.total,
            actor=actor.user_id
        )

        return saved

    async def get_order_modifications(self, actor: Actor, order_id: str) -> List[OrderModification]:
        """Audit history of an order, oldest first (owners only)."""
        self._require_owner(actor, 'view_order_history')
        await self._load(order_id)
        return await self.ledger.history(order_id)

    # ========================================================================
    # READS
    # ========================================================================

    async def get_order(self, actor: Actor, order_id: str) -> Order:
        return await self._load_visible(actor, order_id)

    async def list_orders(self, actor: Actor, status: Optional[OrderStatus] = None) -> List[Order]:
        """Owners see every order; customers only their own."""
        customer_id = None if actor.is_owner else actor.user_id
        return await self.store.list_orders(status=status, customer_id=customer_id)

    # ========================================================================
    # PAYMENT
    # ========================================================================

    async def update_remaining_payment_proof(self, actor: Actor, order_id: str, proof_url: str) -> Order:
        """Attach proof of the remaining balance for a downpayment order."""
        order = await self._load_visible(actor, order_id)

        url = (proof_url or "").strip()
        if not url:
            raise ValidationError("Payment proof URL is required")

        if order.payment_plan != PaymentPlan.DOWNPAYMENT:
            raise ValidationError("Only downpayment orders have a remaining balance")

        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition(
                "Cannot attach payment proof to a cancelled order",
                order.status.value,
                order.status.value
            )

        order.remaining_payment_proof_url = url
        saved = await self._save(order, 'update_remaining_payment_proof')

        logger.info("remaining_payment_proof_updated", order_id=order_id, actor=actor.user_id)
        return saved

    # ========================================================================
    # VOUCHERS
    # ========================================================================

    async def validate_voucher(self, code: str, amount: float) -> VoucherCheck:
        """Check a voucher against an amount without redeeming it."""
        normalized = normalize_code(code)
        voucher = await self.store.get_voucher(normalized) if normalized else None
        return check_voucher(voucher, amount, self.clock())

    async def list_active_promotions(self) -> List[Promotion]:
        """Promotions running right now, soonest ending first."""
        now = self.clock()
        running = [p for p in await self.store.list_promotions() if p.is_running(now)]
        return sorted(running, key=lambda p: p.end_date)

    async def save_voucher(self, actor: Actor, voucher: Voucher) -> Voucher:
        self._require_owner(actor, 'manage_vouchers')
        saved = await self.store.save_voucher(validate_voucher_definition(voucher))
        logger.info("voucher_saved", code=saved.code, actor=actor.user_id)
        return saved

    # ========================================================================
    # SCHEDULE & SETTINGS
    # ========================================================================

    async def save_schedule(
        self,
        actor: Actor,
        restrictions_enabled: bool,
        dates: Iterable[PreorderScheduleEntry]
    ) -> PreorderSchedule:
        """
        Replace the pre-order schedule.

        Raises:
            ValidationError: If a date or time is malformed
            ScheduleViolation: If an entry does not start before it ends
        """
        self._require_owner(actor, 'manage_schedule')
        schedule = build_schedule(restrictions_enabled, dates)

        settings = await self.get_settings()
        await self.store.save_settings(replace(settings, preorder_schedule=schedule))

        logger.info(
            "preorder_schedule_saved",
            restrictions_enabled=schedule.restrictions_enabled,
            dates=len(schedule.dates)
        )
        return schedule

    async def add_schedule_entry(self, actor: Actor, entry: PreorderScheduleEntry) -> PreorderSchedule:
        """Add or replace the window for one date."""
        self._require_owner(actor, 'manage_schedule')
        settings = await self.get_settings()
        schedule = add_entry(settings.preorder_schedule, entry)
        await self.store.save_settings(replace(settings, preorder_schedule=schedule))
        return schedule

    async def remove_schedule_entry(self, actor: Actor, date: str) -> PreorderSchedule:
        self._require_owner(actor, 'manage_schedule')
        settings = await self.get_settings()
        schedule = remove_entry(settings.preorder_schedule, date)
        await self.store.save_settings(replace(settings, preorder_schedule=schedule))
        return schedule

    async def validate_schedule_slot(self, date: str, time: str) -> bool:
        settings = await self.get_settings()
        return is_slot_allowed(settings.preorder_schedule, date, time)

    async def update_settings(self, actor: Actor, **changes) -> RestaurantSettings:
        """
        Update owner pricing settings.

        Accepts platform_fee_enabled, platform_fee, fee_per_kilometer,
        average_prep_time and average_delivery_time.
        """
        self._require_owner(actor, 'manage_settings')

        allowed = {
            "platform_fee_enabled",
            "platform_fee",
            "fee_per_kilometer",
            "average_prep_time",
            "average_delivery_time",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        changes = {k: v for k, v in changes.items() if v is not None}
        for key in ("platform_fee", "fee_per_kilometer"):
            if key in changes and changes[key] < 0:
                raise ValidationError(f"{key} cannot be negative")
        for key in ("average_prep_time", "average_delivery_time"):
            if key in changes and changes[key] <= 0:
                raise ValidationError(f"{key} must be positive")

        settings = replace(await self.get_settings(), **changes)
        await self.store.save_settings(settings)

        logger.info("restaurant_settings_saved", changes=sorted(changes))
        return settings

    # ========================================================================
    # DELIVERY FEES
    # ========================================================================

    async def list_delivery_fees(self) -> List[DeliveryFee]:
        return await self.store.list_delivery_fees()

    async def upsert_delivery_fee(self, actor: Actor, barangay: str, fee: float) -> DeliveryFee:
        self._require_owner(actor, 'manage_delivery_fees')
        (saved,) = await self.store.upsert_delivery_fees([validate_area_fee(barangay, fee)])
        return saved

    async def upsert_delivery_fees(self, actor: Actor, fees: Iterable[Tuple[str, float]]) -> List[DeliveryFee]:
        """Bulk upsert; the whole batch is validated before anything is written."""
        self._require_owner(actor, 'manage_delivery_fees')
        validated = {}
        for barangay, fee in fees:
            area = validate_area_fee(barangay, fee)
            validated[area.barangay.lower()] = area
        return await self.store.upsert_delivery_fees(list(validated.values()))

    async def remove_delivery_fee(self, actor: Actor, barangay: str) -> bool:
        self._require_owner(actor, 'manage_delivery_fees')
        return await self.store.remove_delivery_fee(barangay)

    # ========================================================================
    # DENIAL REASONS
    # ========================================================================

    async def list_denial_reasons(self) -> List[DenialReason]:
        return await self.denial_reasons.list_reasons()
