"""
Database Module
===============
Document store behind the order engine.

Every state change is a single store call:
- place_order: voucher redemption + order insert
- save_order:  compare-and-set on version + audit record append

Two backends:
- InMemoryStore: asyncio.Lock serialized dicts (tests, local runs)
- SupabaseStore: supabase-py, with the atomic operations implemented as
  Postgres functions (supabase/schema.sql)
"""

import copy
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Callable

from supabase import create_client, Client
from postgrest.exceptions import APIError

from errors import (
    ConcurrentModificationError,
    OrderNotFoundError,
    VoucherRejected,
    VoucherRejection,
)
from menu import MenuIndex
from models import (
    Order,
    OrderModification,
    Voucher,
    Promotion,
    DeliveryFee,
    DenialReason,
    RestaurantSettings,
    MenuItem,
    MenuItemVariant,
    MenuItemChoiceGroup,
    utcnow,
    to_iso,
    parse_datetime,
)
from order_state import OrderStatus


logger = logging.getLogger(__name__)


# Raised by the Postgres functions; matched on the error message
VOUCHER_LIMIT_ERROR = "voucher_usage_limit_reached"
VOUCHER_INVALID_ERROR = "voucher_invalid"
VERSION_CONFLICT_ERROR = "version_conflict"
ORDER_NOT_FOUND_ERROR = "order_not_found"


class OrderStore(ABC):
    """Storage interface the engine depends on."""

    # Orders ------------------------------------------------------------------

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        customer_id: Optional[str] = None
    ) -> List[Order]:
        """Orders, newest first."""
        ...

    @abstractmethod
    async def place_order(self, order: Order, voucher_code: Optional[str] = None) -> Order:
        """
        Insert a new order, redeeming its voucher in the same step.

        Raises:
            VoucherRejected: If the voucher ran out of uses meanwhile
        """
        ...

    @abstractmethod
    async def save_order(
        self,
        order: Order,
        expected_version: int,
        modification: Optional[OrderModification] = None
    ) -> Order:
        """
        Replace an order if its stored version still matches.

        Raises:
            OrderNotFoundError: If the order does not exist
            ConcurrentModificationError: If the stored version moved on
        """
        ...

    @abstractmethod
    async def list_modifications(self, order_id: str) -> List[OrderModification]:
        ...

    # Vouchers & promotions ---------------------------------------------------

    @abstractmethod
    async def get_voucher(self, code: str) -> Optional[Voucher]:
        ...

    @abstractmethod
    async def save_voucher(self, voucher: Voucher) -> Voucher:
        ...

    @abstractmethod
    async def get_promotion(self, promotion_id: str) -> Optional[Promotion]:
        ...

    @abstractmethod
    async def list_promotions(self) -> List[Promotion]:
        ...

    # Settings ----------------------------------------------------------------

    @abstractmethod
    async def get_settings(self) -> Optional[RestaurantSettings]:
        """Saved owner settings, or None before the first save."""
        ...

    @abstractmethod
    async def save_settings(self, settings: RestaurantSettings) -> RestaurantSettings:
        ...

    # Delivery fees -----------------------------------------------------------

    @abstractmethod
    async def list_delivery_fees(self) -> List[DeliveryFee]:
        ...

    @abstractmethod
    async def upsert_delivery_fees(self, fees: List[DeliveryFee]) -> List[DeliveryFee]:
        ...

    @abstractmethod
    async def remove_delivery_fee(self, barangay: str) -> bool:
        ...

    # Denial reasons ----------------------------------------------------------

    @abstractmethod
    async def list_denial_reasons(self) -> List[DenialReason]:
        ...

    @abstractmethod
    async def add_denial_reason(self, reason: DenialReason) -> DenialReason:
        """Insert a reason; a case-insensitive duplicate is ignored."""
        ...

    # Menu --------------------------------------------------------------------

    @abstractmethod
    async def load_menu(self) -> MenuIndex:
        """Snapshot of the menu for one request."""
        ...


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemoryStore(OrderStore):
    """
    Process-local store.

    A single asyncio.Lock serializes every call, which makes each method
    atomic with respect to the others.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._orders: Dict[str, Dict[str, Any]] = {}
        self._modifications: Dict[str, List[OrderModification]] = {}
        self._vouchers: Dict[str, Voucher] = {}
        self._promotions: Dict[str, Promotion] = {}
        self._settings: Optional[RestaurantSettings] = None
        self._delivery_fees: Dict[str, DeliveryFee] = {}
        self._denial_reasons: List[DenialReason] = []
        self._menu_items: Dict[str, MenuItem] = {}
        self._variants: Dict[str, MenuItemVariant] = {}
        self._choice_groups: Dict[str, MenuItemChoiceGroup] = {}

    # Seeding helpers (menu and promotions are managed outside the engine)

    def add_menu_item(self, item: MenuItem):
        self._menu_items[item.item_id] = item

    def add_variant(self, variant: MenuItemVariant):
        self._variants[variant.variant_id] = variant

    def add_choice_group(self, group: MenuItemChoiceGroup):
        self._choice_groups[group.group_id] = group

    def add_promotion(self, promotion: Promotion):
        self._promotions[promotion.promotion_id] = promotion

    # Orders ------------------------------------------------------------------

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            data = self._orders.get(order_id)
            return Order.from_dict(data) if data else None

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        customer_id: Optional[str] = None
    ) -> List[Order]:
        async with self._lock:
            orders = [Order.from_dict(data) for data in self._orders.values()]

        if status is not None:
            orders = [o for o in orders if o.status == status]
        if customer_id is not None:
            orders = [o for o in orders if o.customer_id == customer_id]

        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def place_order(self, order: Order, voucher_code: Optional[str] = None) -> Order:
        async with self._lock:
            if voucher_code:
                voucher = self._vouchers.get(voucher_code.upper())
                if voucher is None or not voucher.active:
                    raise VoucherRejected(VoucherRejection.INVALID_CODE, "Invalid voucher code")
                if voucher.usage_limit > 0 and voucher.usage_count >= voucher.usage_limit:
                    raise VoucherRejected(
                        VoucherRejection.USAGE_LIMIT_REACHED,
                        "Voucher usage limit reached"
                    )
                voucher.usage_count += 1

            order.version = 1
            self._orders[order.order_id] = order.to_dict()
            self._modifications.setdefault(order.order_id, [])
            return Order.from_dict(self._orders[order.order_id])

    async def save_order(
        self,
        order: Order,
        expected_version: int,
        modification: Optional[OrderModification] = None
    ) -> Order:
        async with self._lock:
            current = self._orders.get(order.order_id)
            if current is None:
                raise OrderNotFoundError(f"Order not found: {order.order_id}")

            if current["version"] != expected_version:
                raise ConcurrentModificationError(
                    f"Order {order.order_id} was modified concurrently "
                    f"(expected version {expected_version}, found {current['version']})"
                )

            order.version = expected_version + 1
            self._orders[order.order_id] = order.to_dict()

            if modification is not None:
                self._modifications.setdefault(order.order_id, []).append(modification)

            return Order.from_dict(self._orders[order.order_id])

    async def list_modifications(self, order_id: str) -> List[OrderModification]:
        async with self._lock:
            return list(self._modifications.get(order_id, []))

    # Vouchers & promotions ---------------------------------------------------

    async def get_voucher(self, code: str) -> Optional[Voucher]:
        async with self._lock:
            voucher = self._vouchers.get((code or "").upper())
            return copy.copy(voucher) if voucher else None

    async def save_voucher(self, voucher: Voucher) -> Voucher:
        async with self._lock:
            existing = self._vouchers.get(voucher.code)
            stored = copy.copy(voucher)
            if existing is not None:
                # Redemptions are owned by place_order
                stored.usage_count = existing.usage_count
            self._vouchers[voucher.code] = stored
            return copy.copy(stored)

    async def get_promotion(self, promotion_id: str) -> Optional[Promotion]:
        async with self._lock:
            return self._promotions.get(promotion_id)

    async def list_promotions(self) -> List[Promotion]:
        async with self._lock:
            return list(self._promotions.values())

    # Settings ----------------------------------------------------------------

    async def get_settings(self) -> Optional[RestaurantSettings]:
        async with self._lock:
            return self._settings

    async def save_settings(self, settings: RestaurantSettings) -> RestaurantSettings:
        async with self._lock:
            self._settings = settings
            return settings

    # Delivery fees -----------------------------------------------------------

    async def list_delivery_fees(self) -> List[DeliveryFee]:
        async with self._lock:
            return sorted(self._delivery_fees.values(), key=lambda f: f.barangay.lower())

    async def upsert_delivery_fees(self, fees: List[DeliveryFee]) -> List[DeliveryFee]:
        async with self._lock:
            for fee in fees:
                self._delivery_fees[fee.barangay.lower()] = fee
            return list(fees)

    async def remove_delivery_fee(self, barangay: str) -> bool:
        async with self._lock:
            return self._delivery_fees.pop((barangay or "").strip().lower(), None) is not None

    # Denial reasons ----------------------------------------------------------

    async def list_denial_reasons(self) -> List[DenialReason]:
        async with self._lock:
            return list(self._denial_reasons)

    async def add_denial_reason(self, reason: DenialReason) -> DenialReason:
        async with self._lock:
            for existing in self._denial_reasons:
                if existing.reason.casefold() == reason.reason.casefold():
                    return existing
            self._denial_reasons.append(reason)
            return reason

    # Menu --------------------------------------------------------------------

    async def load_menu(self) -> MenuIndex:
        async with self._lock:
            return MenuIndex(
                items=list(self._menu_items.values()),
                variants=list(self._variants.values()),
                choice_groups=list(self._choice_groups.values()),
            )


# ============================================================================
# SUPABASE STORE
# ============================================================================

class SupabaseStore(OrderStore):
    """
    Supabase-backed store.

    supabase-py is synchronous, so every call runs in the default executor
    under asyncio.wait_for with the configured timeout. Errors are logged
    and re-raised; the engine surfaces them generically.
    """

    def __init__(self, url: str, key: str, timeout: float = 10.0, client: Optional[Client] = None):
        self.client: Client = client or create_client(url, key)
        self.timeout = timeout
        logger.info("Supabase client initialized")

    @classmethod
    def from_config(cls, config) -> 'SupabaseStore':
        return cls(
            url=config.supabase.url,
            key=config.supabase.key,
            timeout=config.supabase.timeout,
        )

    async def _execute(self, operation: str, call: Callable[[], Any]) -> Any:
        """
        Run a blocking supabase call with a timeout.

        Raises:
            asyncio.TimeoutError: If the call exceeded the timeout
            APIError: If PostgREST rejected the call
        """
        try:
            loop = asyncio.get_event_loop()
            return await asyncio.wait_for(
                loop.run_in_executor(None, call),
                timeout=self.timeout
            )

        except asyncio.TimeoutError:
            logger.error(f"Store timeout during {operation} ({self.timeout}s)")
            raise

        except APIError as e:
            logger.error(f"Store error during {operation}: {e.message}", exc_info=True)
            raise

    @staticmethod
    def _error_text(error: APIError) -> str:
        return f"{error.message or ''} {error.details or ''}"

    # Orders ------------------------------------------------------------------

    @staticmethod
    def _order_from_row(row: Dict[str, Any]) -> Order:
        data = dict(row["data"])
        data["version"] = row["version"]
        return Order.from_dict(data)

    async def get_order(self, order_id: str) -> Optional[Order]:
        result = await self._execute(
            "get_order",
            lambda: self.client
                .table("orders")
                .select("*")
                .eq("order_id", order_id)
                .limit(1)
                .execute()
        )
        if result.data:
            return self._order_from_row(result.data[0])
        return None

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        customer_id: Optional[str] = None
    ) -> List[Order]:
        def query():
            builder = self.client.table("orders").select("*")
            if status is not None:
                builder = builder.eq("status", status.value)
            if customer_id is not None:
                builder = builder.eq("customer_id", customer_id)
            return builder.order("created_at", desc=True).execute()

        result = await self._execute("list_orders", query)
        return [self._order_from_row(row) for row in result.data or []]

    async def place_order(self, order: Order, voucher_code: Optional[str] = None) -> Order:
        order.version = 1
        try:
            result = await self._execute(
                "place_order",
                lambda: self.client.rpc(
                    "place_order",
                    {"p_order": order.to_dict(), "p_voucher_code": voucher_code}
                ).execute()
            )
        except APIError as e:
            text = self._error_text(e)
            if VOUCHER_LIMIT_ERROR in text:
                raise VoucherRejected(VoucherRejection.USAGE_LIMIT_REACHED, "Voucher usage limit reached")
            if VOUCHER_INVALID_ERROR in text:
                raise VoucherRejected(VoucherRejection.INVALID_CODE, "Invalid voucher code")
            raise

        row = result.data[0] if isinstance(result.data, list) else result.data
        return self._order_from_row(row)

    async def save_order(
        self,
        order: Order,
        expected_version: int,
        modification: Optional[OrderModification] = None
    ) -> Order:
        order.version = expected_version + 1
        payload = {
            "p_order": order.to_dict(),
            "p_expected_version": expected_version,
            "p_modification": modification.to_dict() if modification else None,
        }

        try:
            result = await self._execute(
                "save_order",
                lambda: self.client.rpc("save_order", payload).execute()
            )
        except APIError as e:
            text = self._error_text(e)
            if VERSION_CONFLICT_ERROR in text:
                raise ConcurrentModificationError(
                    f"Order {order.order_id} was modified concurrently"
                )
            if ORDER_NOT_FOUND_ERROR in text:
                raise OrderNotFoundError(f"Order not found: {order.order_id}")
            raise

        row = result.data[0] if isinstance(result.data, list) else result.data
        return self._order_from_row(row)

    async def list_modifications(self, order_id: str) -> List[OrderModification]:
        result = await self._execute(
            "list_modifications",
            lambda: self.client
                .table("order_modifications")
                .select("*")
                .eq("order_id", order_id)
                .order("timestamp")
                .order("seq")
                .execute()
        )
        return [OrderModification.from_dict(row) for row in result.data or []]

    # Vouchers & promotions ---------------------------------------------------

    async def get_voucher(self, code: str) -> Optional[Voucher]:
        result = await self._execute(
            "get_voucher",
            lambda: self.client
                .table("vouchers")
                .select("*")
                .eq("code", (code or "").upper())
                .limit(1)
                .execute()
        )
        return Voucher.from_dict(result.data[0]) if result.data else None

    async def save_voucher(self, voucher: Voucher) -> Voucher:
        row = voucher.to_dict()
        # Redemptions are owned by place_order
        row.pop("usage_count")
        result = await self._execute(
            "save_voucher",
            lambda: self.client.table("vouchers").upsert(row, on_conflict="code").execute()
        )
        return Voucher.from_dict(result.data[0]) if result.data else voucher

    async def get_promotion(self, promotion_id: str) -> Optional[Promotion]:
        result = await self._execute(
            "get_promotion",
            lambda: self.client
                .table("promotions")
                .select("*")
                .eq("promotion_id", promotion_id)
                .limit(1)
                .execute()
        )
        return Promotion.from_dict(result.data[0]) if result.data else None

    async def list_promotions(self) -> List[Promotion]:
        result = await self._execute(
            "list_promotions",
            lambda: self.client.table("promotions").select("*").execute()
        )
        return [Promotion.from_dict(row) for row in result.data or []]

    # Settings ----------------------------------------------------------------

    async def get_settings(self) -> Optional[RestaurantSettings]:
        result = await self._execute(
            "get_settings",
            lambda: self.client
                .table("restaurant_settings")
                .select("data")
                .eq("id", 1)
                .limit(1)
                .execute()
        )
        if result.data:
            return RestaurantSettings.from_dict(result.data[0]["data"])
        return None

    async def save_settings(self, settings: RestaurantSettings) -> RestaurantSettings:
        row = {"id": 1, "data": settings.to_dict(), "updated_at": to_iso(utcnow())}
        await self._execute(
            "save_settings",
            lambda: self.client.table("restaurant_settings").upsert(row).execute()
        )
        return settings

    # Delivery fees -----------------------------------------------------------

    async def list_delivery_fees(self) -> List[DeliveryFee]:
        result = await self._execute(
            "list_delivery_fees",
            lambda: self.client.table("delivery_fees").select("*").order("barangay").execute()
        )
        return [
            DeliveryFee(barangay=row["barangay"], fee=float(row["fee"]))
            for row in result.data or []
        ]

    async def upsert_delivery_fees(self, fees: List[DeliveryFee]) -> List[DeliveryFee]:
        rows = [fee.to_dict() for fee in fees]
        await self._execute(
            "upsert_delivery_fees",
            lambda: self.client
                .table("delivery_fees")
                .upsert(rows, on_conflict="barangay")
                .execute()
        )
        return list(fees)

    async def remove_delivery_fee(self, barangay: str) -> bool:
        result = await self._execute(
            "remove_delivery_fee",
            lambda: self.client
                .table("delivery_fees")
                .delete()
                .ilike("barangay", (barangay or "").strip())
                .execute()
        )
        return bool(result.data)

    # Denial reasons ----------------------------------------------------------

    async def list_denial_reasons(self) -> List[DenialReason]:
        result = await self._execute(
            "list_denial_reasons",
            lambda: self.client.table("denial_reasons").select("*").order("created_at").execute()
        )
        return [
            DenialReason(
                reason=row["reason"],
                is_preset=bool(row.get("is_preset", False)),
                created_at=parse_datetime(row.get("created_at")) or utcnow(),
            )
            for row in result.data or []
        ]

    async def add_denial_reason(self, reason: DenialReason) -> DenialReason:
        await self._execute(
            "add_denial_reason",
            lambda: self.client.rpc(
                "add_denial_reason",
                {"p_reason": reason.reason, "p_is_preset": reason.is_preset}
            ).execute()
        )
        return reason

    # Menu --------------------------------------------------------------------

    async def load_menu(self) -> MenuIndex:
        items, variants, groups = await asyncio.gather(
            self._execute(
                "load_menu_items",
                lambda: self.client.table("menu_items").select("*").execute()
            ),
            self._execute(
                "load_menu_variants",
                lambda: self.client.table("menu_item_variants").select("*").execute()
            ),
            self._execute(
                "load_choice_groups",
                lambda: self.client.table("menu_item_choice_groups").select("*").execute()
            ),
        )
        return MenuIndex.from_rows(items.data or [], variants.data or [], groups.data or [])


def create_store(config) -> OrderStore:
    """Store for the configured backend."""
    if config.store.backend == "supabase":
        return SupabaseStore.from_config(config)
    return InMemoryStore()
