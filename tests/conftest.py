"""
Shared fixtures: a seeded in-memory store, a fixed clock and actors.
"""

from datetime import datetime, timedelta, timezone

import pytest

from config import Config
from db import InMemoryStore
from models import (
    Actor,
    Role,
    CustomerSnapshot,
    MenuItem,
    MenuItemVariant,
    MenuItemChoice,
    MenuItemChoiceGroup,
    BundleComponent,
    Voucher,
    DiscountType,
)
from orders import OrderService


# 2024-12-20 12:00 in Manila
NOW = datetime(2024, 12, 20, 4, 0, 0, tzinfo=timezone.utc)

CONFIG_ENV_KEYS = (
    "STORE_BACKEND",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "SUPABASE_TIMEOUT",
    "PLATFORM_FEE",
    "PLATFORM_FEE_ENABLED",
    "FEE_PER_KILOMETER",
    "DELIVERY_FREE_RADIUS_KM",
    "DELIVERY_FLAT_RADIUS_KM",
    "DELIVERY_FLAT_FEE",
    "DELIVERY_CHARGE_FLAT_BEYOND_RADIUS",
    "RESTAURANT_TIMEZONE",
    "AVERAGE_PREP_TIME",
    "AVERAGE_DELIVERY_TIME",
    "DENIAL_REASON_PRESETS",
    "MAX_SPECIAL_INSTRUCTIONS",
    "PREORDER_CANCEL_NOTICE_HOURS",
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "CORS_ORIGINS",
)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clean_env(monkeypatch):
    for key in CONFIG_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def config(clean_env):
    clean_env.setenv("DENIAL_REASON_PRESETS", "Out of stock|Restaurant is too busy")
    return Config()


@pytest.fixture
def clock():
    return FixedClock(NOW)


def seed_menu(store: InMemoryStore):
    store.add_menu_item(MenuItem(item_id="burger", name="Burger", price=100.0, category="Mains"))
    store.add_menu_item(MenuItem(item_id="fries", name="Fries", price=50.0, category="Sides"))
    store.add_menu_item(MenuItem(item_id="soda", name="Soda", price=30.0, category="Drinks"))
    store.add_menu_item(MenuItem(item_id="tea", name="Iced Tea", price=35.0, category="Drinks"))
    store.add_menu_item(MenuItem(item_id="pie", name="Apple Pie", price=60.0, available=False))
    store.add_menu_item(MenuItem(
        item_id="combo",
        name="Combo Meal",
        price=250.0,
        category="Bundles",
        is_bundle=True,
        bundle_items=(
            BundleComponent(menu_item_id="burger", order=1),
            BundleComponent(menu_item_id="fries", order=2),
            BundleComponent(menu_item_id="soda", order=3),
        ),
    ))

    store.add_variant(MenuItemVariant(variant_id="fries-s", menu_item_id="fries", name="Small", price=50.0))
    store.add_variant(MenuItemVariant(variant_id="fries-l", menu_item_id="fries", name="Large", price=80.0))
    store.add_variant(MenuItemVariant(
        variant_id="fries-xl", menu_item_id="fries", name="Bucket", price=120.0, available=False
    ))

    store.add_choice_group(MenuItemChoiceGroup(
        group_id="drink",
        menu_item_id="combo",
        name="Drink",
        order=1,
        required=True,
        choices=(
            MenuItemChoice(name="Soda", price=0.0, order=1, menu_item_id="soda"),
            MenuItemChoice(name="Iced Tea", price=10.0, order=2, menu_item_id="tea"),
            MenuItemChoice(name="Water", price=0.0, order=3, available=False),
        ),
    ))
    store.add_choice_group(MenuItemChoiceGroup(
        group_id="side",
        menu_item_id="combo",
        name="Side",
        order=2,
        required=False,
        choices=(
            MenuItemChoice(name="Small Fries", order=1, menu_item_id="fries", variant_id="fries-s"),
            MenuItemChoice(name="Large Fries", price=30.0, order=2, menu_item_id="fries", variant_id="fries-l"),
            MenuItemChoice(name="No side", order=3),
        ),
    ))


@pytest.fixture
def store():
    store = InMemoryStore()
    seed_menu(store)
    return store


@pytest.fixture
async def seeded_vouchers(store):
    await store.save_voucher(Voucher(
        code="SAVE10",
        discount_type=DiscountType.PERCENTAGE,
        value=10,
        max_discount=40,
        expires_at=NOW + timedelta(days=30),
    ))
    await store.save_voucher(Voucher(
        code="FLAT50",
        discount_type=DiscountType.FIXED,
        value=50,
        min_order_amount=200,
        usage_limit=1,
        expires_at=NOW + timedelta(days=30),
    ))
    return store


@pytest.fixture
def service(store, config, clock):
    return OrderService(store, config, clock=clock)


@pytest.fixture
def owner():
    return Actor(user_id="owner-1", name="Olivia Owner", role=Role.OWNER)


@pytest.fixture
def customer():
    return Actor(user_id="cust-1", name="Carlo Customer", role=Role.CUSTOMER)


@pytest.fixture
def other_customer():
    return Actor(user_id="cust-2", name="Dana Diner", role=Role.CUSTOMER)


@pytest.fixture
def snapshot():
    return CustomerSnapshot(
        name="Carlo Customer",
        phone="09171234567",
        address="123 Rizal St, Barangay San Jose, Quezon City",
        gcash_number="9171234567",
    )
