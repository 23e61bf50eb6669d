"""
Tests for the menu index.
"""

import pytest

from menu import MenuIndex, normalize_price, validate_item_row


class TestNormalizePrice:

    @pytest.mark.parametrize("raw, expected", [
        (100, 100.0),
        ("₱1,250.50", 1250.5),
        (" 99.999 ", 100.0),
    ])
    def test_valid(self, raw, expected):
        assert normalize_price(raw) == expected

    @pytest.mark.parametrize("raw", [-1, "free", None, True, 1_000_000])
    def test_invalid(self, raw):
        assert normalize_price(raw) is None


class TestRows:

    def test_invalid_rows_dropped(self):
        index = MenuIndex.from_rows([
            {"item_id": "burger", "name": "Burger", "price": "100"},
            {"item_id": "ghost", "name": "  ", "price": 10},
            {"item_id": "nameless", "price": 10},
        ])

        assert len(index) == 1
        assert index.get_item("burger").price == 100

    def test_long_description_truncated(self):
        row = validate_item_row({"item_id": "x", "name": "X", "price": 1, "description": "d" * 600})
        assert row["description"].endswith("...")

    def test_rows_with_variants_and_groups(self):
        index = MenuIndex.from_rows(
            [{"item_id": "combo", "name": "Combo", "price": 250, "is_bundle": True}],
            [],
            [
                {"group_id": "b", "menu_item_id": "combo", "name": "Side", "order": 2, "choices": []},
                {"group_id": "a", "menu_item_id": "combo", "name": "Drink", "order": 1,
                 "choices": [{"name": "Tea", "order": 2}, {"name": "Soda", "order": 1}]},
            ],
        )

        groups = index.choice_groups_for("combo")
        assert [g.name for g in groups] == ["Drink", "Side"]
        assert [c.name for c in groups[0].choices] == ["Soda", "Tea"]


class TestFromPrice:

    async def test_cheapest_available_variant(self, store):
        menu = await store.load_menu()
        assert menu.from_price("fries") == 50

    async def test_plain_item(self, store):
        menu = await store.load_menu()
        assert menu.from_price("burger") == 100
        assert menu.from_price("missing") is None
