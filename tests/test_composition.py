"""
Tests for resolving menu selections into order lines.
"""

import pytest

from composition import ItemSelection, OrderComposer, merge_lines, normalize_quantity
from errors import ValidationError
from models import MenuItemVariant, OrderItem


@pytest.fixture
async def composer(store):
    return OrderComposer(await store.load_menu())


class TestPlainItems:

    async def test_base_price(self, composer):
        line = composer.build_line(ItemSelection(menu_item_id="burger", quantity=2))

        assert line.name == "Burger"
        assert line.unit_price == 100
        assert line.price == 200

    async def test_unknown_item(self, composer):
        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(menu_item_id="lobster"))

    async def test_unavailable_item(self, composer):
        with pytest.raises(ValidationError, match="unavailable"):
            composer.build_line(ItemSelection(menu_item_id="pie"))

    async def test_variant_on_plain_item(self, composer):
        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(menu_item_id="burger", variant_id="fries-l"))

    async def test_choices_on_plain_item(self, composer):
        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(menu_item_id="burger", choices={"drink": "Soda"}))


class TestVariants:

    async def test_variant_price_and_name(self, composer):
        line = composer.build_line(ItemSelection(menu_item_id="fries", variant_id="fries-l", quantity=3))

        assert line.name == "Fries (Large)"
        assert line.unit_price == 80
        assert line.variant_name == "Large"
        assert line.price == 240

    async def test_variant_required(self, composer):
        with pytest.raises(ValidationError, match="select an option"):
            composer.build_line(ItemSelection(menu_item_id="fries"))

    async def test_unavailable_variant(self, composer):
        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(menu_item_id="fries", variant_id="fries-xl"))

    async def test_variant_of_other_item(self, composer, store):
        store.add_variant(MenuItemVariant(variant_id="cola-l", menu_item_id="soda", name="Large", price=45))
        composer = OrderComposer(await store.load_menu())

        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(menu_item_id="fries", variant_id="cola-l"))


class TestBundles:

    async def test_bundle_price_ignores_choice_prices(self, composer):
        plain = composer.build_line(ItemSelection(
            menu_item_id="combo", choices={"drink": "Soda"}
        ))
        upgraded = composer.build_line(ItemSelection(
            menu_item_id="combo", choices={"drink": "Iced Tea", "side": "Large Fries"}
        ))

        assert plain.unit_price == 250
        assert upgraded.unit_price == 250
        assert upgraded.selected_choices["side"].price == 30

    async def test_bundle_items_resolved_from_choices(self, composer):
        line = composer.build_line(ItemSelection(
            menu_item_id="combo", choices={"drink": "Iced Tea", "side": "Large Fries"}
        ))

        assert [b.name for b in line.bundle_items] == ["Burger", "Iced Tea", "Fries (Large)"]
        assert line.bundle_items[2].variant_id == "fries-l"
        assert line.name == "Combo Meal - Iced Tea, Large Fries"

    async def test_label_only_choice_adds_no_constituent(self, composer):
        line = composer.build_line(ItemSelection(
            menu_item_id="combo", choices={"drink": "Soda", "side": "No side"}
        ))

        assert [b.menu_item_id for b in line.bundle_items] == ["burger", "soda"]
        assert "side" in line.selected_choices

    async def test_optional_group_may_be_skipped(self, composer):
        line = composer.build_line(ItemSelection(menu_item_id="combo", choices={"drink": "Soda"}))
        assert set(line.selected_choices) == {"drink"}

    async def test_bundle_line_is_frozen(self, composer):
        line = composer.build_line(ItemSelection(menu_item_id="combo", choices={"drink": "Soda"}))

        with pytest.raises(TypeError):
            line.selected_choices["drink"] = line.selected_choices["drink"]

        again = composer.build_line(ItemSelection(menu_item_id="combo", choices={"drink": "Soda"}))
        assert line == again
        assert len({line, again}) == 1
        assert OrderItem.from_dict(line.to_dict()) == line

    async def test_required_group_missing(self, composer):
        with pytest.raises(ValidationError, match="Please select Drink"):
            composer.build_line(ItemSelection(menu_item_id="combo", choices={"side": "Small Fries"}))

    async def test_unknown_choice(self, composer):
        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(menu_item_id="combo", choices={"drink": "Milkshake"}))

    async def test_unavailable_choice(self, composer):
        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(menu_item_id="combo", choices={"drink": "Water"}))

    async def test_unknown_group(self, composer):
        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(
                menu_item_id="combo", choices={"drink": "Soda", "dessert": "Pie"}
            ))

    async def test_bundle_takes_no_variant(self, composer):
        with pytest.raises(ValidationError):
            composer.build_line(ItemSelection(
                menu_item_id="combo", variant_id="fries-l", choices={"drink": "Soda"}
            ))

    async def test_lines_with_different_choices_differ(self, composer):
        soda = composer.build_line(ItemSelection(menu_item_id="combo", choices={"drink": "Soda"}))
        tea = composer.build_line(ItemSelection(menu_item_id="combo", choices={"drink": "Iced Tea"}))
        assert soda.line_key != tea.line_key


class TestQuantity:

    @pytest.mark.parametrize("quantity", [0, -1, 101, 1.5, "2", True])
    def test_invalid(self, quantity):
        with pytest.raises(ValidationError):
            normalize_quantity(quantity)

    @pytest.mark.parametrize("quantity", [1, 100])
    def test_bounds(self, quantity):
        assert normalize_quantity(quantity) == quantity


def line(name, quantity=1, price=100.0):
    return OrderItem(menu_item_id=name.lower(), name=name, unit_price=price, quantity=quantity)


class TestMergeLines:

    def test_identical_lines_collapse_in_place(self):
        merged = merge_lines([line("Burger"), line("Soda", 2), line("Burger", 2)])

        assert [(item.name, item.quantity) for item in merged] == [("Burger", 3), ("Soda", 2)]

    def test_different_unit_prices_stay_apart(self):
        merged = merge_lines([line("Burger"), line("Burger", price=80)])

        assert [item.unit_price for item in merged] == [100, 80]

    def test_merged_quantity_is_capped(self):
        with pytest.raises(ValidationError):
            merge_lines([line("Burger", 60), line("Burger", 60)])
