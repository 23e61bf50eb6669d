"""
Tests for delivery fee tiers and barangay matching.
"""

import pytest

from delivery import (
    DeliveryTiers,
    fee_for_distance,
    find_area_fee,
    resolve_delivery_fee,
    validate_area_fee,
)
from errors import ValidationError
from models import DeliveryFee


class TestDistanceTiers:

    @pytest.mark.parametrize("distance, expected", [
        (0, 0),
        (0.5, 0),
        (0.51, 20),
        (1.0, 20),
        (1.5, 7.5),
        (3.0, 30),
    ])
    def test_default_tiers(self, distance, expected):
        assert fee_for_distance(distance) == expected

    def test_flat_fee_added_beyond_radius_when_configured(self):
        tiers = DeliveryTiers(charge_flat_fee_beyond_flat_radius=True)
        assert fee_for_distance(1.5, tiers) == 27.5

    def test_custom_rate(self):
        assert fee_for_distance(2.0, DeliveryTiers(fee_per_km=10)) == 10

    def test_negative_distance(self):
        with pytest.raises(ValidationError):
            fee_for_distance(-1)

    def test_from_config(self, config):
        tiers = DeliveryTiers.from_config(config.pricing, fee_per_km=12)
        assert tiers.fee_per_km == 12
        assert tiers.flat_fee == config.pricing.flat_fee


class TestAreaFees:

    fees = [
        DeliveryFee(barangay="San Jose", fee=30),
        DeliveryFee(barangay="San Jose Norte", fee=45),
        DeliveryFee(barangay="Poblacion", fee=25),
    ]

    def test_matches_case_insensitively(self):
        assert find_area_fee("12 Mabini St, POBLACION", self.fees).fee == 25

    def test_longest_name_wins(self):
        assert find_area_fee("Purok 3, San Jose Norte", self.fees).fee == 45

    def test_hyphens_fold_to_spaces(self):
        assert find_area_fee("Brgy. San-Jose, QC", self.fees).fee == 30

    def test_partial_words_do_not_match(self):
        assert find_area_fee("Sanjoseville Subdivision", self.fees) is None

    def test_no_address(self):
        assert find_area_fee(None, self.fees) is None

    def test_distance_wins_over_area(self):
        assert resolve_delivery_fee(1.5, "San Jose", self.fees, DeliveryTiers()) == 7.5

    def test_no_distance_and_no_match_is_free(self):
        assert resolve_delivery_fee(None, "Somewhere Else", self.fees, DeliveryTiers()) == 0


class TestValidateAreaFee:

    def test_trims_name(self):
        assert validate_area_fee("  Poblacion ", 25).barangay == "Poblacion"

    @pytest.mark.parametrize("barangay, fee", [("", 10), ("Poblacion", -1)])
    def test_rejects_bad_values(self, barangay, fee):
        with pytest.raises(ValidationError):
            validate_area_fee(barangay, fee)


class TestServiceFees:

    async def test_bulk_upsert_and_remove(self, service, owner):
        await service.upsert_delivery_fees(owner, [("Poblacion", 25), ("San Jose", 30)])
        await service.upsert_delivery_fee(owner, "poblacion", 28)

        fees = {fee.barangay.lower(): fee.fee for fee in await service.list_delivery_fees()}
        assert fees == {"poblacion": 28, "san jose": 30}

        assert await service.remove_delivery_fee(owner, "San Jose")
        assert not await service.remove_delivery_fee(owner, "San Jose")

    async def test_bulk_upsert_validates_whole_batch(self, service, owner):
        with pytest.raises(ValidationError):
            await service.upsert_delivery_fees(owner, [("Poblacion", 25), ("", 10)])

        assert await service.list_delivery_fees() == []
