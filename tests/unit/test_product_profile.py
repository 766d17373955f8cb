"""Tests for the typed product packaging profile and its JSON layout"""

import pytest
from decimal import Decimal

from tradecore.models.decimal_wire import decimal_to_wire, to_wire, wire_to_decimal
from tradecore.models.packaging import (
    ProductPackagingProfile,
    UnitKind,
    canonical_unit,
    unit_kind,
)


@pytest.mark.unit
class TestDynamicFields:
    """Parsing ``packagingHierarchyData``"""

    def test_parse_stored_layout(self, tile_profile):
        assert tile_profile.pieces_per_box == Decimal("12")
        assert tile_profile.boxes_per_pallet == Decimal("40")
        assert tile_profile.weight("pcs") == Decimal("0.5")
        assert tile_profile.gross_weight_per_box == Decimal("6.5")
        assert tile_profile.cbm_per_box == Decimal("0.05")
        assert tile_profile.unit_weight == Decimal("500")
        assert tile_profile.unit_weight_unit == "g"
        assert tile_profile.weight_unit_type == "Pieces"

    def test_bare_field_map(self):
        profile = ProductPackagingProfile.from_dynamic_fields({"SqmPerBox": 1.44, "volumePerBox": "0.03"})

        assert profile.sqm_per_box == Decimal("1.44")
        assert profile.cbm_per_box == Decimal("0.03")

    def test_non_positive_and_garbage_values_are_dropped(self):
        profile = ProductPackagingProfile.from_dynamic_fields(
            {"dynamicFields": {"PiecesPerBox": "0", "BoxPerPallet": "lots", "weightPerBox": ""}}
        )

        assert profile.quantities == {}
        assert profile.weights == {}
        assert profile.is_empty()

    def test_empty_data(self):
        assert ProductPackagingProfile.from_dynamic_fields(None).is_empty()

    def test_nodes_in_first_seen_order(self, tile_profile):
        assert tile_profile.nodes() == ["Pieces", "Box", "Pallet"]

    def test_to_dynamic_fields(self, tile_profile):
        data = tile_profile.to_dynamic_fields()

        assert data["dynamicFields"]["PiecesPerBox"] == "12"
        assert data["dynamicFields"]["BoxPerPallet"] == "40"
        assert data["dynamicFields"]["weightPerPieces"] == "0.5"
        assert data["dynamicFields"]["grossWeightPerBox"] == "6.5"
        assert data["unitWeight"] == "500"
        assert data["weightUnitType"] == "Pieces"

        reparsed = ProductPackagingProfile.from_dynamic_fields(data)
        assert reparsed.quantities == tile_profile.quantities
        assert reparsed.weights == tile_profile.weights


@pytest.mark.unit
class TestUnitNames:
    """Alias handling"""

    @pytest.mark.parametrize("alias,expected", [
        ("pcs", "Pieces"),
        (" Boxes ", "Box"),
        ("m²", "Square Meter"),
        ("KGS", "Kilogram"),
        ("Drum", "Drum"),
    ])
    def test_canonical_unit(self, alias, expected):
        assert canonical_unit(alias) == expected

    def test_unit_kind(self):
        assert unit_kind("pieces") == UnitKind.PIECES
        assert unit_kind("sqft") == UnitKind.AREA
        assert unit_kind("Carton") == UnitKind.OTHER
        assert unit_kind(None) == UnitKind.OTHER


@pytest.mark.unit
class TestDecimalWire:
    """Decimal <-> JSON-safe strings"""

    def test_decimal_to_wire(self):
        assert decimal_to_wire(Decimal("12.50")) == "12.5"
        assert decimal_to_wire(Decimal("1E+2")) == "100"
        assert decimal_to_wire(Decimal("-0.00")) == "0"
        assert decimal_to_wire(None) is None

    def test_wire_to_decimal(self):
        assert wire_to_decimal("12.5") == Decimal("12.5")
        assert wire_to_decimal(0.1) == Decimal("0.1")
        assert wire_to_decimal("abc") is None
        assert wire_to_decimal(True) is None
        assert wire_to_decimal("NaN") is None

    def test_to_wire_nested(self):
        assert to_wire({"a": [Decimal("1.10"), {"b": Decimal("2")}]}) == {"a": ["1.1", {"b": "2"}]}
