"""Packaging reference data and per-product packaging profiles"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field
import logging

from .decimal_wire import decimal_to_wire, wire_to_decimal

logger = logging.getLogger(__name__)


# (from_unit, to_unit) canonical names: "<quantity> from = 1 to"
NodePair = Tuple[str, str]


class UnitKind(str, Enum):
    """Packing-calculator branch selected by the line item unit"""
    PIECES = "pieces"
    KG = "kg"
    BOX = "box"
    PALLET = "pallet"
    AREA = "sqm"
    OTHER = "other"


PIECES = "Pieces"
BOX = "Box"
PALLET = "Pallet"
SQUARE_METER = "Square Meter"
KILOGRAM = "Kilogram"


UNIT_ALIASES: Dict[str, str] = {
    "pcs": PIECES,
    "pc": PIECES,
    "piece": PIECES,
    "pieces": PIECES,
    "box": BOX,
    "boxes": BOX,
    "bx": BOX,
    "pallet": PALLET,
    "pallets": PALLET,
    "plt": PALLET,
    "sqm": SQUARE_METER,
    "sqmt": SQUARE_METER,
    "m2": SQUARE_METER,
    "m²": SQUARE_METER,
    "square meter": SQUARE_METER,
    "square meters": SQUARE_METER,
    "square metre": SQUARE_METER,
    "sqft": "Square Feet",
    "square feet": "Square Feet",
    "kg": KILOGRAM,
    "kgs": KILOGRAM,
    "kilogram": KILOGRAM,
    "kilograms": KILOGRAM,
    "gm": "Gram",
    "g": "Gram",
    "gram": "Gram",
    "grams": "Gram",
    "mt": "Metric Ton",
    "ton": "Metric Ton",
    "tonne": "Metric Ton",
    "metric ton": "Metric Ton",
    "ltr": "Liter",
    "l": "Liter",
    "liter": "Liter",
    "litre": "Liter",
    "liters": "Liter",
    "pkg": "Package",
    "package": "Package",
    "packages": "Package",
    "ctn": "Carton",
    "carton": "Carton",
    "cartons": "Carton",
    "bdl": "Bundle",
    "bundle": "Bundle",
    "bundles": "Bundle",
}

UNIT_KINDS: Dict[str, UnitKind] = {
    PIECES: UnitKind.PIECES,
    KILOGRAM: UnitKind.KG,
    BOX: UnitKind.BOX,
    PALLET: UnitKind.PALLET,
    SQUARE_METER: UnitKind.AREA,
    "Square Feet": UnitKind.AREA,
}

DEFAULT_UNITS: List[Dict[str, str]] = [
    {"name": "Pieces", "abbreviation": "PCS", "description": "Individual pieces"},
    {"name": "Square Meter", "abbreviation": "SQMT", "description": "Square meter measurement"},
    {"name": "Square Feet", "abbreviation": "SQFT", "description": "Square feet measurement"},
    {"name": "Kilogram", "abbreviation": "KG", "description": "Weight in kilograms"},
    {"name": "Gram", "abbreviation": "GM", "description": "Weight in grams"},
    {"name": "Metric Ton", "abbreviation": "MT", "description": "Weight in metric tons"},
    {"name": "Liter", "abbreviation": "LTR", "description": "Volume in liters"},
    {"name": "Box", "abbreviation": "BOX", "description": "Packaging box"},
    {"name": "Package", "abbreviation": "PKG", "description": "Package unit"},
    {"name": "Pallet", "abbreviation": "PLT", "description": "Pallet unit"},
    {"name": "Carton", "abbreviation": "CTN", "description": "Carton packaging"},
    {"name": "Bundle", "abbreviation": "BDL", "description": "Bundle packaging"},
]


def canonical_unit(unit: Optional[str]) -> str:
    """Map a unit alias ("pcs", "boxes", "m²") to its canonical name; unknown names pass through"""
    if unit is None:
        return ""
    cleaned = str(unit).strip()
    return UNIT_ALIASES.get(cleaned.lower(), cleaned)


def unit_kind(unit: Optional[str]) -> UnitKind:
    return UNIT_KINDS.get(canonical_unit(unit), UnitKind.OTHER)


class PackagingUnit(BaseModel):
    """Packaging unit reference data"""
    id: Optional[int] = None
    name: str
    abbreviation: str
    description: Optional[str] = None
    is_active: bool = True

    def matches(self, unit: str) -> bool:
        """True when ``unit`` names this unit by name or abbreviation (case-insensitive)"""
        wanted = str(unit).strip().lower()
        return wanted in (self.name.lower(), self.abbreviation.lower()) or \
            canonical_unit(unit).lower() == self.name.lower()


class ConversionEdge(BaseModel):
    """``quantity`` units of from_unit = 1 unit of to_unit"""
    id: Optional[int] = None
    category_id: Optional[int] = None
    level: int = Field(ge=1)
    from_unit_id: int
    to_unit_id: int
    quantity: Decimal
    is_active: bool = True


class PackagingLevelInput(BaseModel):
    """One level of a hierarchy as submitted by an admin; validated by the packaging service"""
    from_unit_id: Optional[int] = None
    to_unit_id: Optional[int] = None
    quantity: Optional[Decimal] = None


class ProductPackagingProfile(BaseModel):
    """Per-product packaging data, keyed by canonical unit names

    ``quantities`` holds the product's own conversion edges (it may skip levels
    of the category hierarchy); ``weights`` holds explicit weight per unit at a
    given level. The string-keyed ``dynamicFields`` layout only exists at the
    persistence boundary (see ``from_dynamic_fields`` / ``to_dynamic_fields``).
    """
    product_id: Optional[int] = None
    category_id: Optional[int] = None
    unit_weight: Optional[Decimal] = None
    unit_weight_unit: str = "kg"
    weight_unit_type: Optional[str] = None
    quantities: Dict[NodePair, Decimal] = Field(default_factory=dict)
    weights: Dict[str, Decimal] = Field(default_factory=dict)
    gross_weight_per_box: Optional[Decimal] = None
    cbm_per_box: Optional[Decimal] = None

    def quantity(self, from_unit: str, to_unit: str) -> Optional[Decimal]:
        return self.quantities.get((canonical_unit(from_unit), canonical_unit(to_unit)))

    def weight(self, unit: str) -> Optional[Decimal]:
        return self.weights.get(canonical_unit(unit))

    @property
    def pieces_per_box(self) -> Optional[Decimal]:
        return self.quantity(PIECES, BOX)

    @property
    def sqm_per_box(self) -> Optional[Decimal]:
        return self.quantity(SQUARE_METER, BOX)

    @property
    def boxes_per_pallet(self) -> Optional[Decimal]:
        return self.quantity(BOX, PALLET)

    def is_empty(self) -> bool:
        return not (self.quantities or self.weights or self.unit_weight or self.cbm_per_box)

    def nodes(self) -> List[str]:
        """Every unit that appears in the profile graph, in first-seen order"""
        seen: List[str] = []
        for from_unit, to_unit in self.quantities:
            for unit in (from_unit, to_unit):
                if unit not in seen:
                    seen.append(unit)
        if self.weight_unit_type:
            unit = canonical_unit(self.weight_unit_type)
            if unit not in seen:
                seen.append(unit)
        return seen

    @classmethod
    def from_dynamic_fields(
        cls,
        data: Optional[Dict[str, Any]],
        product_id: Optional[int] = None,
        category_id: Optional[int] = None,
    ) -> "ProductPackagingProfile":
        """Parse the stored ``packagingHierarchyData`` JSON

        Accepts either ``{"dynamicFields": {...}, "unitWeight": ...}`` or a bare
        dynamic-field map.
        """
        data = data or {}
        fields = data["dynamicFields"] if "dynamicFields" in data else data

        quantities: Dict[NodePair, Decimal] = {}
        weights: Dict[str, Decimal] = {}
        gross_weight_per_box = None
        cbm_per_box = None

        for key, raw in fields.items():
            if key in ("weightPerBoxUnit", "unitWeight", "unitWeightUnit", "weightUnitType"):
                continue
            value = wire_to_decimal(raw)
            if value is None:
                continue
            if key == "grossWeightPerBox":
                gross_weight_per_box = value
            elif key in ("volumePerBox", "cbmPerBox"):
                cbm_per_box = value
            elif key.startswith("weightPer"):
                weights[canonical_unit(key[len("weightPer"):])] = value
            elif "Per" in key:
                from_unit, to_unit = key.rsplit("Per", 1)
                if not from_unit or not to_unit:
                    continue
                if value <= 0:
                    logger.warning(f"Ignoring non-positive packaging quantity {key}={raw}")
                    continue
                quantities[(canonical_unit(from_unit), canonical_unit(to_unit))] = value

        unit_weight_raw = data.get("unitWeight", fields.get("unitWeight"))
        weight_unit_type = data.get("weightUnitType", fields.get("weightUnitType"))
        return cls(
            product_id=product_id,
            category_id=category_id,
            unit_weight=wire_to_decimal(unit_weight_raw),
            unit_weight_unit=(data.get("unitWeightUnit") or fields.get("unitWeightUnit") or "kg").lower(),
            weight_unit_type=canonical_unit(weight_unit_type) if weight_unit_type else None,
            quantities=quantities,
            weights=weights,
            gross_weight_per_box=gross_weight_per_box,
            cbm_per_box=cbm_per_box,
        )

    def to_dynamic_fields(self) -> Dict[str, Any]:
        """Serialize back to the string-keyed JSON layout"""
        fields: Dict[str, Any] = {}
        for (from_unit, to_unit), value in self.quantities.items():
            fields[f"{from_unit}Per{to_unit}"] = decimal_to_wire(value)
        for unit, value in self.weights.items():
            fields[f"weightPer{unit}"] = decimal_to_wire(value)
        if self.gross_weight_per_box is not None:
            fields["grossWeightPerBox"] = decimal_to_wire(self.gross_weight_per_box)
        if self.cbm_per_box is not None:
            fields["cbmPerBox"] = decimal_to_wire(self.cbm_per_box)

        data: Dict[str, Any] = {"dynamicFields": fields}
        if self.unit_weight is not None:
            data["unitWeight"] = decimal_to_wire(self.unit_weight)
            data["unitWeightUnit"] = self.unit_weight_unit
        if self.weight_unit_type:
            data["weightUnitType"] = self.weight_unit_type
        return data


class Category(BaseModel):
    """Product category owning one packaging hierarchy"""
    id: Optional[int] = None
    company_id: int
    name: str
    primary_unit: Optional[str] = None
    secondary_unit: Optional[str] = None


class HierarchyLevel(BaseModel):
    """A conversion edge resolved to unit names, as shown to admins"""
    level: int
    from_unit: str
    from_abbreviation: str
    to_unit: str
    to_abbreviation: str
    quantity: Decimal
    from_unit_id: int
    to_unit_id: int


class ConversionChainEntry(BaseModel):
    level: int
    conversion: str
    ratio: Decimal


class PackagingStructure(BaseModel):
    """Category with its levels and human-readable conversion chain ("12 Pieces = 1 Box")"""
    category: Category
    packaging_levels: List[HierarchyLevel] = Field(default_factory=list)
    conversion_chain: List[ConversionChainEntry] = Field(default_factory=list)
