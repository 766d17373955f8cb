"""Per-line packing breakdown: boxes, pallets, weight and volume from heterogeneous units"""

from decimal import Decimal, ROUND_CEILING
from typing import Optional
import logging

from tradecore.config import settings
from tradecore.exceptions import MissingPackagingData, NoConversionPath
from tradecore.models.decimal_wire import wire_to_decimal
from tradecore.models.invoice import PackingBreakdown
from tradecore.models.packaging import (
    BOX,
    PALLET,
    PIECES,
    SQUARE_METER,
    ProductPackagingProfile,
    UnitKind,
    canonical_unit,
    unit_kind,
)
from .unit_graph import UnitGraph, round_half_up

logger = logging.getLogger(__name__)


def ceil_decimal(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_CEILING)


class PackingCalculator:
    """Computes the packing breakdown of one line item against a product profile"""

    def __init__(self, profile: ProductPackagingProfile, graph: Optional[UnitGraph] = None):
        self.profile = profile
        self.graph = graph or UnitGraph.from_profile(profile)

    def level_weight(self, unit: str) -> Optional[Decimal]:
        """Explicit ``weightPer<Unit>`` first, then derived from the unit weight"""
        explicit = self.profile.weight(unit)
        if explicit is not None:
            return explicit
        try:
            return self.graph.weight_at_level(self.profile, unit)
        except (MissingPackagingData, NoConversionPath):
            return None

    def _weight_per_box(self) -> Decimal:
        weight = self.level_weight(BOX)
        if weight is None:
            weight = self.profile.gross_weight_per_box
        return weight or Decimal("0")

    def _require(self, value: Optional[Decimal], unit: str, field: str) -> Decimal:
        if value is None or value <= 0:
            raise MissingPackagingData(unit, field, self.profile.product_id)
        return value

    def calculate(self, quantity, unit: Optional[str]) -> Optional[PackingBreakdown]:
        """
        Compute the breakdown for ``quantity`` ``unit``.

        Returns None when there is nothing to compute (empty profile, no unit or
        zero quantity).

        Raises:
            MissingPackagingData: the unit's branch needs a figure the profile lacks
        """
        q = wire_to_decimal(quantity)
        if self.profile.is_empty() or not q or not unit:
            return None

        kind = unit_kind(unit)
        pallets: Optional[Decimal] = None

        if kind == UnitKind.PIECES:
            per_box = self._require(self.profile.pieces_per_box, unit, "piecesPerBox")
            boxes = ceil_decimal(q / per_box)
            weight = q * (self.level_weight(PIECES) or Decimal("0"))

        elif kind == UnitKind.KG:
            per_piece = self._require(self.level_weight(PIECES), unit, "weightPerPiece")
            per_box = self._require(self.profile.pieces_per_box, unit, "piecesPerBox")
            boxes = ceil_decimal((q / per_piece) / per_box)
            weight = q

        elif kind == UnitKind.BOX:
            boxes = q
            weight = q * self._weight_per_box()

        elif kind == UnitKind.PALLET:
            pallets = q
            boxes = q * self._require(self.profile.boxes_per_pallet, unit, "boxesPerPallet")
            weight = q * (self.level_weight(PALLET) or Decimal("0"))

        elif kind == UnitKind.AREA:
            per_box = self._require(self.profile.sqm_per_box, unit, "sqmPerBox")
            boxes = ceil_decimal(q / per_box)
            weight = q * (self.level_weight(canonical_unit(unit)) or self.level_weight(SQUARE_METER) or Decimal("0"))

        else:
            boxes, weight = self._other_unit(q, unit)

        if pallets is None:
            per_pallet = self.profile.boxes_per_pallet or Decimal(settings.DEFAULT_BOXES_PER_PALLET)
            pallets = ceil_decimal(boxes / per_pallet)

        cbm_per_box = self.profile.cbm_per_box or Decimal("0")

        return PackingBreakdown(
            calculated_boxes=boxes,
            calculated_pallets=pallets,
            total_weight=round_half_up(weight, 2),
            total_cbm=round_half_up(boxes * cbm_per_box, 4),
        )

    def _other_unit(self, q: Decimal, unit: str):
        path = self.graph.find_path(unit, BOX)
        if path.found:
            boxes = ceil_decimal(self.graph.convert(unit, BOX, q).converted_quantity)
        else:
            per_box = self.profile.sqm_per_box or self.profile.pieces_per_box
            per_box = self._require(per_box, unit, "piecesPerBox")
            boxes = ceil_decimal(q / per_box)

        unit_weight = self.level_weight(canonical_unit(unit))
        if unit_weight is not None:
            weight = q * unit_weight
        else:
            weight = boxes * self._weight_per_box()
        return boxes, weight


def calculate_packing_breakdown(
    profile: Optional[ProductPackagingProfile],
    quantity,
    unit: Optional[str],
) -> Optional[PackingBreakdown]:
    """Convenience wrapper; None when the product has no packaging profile"""
    if profile is None:
        return None
    return PackingCalculator(profile).calculate(quantity, unit)
