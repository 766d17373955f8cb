"""Invoice-level aggregation: totals, gross weight and required containers"""

from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, List, NamedTuple, Optional
import logging

from tradecore.config import settings
from tradecore.models.decimal_wire import wire_to_decimal
from tradecore.models.invoice import ContainerType, InvoiceLineItem, InvoiceTotals
from tradecore.models.packaging import BOX, PIECES, canonical_unit

logger = logging.getLogger(__name__)


class ContainerCapacity(NamedTuple):
    max_weight: Decimal  # kg
    max_volume: Decimal  # cbm


# None = no capacity limit (always one container)
CONTAINER_CAPACITIES: Dict[str, Optional[ContainerCapacity]] = {
    ContainerType.FEET_20.value: ContainerCapacity(Decimal("21000"), Decimal("28")),
    ContainerType.FEET_40.value: ContainerCapacity(Decimal("26500"), Decimal("56")),
    ContainerType.FEET_40_HQ.value: ContainerCapacity(Decimal("26500"), Decimal("68")),
    ContainerType.FEET_45_HQ.value: ContainerCapacity(Decimal("27500"), Decimal("76")),
    ContainerType.REEFER_20.value: ContainerCapacity(Decimal("21000"), Decimal("25")),
    ContainerType.REEFER_40.value: ContainerCapacity(Decimal("26500"), Decimal("59")),
    ContainerType.LCL.value: None,
}

# Boxes per quantity unit for the gross-weight heuristic; anything else counts as boxes
GROSS_WEIGHT_BOX_DIVISORS: Dict[str, Decimal] = {
    BOX: Decimal("1"),
    PIECES: Decimal("2000"),  # 50 pcs/pack x 40 packs/box
    "Package": Decimal("40"),
}

# Per-box gross weights above this are taken to be grams
GRAMS_THRESHOLD = Decimal("100")


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


class InvoiceAggregator:
    """Pure aggregation over computed line items; never trusts stored totals"""

    @staticmethod
    def charges_total(charges: Optional[Dict[str, Any]]) -> Decimal:
        """Sum of charge values; anything non-numeric counts as 0"""
        total = Decimal("0")
        for value in (charges or {}).values():
            amount = wire_to_decimal(value)
            if amount is not None:
                total += amount
        return total

    @staticmethod
    def required_containers(
        total_weight: Decimal,
        total_volume: Decimal,
        container_type: Optional[str],
    ) -> int:
        """
        Minimum container count satisfying both weight and volume capacity.

        Unknown, absent or unlimited (LCL) container types need exactly one.
        A dimension with no load counts as one container.
        """
        capacity = CONTAINER_CAPACITIES.get(container_type) if container_type else None
        if capacity is None:
            return 1

        by_weight = _ceil(total_weight / capacity.max_weight) if total_weight > 0 else 1
        by_volume = _ceil(total_volume / capacity.max_volume) if total_volume > 0 else 1
        return max(by_weight, by_volume, 1)

    @staticmethod
    def number_of_containers(required: int, override: Optional[int] = None) -> int:
        """User override wins when set (and non-zero); never below 1"""
        return max(override or required, 1)

    @staticmethod
    def gross_weight(
        line_items: List[InvoiceLineItem],
        override: Optional[Decimal] = None,
    ) -> Decimal:
        """Caller-supplied gross weight, else the box-count heuristic over product lines"""
        if override is not None:
            return Decimal(override)

        default_per_box = Decimal(str(settings.DEFAULT_GROSS_WEIGHT_PER_BOX))
        total = Decimal("0")
        for item in line_items:
            if not item.product_id:
                continue
            divisor = GROSS_WEIGHT_BOX_DIVISORS.get(canonical_unit(item.unit), Decimal("1"))
            boxes = item.quantity / divisor

            per_box = item.gross_weight_per_box or default_per_box
            if per_box > GRAMS_THRESHOLD:
                per_box = per_box / Decimal("1000")
            total += boxes * per_box
        return total.quantize(Decimal("0.0001"))

    @classmethod
    def compute_totals(
        cls,
        line_items: List[InvoiceLineItem],
        charges: Optional[Dict[str, Any]] = None,
        container_type: Optional[str] = None,
        gross_weight_override: Optional[Decimal] = None,
    ) -> InvoiceTotals:
        """Aggregate line items into invoice totals"""
        subtotal = sum((item.total for item in line_items), Decimal("0"))
        total_weight = sum((item.total_weight or Decimal("0") for item in line_items), Decimal("0"))

        total_volume = Decimal("0")
        total_boxes = Decimal("0")
        total_pallets = Decimal("0")
        for item in line_items:
            breakdown = item.packing_breakdown
            if breakdown is None:
                continue
            total_volume += breakdown.total_cbm
            total_boxes += breakdown.calculated_boxes
            total_pallets += breakdown.calculated_pallets

        charges_total = cls.charges_total(charges)
        required = cls.required_containers(total_weight, total_volume, container_type)

        logger.debug(
            f"Totals: subtotal={subtotal} weight={total_weight} volume={total_volume} "
            f"containers={required} ({container_type})"
        )

        return InvoiceTotals(
            subtotal=subtotal,
            total_weight=total_weight,
            total_gross_weight=cls.gross_weight(line_items, gross_weight_override),
            total_volume=total_volume,
            total_boxes=total_boxes,
            total_pallets=total_pallets,
            charges_total=charges_total,
            total_amount=subtotal + charges_total,
            required_containers=required,
        )
