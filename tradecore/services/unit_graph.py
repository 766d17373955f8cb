"""Packaging unit-conversion graph

A category's packaging hierarchy is a list of directed edges ordered by level,
each reading "``quantity`` units of ``from`` = 1 unit of ``to``" (12 Pieces = 1 Box,
40 Boxes = 1 Pallet). Conversions walk the edges greedily in level order: from
the current unit take the first unused edge leaving it, until the target is
reached or no edge leaves the current unit. There is no backtracking, so a
graph with a dead-end branch listed first can report ``NOT_FOUND`` even though
another route exists. Changing that would change which path is chosen on
ambiguous graphs and with it historical invoice totals.
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional
import logging

from pydantic import BaseModel, Field

from tradecore.config import settings
from tradecore.exceptions import (
    InvalidConversionEdge,
    InvalidQuantity,
    MissingPackagingData,
    NoConversionPath,
)
from tradecore.models.decimal_wire import wire_to_decimal
from tradecore.models.packaging import (
    ConversionEdge,
    PackagingUnit,
    ProductPackagingProfile,
    canonical_unit,
)

logger = logging.getLogger(__name__)

GRAMS_PER_KG = Decimal("1000")
WEIGHT_QUANTUM = Decimal("0.0001")


def round_half_up(value: Decimal, places: Optional[int] = None) -> Decimal:
    """Round to ``places`` decimals (default ``CONVERSION_DECIMAL_PLACES``), half away from zero"""
    if places is None:
        places = settings.CONVERSION_DECIMAL_PLACES
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


class PathKind(str, Enum):
    IDENTITY = "identity"
    DIRECT = "direct"
    INDIRECT = "indirect"
    NOT_FOUND = "not_found"


class ConversionStep(BaseModel):
    """One traversed edge"""
    level: int
    from_unit: str
    to_unit: str
    quantity: Decimal


class ConversionPath(BaseModel):
    """Result of the greedy walk, without applying it to a quantity

    ``reversed`` means no forward walk existed and the steps were found by
    walking from the target back to the source; they are listed in walk order.
    """
    kind: PathKind
    from_unit: str
    to_unit: str
    steps: List[ConversionStep] = Field(default_factory=list)
    reversed: bool = False

    @property
    def found(self) -> bool:
        return self.kind != PathKind.NOT_FOUND

    @property
    def factor(self) -> Decimal:
        """Product of the edge quantities along the path"""
        factor = Decimal("1")
        for step in self.steps:
            factor *= step.quantity
        return factor


class ConversionResult(BaseModel):
    original_quantity: Decimal
    converted_quantity: Decimal
    from_unit: str
    to_unit: str
    path: List[ConversionStep] = Field(default_factory=list)
    kind: PathKind
    reversed: bool = False


class _Edge(NamedTuple):
    level: int
    from_unit: str
    to_unit: str
    quantity: Decimal


class UnitGraph:
    """Directed conversion graph for one category (or one product profile)"""

    def __init__(
        self,
        edges: Iterable[ConversionEdge],
        units: Iterable[PackagingUnit],
        category_id: Optional[int] = None,
    ):
        self.category_id = category_id
        self.units: List[PackagingUnit] = list(units)
        names_by_id = {unit.id: unit.name for unit in self.units if unit.id is not None}

        graph_edges: List[_Edge] = []
        for edge in edges:
            if not edge.is_active:
                continue
            if edge.quantity is None or edge.quantity <= 0:
                raise InvalidConversionEdge(
                    f"Level {edge.level}: conversion quantity must be greater than zero",
                    level=edge.level,
                    quantity=edge.quantity,
                )
            if edge.from_unit_id not in names_by_id or edge.to_unit_id not in names_by_id:
                raise InvalidConversionEdge(
                    f"Level {edge.level}: edge references an unknown packaging unit",
                    level=edge.level,
                    quantity=edge.quantity,
                )
            graph_edges.append(_Edge(
                level=edge.level,
                from_unit=names_by_id[edge.from_unit_id],
                to_unit=names_by_id[edge.to_unit_id],
                quantity=Decimal(edge.quantity),
            ))

        # Stable sort: edges sharing a level keep their insertion order
        self.edges: List[_Edge] = sorted(graph_edges, key=lambda e: e.level)

    @classmethod
    def from_profile(cls, profile: ProductPackagingProfile) -> "UnitGraph":
        """Build a graph from a product profile's own quantity map, in insertion order"""
        units: List[PackagingUnit] = []
        ids: Dict[str, int] = {}
        for node in profile.nodes():
            ids[node] = len(ids) + 1
            units.append(PackagingUnit(id=ids[node], name=node, abbreviation=node))

        edges = [
            ConversionEdge(
                category_id=profile.category_id,
                level=index + 1,
                from_unit_id=ids[from_unit],
                to_unit_id=ids[to_unit],
                quantity=quantity,
            )
            for index, ((from_unit, to_unit), quantity) in enumerate(profile.quantities.items())
        ]
        return cls(edges, units, category_id=profile.category_id)

    def resolve_unit(self, unit: Optional[str]) -> Optional[str]:
        """Return the graph's name for ``unit`` (matched by name, abbreviation or alias)"""
        if unit is None or not str(unit).strip():
            return None
        for candidate in self.units:
            if candidate.matches(unit):
                return candidate.name
        return None

    def _walk(self, start: str, target: str) -> Optional[List[ConversionStep]]:
        current = start
        used = set()
        steps: List[ConversionStep] = []
        while current != target:
            index = next(
                (i for i, edge in enumerate(self.edges) if i not in used and edge.from_unit == current),
                None,
            )
            if index is None:
                return None
            used.add(index)
            edge = self.edges[index]
            steps.append(ConversionStep(
                level=edge.level,
                from_unit=edge.from_unit,
                to_unit=edge.to_unit,
                quantity=edge.quantity,
            ))
            current = edge.to_unit
        return steps

    def find_path(self, from_unit: str, to_unit: str) -> ConversionPath:
        """Find the greedy conversion path between two units without raising"""
        if canonical_unit(from_unit).lower() == canonical_unit(to_unit).lower():
            return ConversionPath(kind=PathKind.IDENTITY, from_unit=from_unit, to_unit=to_unit)

        source = self.resolve_unit(from_unit)
        target = self.resolve_unit(to_unit)
        if source is None or target is None:
            return ConversionPath(kind=PathKind.NOT_FOUND, from_unit=from_unit, to_unit=to_unit)
        if source == target:
            return ConversionPath(kind=PathKind.IDENTITY, from_unit=source, to_unit=target)

        reversed_walk = False
        steps = self._walk(source, target)
        if steps is None:
            steps = self._walk(target, source)
            reversed_walk = True
        if steps is None:
            return ConversionPath(kind=PathKind.NOT_FOUND, from_unit=source, to_unit=target)

        return ConversionPath(
            kind=PathKind.DIRECT if len(steps) == 1 else PathKind.INDIRECT,
            from_unit=source,
            to_unit=target,
            steps=steps,
            reversed=reversed_walk,
        )

    def convert(self, from_unit: str, to_unit: str, quantity) -> ConversionResult:
        """
        Convert ``quantity`` of ``from_unit`` into ``to_unit``.

        Forward steps divide by the edge quantity (480 Pieces -> 40 Boxes -> 1 Pallet);
        a reversed path multiplies. The result is rounded half-up to
        ``CONVERSION_DECIMAL_PLACES``.

        Raises:
            InvalidQuantity: quantity missing, non-numeric or negative
            NoConversionPath: unknown unit or no greedy path in either direction
        """
        amount = wire_to_decimal(quantity)
        if amount is None or amount < 0:
            raise InvalidQuantity(quantity)

        path = self.find_path(from_unit, to_unit)
        if not path.found:
            logger.info(
                f"No conversion path from {from_unit} to {to_unit} (category {self.category_id})"
            )
            raise NoConversionPath(from_unit, to_unit, self.category_id)

        if path.reversed:
            converted = amount * path.factor
        else:
            converted = amount
            for step in path.steps:
                converted = converted / step.quantity

        return ConversionResult(
            original_quantity=amount,
            converted_quantity=round_half_up(converted),
            from_unit=path.from_unit,
            to_unit=path.to_unit,
            path=path.steps,
            kind=path.kind,
            reversed=path.reversed,
        )

    def weight_at_level(self, profile: ProductPackagingProfile, target_unit: str) -> Decimal:
        """
        Weight (kg) of one ``target_unit``, derived from the profile's unit weight.

        The unit weight is measured at ``weight_unit_type``. Walking toward larger
        units multiplies by each edge quantity (1 Box = 12 Pieces weighs 12x a
        piece); a reversed path divides.
        """
        if profile.unit_weight is None:
            raise MissingPackagingData(target_unit, "unitWeight", profile.product_id)
        if not profile.weight_unit_type:
            raise MissingPackagingData(target_unit, "weightUnitType", profile.product_id)

        base_weight = Decimal(profile.unit_weight)
        if (profile.unit_weight_unit or "kg").lower() in ("g", "gm", "gram", "grams"):
            base_weight = base_weight / GRAMS_PER_KG

        path = self.find_path(profile.weight_unit_type, target_unit)
        if not path.found:
            raise NoConversionPath(profile.weight_unit_type, target_unit, self.category_id)
        if path.reversed:
            return base_weight / path.factor
        return base_weight * path.factor

    def derive_level_weights(self, profile: ProductPackagingProfile) -> Dict[str, Decimal]:
        """Weight for every node of the profile graph reachable from the weight unit"""
        if profile.unit_weight is None or not profile.weight_unit_type:
            return {}

        weights: Dict[str, Decimal] = {}
        for node in profile.nodes():
            try:
                weight = self.weight_at_level(profile, node)
            except NoConversionPath:
                logger.debug(f"No weight derivable for {node} from {profile.weight_unit_type}")
                continue
            weights[node] = weight.quantize(WEIGHT_QUANTUM, rounding=ROUND_HALF_UP)
        return weights
