"""Packaging hierarchy administration and unit conversion per category"""

from typing import Any, Dict, List, Optional, Union
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from tradecore.exceptions import InvalidConversionEdge, NotFound
from tradecore.models.decimal_wire import decimal_to_wire, wire_to_decimal
from tradecore.models.packaging import (
    DEFAULT_UNITS,
    ConversionChainEntry,
    ConversionEdge,
    HierarchyLevel,
    PackagingLevelInput,
    PackagingStructure,
    PackagingUnit,
    ProductPackagingProfile,
)
from .db_service import DatabaseService, transaction
from .unit_graph import ConversionResult, UnitGraph

logger = logging.getLogger(__name__)


class PackagingService:
    """Packaging operations inside one session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _require_category(self, category_id: int, company_id: Optional[int] = None):
        category = await DatabaseService.get_category(category_id, self.db, company_id)
        if category is None:
            raise NotFound("Category", category_id, company_id)
        return category

    async def create_packaging_hierarchy(
        self,
        category_id: int,
        levels: List[PackagingLevelInput],
        user_id: Optional[int] = None,
    ) -> List[HierarchyLevel]:
        """
        Replace a category's hierarchy. Level numbers follow list order.

        Raises:
            InvalidConversionEdge: a level lacks a unit or quantity, has a
                non-positive quantity, or names an unknown unit
            NotFound: unknown category
        """
        edges = []
        for index, level in enumerate(levels):
            quantity = wire_to_decimal(level.quantity)
            if not level.from_unit_id or not level.to_unit_id or quantity is None:
                raise InvalidConversionEdge(
                    f"Invalid packaging level at index {index}. "
                    f"from_unit_id, to_unit_id and quantity are required.",
                    level=index + 1,
                    quantity=level.quantity,
                )
            if quantity <= 0:
                raise InvalidConversionEdge(
                    f"Invalid packaging level at index {index}. Quantity must be greater than zero.",
                    level=index + 1,
                    quantity=level.quantity,
                )
            edges.append(ConversionEdge(
                category_id=category_id,
                level=index + 1,
                from_unit_id=level.from_unit_id,
                to_unit_id=level.to_unit_id,
                quantity=quantity,
            ))

        async with transaction(self.db, "Packaging hierarchy update"):
            await self._require_category(category_id)
            units = await DatabaseService.load_units(self.db, active_only=False)
            # Rejects edges naming units that do not exist
            UnitGraph(edges, units, category_id=category_id)
            await DatabaseService.replace_conversion_edges(category_id, edges, self.db, created_by=user_id)
            hierarchy = await self.get_packaging_hierarchy(category_id)

        logger.info(f"Packaging hierarchy of category {category_id} replaced with {len(edges)} level(s)")
        return hierarchy

    async def get_packaging_hierarchy(self, category_id: int) -> List[HierarchyLevel]:
        """Active levels of a category; empty when the category or its hierarchy is absent"""
        edges = await DatabaseService.load_conversion_edges(category_id, self.db)
        if not edges:
            return []
        units = {unit.id: unit for unit in await DatabaseService.load_units(self.db, active_only=False)}
        return [
            HierarchyLevel(
                level=edge.level,
                from_unit=units[edge.from_unit_id].name,
                from_abbreviation=units[edge.from_unit_id].abbreviation,
                to_unit=units[edge.to_unit_id].name,
                to_abbreviation=units[edge.to_unit_id].abbreviation,
                quantity=edge.quantity,
                from_unit_id=edge.from_unit_id,
                to_unit_id=edge.to_unit_id,
            )
            for edge in edges
        ]

    async def get_full_packaging_structure(self, category_id: int) -> PackagingStructure:
        category = await self._require_category(category_id)
        levels = await self.get_packaging_hierarchy(category_id)
        return PackagingStructure(
            category=category,
            packaging_levels=levels,
            conversion_chain=[
                ConversionChainEntry(
                    level=index + 1,
                    conversion=f"{decimal_to_wire(level.quantity)} {level.from_unit} = 1 {level.to_unit}",
                    ratio=level.quantity,
                )
                for index, level in enumerate(levels)
            ],
        )

    async def build_unit_graph(self, category_id: int) -> UnitGraph:
        await self._require_category(category_id)
        edges = await DatabaseService.load_conversion_edges(category_id, self.db)
        units = await DatabaseService.load_units(self.db, active_only=False)
        return UnitGraph(edges, units, category_id=category_id)

    async def convert_units(self, category_id: int, from_unit: str, to_unit: str, quantity) -> ConversionResult:
        """Convert a quantity along the category's hierarchy"""
        graph = await self.build_unit_graph(category_id)
        return graph.convert(from_unit, to_unit, quantity)

    async def list_units(self) -> List[PackagingUnit]:
        units = await DatabaseService.load_units(self.db)
        return sorted(units, key=lambda unit: unit.name)

    async def seed_default_units(self) -> List[PackagingUnit]:
        """Insert the default units that are missing; returns only the ones created"""
        created = []
        async with transaction(self.db, "Packaging unit seeding"):
            for data in DEFAULT_UNITS:
                unit = await DatabaseService.create_unit_if_missing(PackagingUnit(**data), self.db)
                if unit is None:
                    logger.debug(f"Unit {data['name']} already exists, skipping")
                    continue
                created.append(unit)
        return created

    async def save_product_profile(
        self,
        product_id: int,
        profile: Union[ProductPackagingProfile, Dict[str, Any]],
    ) -> ProductPackagingProfile:
        """
        Persist a product's packaging data, filling ``weightPer<Unit>`` for every
        level whose weight can be derived from the unit weight. Explicit
        weights are kept as given.
        """
        if not isinstance(profile, ProductPackagingProfile):
            profile = ProductPackagingProfile.from_dynamic_fields(profile, product_id=product_id)

        derived = UnitGraph.from_profile(profile).derive_level_weights(profile)
        weights = dict(derived)
        weights.update(profile.weights)
        profile = profile.model_copy(update={"product_id": product_id, "weights": weights})

        async with transaction(self.db, "Product packaging update"):
            product = await DatabaseService.save_product_profile(product_id, profile, self.db)
            if product is None:
                raise NotFound("Product", product_id)

        return profile
