"""Pytest configuration and shared fixtures"""

import pytest
import os
import sys
from typing import AsyncGenerator, Dict
from datetime import datetime
from decimal import Decimal
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from tradecore.models.database import Base
from tradecore.models import line_item_db_models  # noqa: F401
from tradecore.models.db_models import (
    Category as CategoryDB,
    ConversionEdge as EdgeDB,
    PackagingUnit as UnitDB,
    Product as ProductDB,
)
from tradecore.models.invoice import InvoiceCreate, LineItemInput
from tradecore.models.packaging import DEFAULT_UNITS, ProductPackagingProfile


# Test database setup (SQLite in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False
)

TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False
)

COMPANY_ID = 1
OTHER_COMPANY_ID = 2
USER_ID = 7

# 2025-06-11 falls in financial year 2025-2026
FIXED_NOW = datetime(2025, 6, 11, 9, 30, 0)


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test

    Yields:
        Async database session
    """
    # Create tables
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Create session
    async with TestingSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

    # Drop tables after test
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def clock():
    """Deterministic clock for order numbers, PI numbers and due dates"""
    return lambda: FIXED_NOW


@pytest.fixture
async def units(db_session) -> Dict[str, int]:
    """The default packaging units, by name -> id"""
    rows = [UnitDB(**data) for data in DEFAULT_UNITS]
    db_session.add_all(rows)
    await db_session.commit()
    return {row.name: row.id for row in rows}


@pytest.fixture
async def electronics_category(db_session, units) -> int:
    """Category with 12 Pieces = 1 Box and 40 Boxes = 1 Pallet"""
    category = CategoryDB(company_id=COMPANY_ID, name="Electronics", primary_unit="Pieces")
    db_session.add(category)
    await db_session.flush()
    db_session.add_all([
        EdgeDB(category_id=category.id, level=1, from_unit_id=units["Pieces"],
               to_unit_id=units["Box"], quantity=Decimal("12")),
        EdgeDB(category_id=category.id, level=2, from_unit_id=units["Box"],
               to_unit_id=units["Pallet"], quantity=Decimal("40")),
    ])
    await db_session.commit()
    return category.id


@pytest.fixture
def tile_profile_data() -> dict:
    """Stored packagingHierarchyData of a product sold in pieces"""
    return {
        "dynamicFields": {
            "PiecesPerBox": "12",
            "BoxPerPallet": "40",
            "weightPerPiece": "0.5",
            "cbmPerBox": "0.05",
            "grossWeightPerBox": "6.5",
        },
        "unitWeight": "500",
        "unitWeightUnit": "g",
        "weightUnitType": "Pieces",
    }


@pytest.fixture
def tile_profile(tile_profile_data) -> ProductPackagingProfile:
    return ProductPackagingProfile.from_dynamic_fields(tile_profile_data, product_id=1)


@pytest.fixture
async def tile_product(db_session, electronics_category, tile_profile_data) -> int:
    product = ProductDB(
        company_id=COMPANY_ID,
        category_id=electronics_category,
        name="Ceramic Tile",
        packaging_hierarchy_data=tile_profile_data,
    )
    db_session.add(product)
    await db_session.commit()
    return product.id


@pytest.fixture
def invoice_payload(tile_product) -> InvoiceCreate:
    """Two lines: 100 tiles (9 boxes, 50 kg) and a free-text line without a product"""
    return InvoiceCreate(
        party_name="Acme Imports",
        container_type="20 Feet",
        charges={"freight": "150.00", "insurance": "25.50"},
        delivery_term="FOB",
        line_items=[
            LineItemInput(
                product_id=tile_product,
                product_name="Ceramic Tile",
                quantity=Decimal("100"),
                unit="pcs",
                rate=Decimal("2.50"),
            ),
            LineItemInput(
                product_name="Installation kit",
                quantity=Decimal("4"),
                unit="set",
                rate=Decimal("10"),
                total_weight=Decimal("3.2"),
            ),
        ],
    )
