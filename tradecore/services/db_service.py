"""Async persistence gateway

Every call runs inside the caller's session and only flushes; committing or
rolling back is the caller's decision, so a multi-step operation (confirmation,
invoice update) is atomic as a whole.
"""

from contextlib import asynccontextmanager
from typing import List, Optional, Tuple
from datetime import datetime
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, delete, func, or_, update
import logging

from tradecore.exceptions import TradeCoreError, TransactionFailure
from tradecore.models.db_models import (
    Category as CategoryDB,
    ConversionEdge as EdgeDB,
    Invoice as InvoiceDB,
    Order as OrderDB,
    PackagingUnit as UnitDB,
    Payment as PaymentDB,
    Product as ProductDB,
)
from tradecore.models.line_item_db_models import InvoiceLineItem as LineItemDB
from tradecore.models.db_utils import (
    apply_invoice_to_db,
    db_to_pydantic_category,
    db_to_pydantic_edge,
    db_to_pydantic_invoice,
    db_to_pydantic_order,
    db_to_pydantic_payment,
    db_to_pydantic_unit,
    pydantic_to_db_invoice,
    pydantic_to_db_line_item,
)
from tradecore.models.invoice import (
    HistoryAction,
    Invoice as InvoicePydantic,
    InvoiceHistoryEntry,
    Order as OrderPydantic,
    Payment as PaymentPydantic,
)
from tradecore.models.packaging import (
    Category as CategoryPydantic,
    ConversionEdge as EdgePydantic,
    PackagingUnit as UnitPydantic,
    ProductPackagingProfile,
)
from .history_recorder import HistoryRecorder

logger = logging.getLogger(__name__)


@asynccontextmanager
async def transaction(db: AsyncSession, operation: str):
    """
    Commit the work done in the block, or roll all of it back.

    Core errors propagate unchanged; backing-store errors become ``TransactionFailure``.
    """
    try:
        yield
        await db.commit()
    except TradeCoreError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"{operation} failed: {e}", exc_info=True)
        raise TransactionFailure(operation, e) from e


class DatabaseService:
    """Async gateway between the domain models and the ORM"""

    # ---- Packaging -------------------------------------------------------

    @staticmethod
    async def load_units(db: AsyncSession, active_only: bool = True) -> List[UnitPydantic]:
        query = select(UnitDB)
        if active_only:
            query = query.where(UnitDB.is_active.is_(True))
        result = await db.execute(query.order_by(UnitDB.id))
        return [db_to_pydantic_unit(unit) for unit in result.scalars().all()]

    @staticmethod
    async def create_unit_if_missing(unit: UnitPydantic, db: AsyncSession) -> Optional[UnitPydantic]:
        """Insert a packaging unit unless one with the same name exists; None when skipped"""
        result = await db.execute(select(UnitDB).where(UnitDB.name == unit.name))
        if result.scalar_one_or_none() is not None:
            return None
        unit_db = UnitDB(
            name=unit.name,
            abbreviation=unit.abbreviation,
            description=unit.description,
            is_active=unit.is_active,
        )
        db.add(unit_db)
        await db.flush()
        return db_to_pydantic_unit(unit_db)

    @staticmethod
    async def get_category(
        category_id: int,
        db: AsyncSession,
        company_id: Optional[int] = None,
    ) -> Optional[CategoryPydantic]:
        query = select(CategoryDB).where(CategoryDB.id == category_id)
        if company_id is not None:
            query = query.where(CategoryDB.company_id == company_id)
        result = await db.execute(query)
        category = result.scalar_one_or_none()
        return db_to_pydantic_category(category) if category else None

    @staticmethod
    async def load_conversion_edges(
        category_id: int,
        db: AsyncSession,
        active_only: bool = True,
    ) -> List[EdgePydantic]:
        """Conversion edges of a category, ordered by level"""
        query = select(EdgeDB).where(EdgeDB.category_id == category_id)
        if active_only:
            query = query.where(EdgeDB.is_active.is_(True))
        result = await db.execute(query.order_by(EdgeDB.level, EdgeDB.id))
        return [db_to_pydantic_edge(edge) for edge in result.scalars().all()]

    @staticmethod
    async def replace_conversion_edges(
        category_id: int,
        edges: List[EdgePydantic],
        db: AsyncSession,
        created_by: Optional[int] = None,
    ) -> List[EdgePydantic]:
        await db.execute(delete(EdgeDB).where(EdgeDB.category_id == category_id))
        rows = [
            EdgeDB(
                category_id=category_id,
                level=edge.level,
                from_unit_id=edge.from_unit_id,
                to_unit_id=edge.to_unit_id,
                quantity=edge.quantity,
                is_active=edge.is_active,
                created_by=created_by,
            )
            for edge in edges
        ]
        db.add_all(rows)
        await db.flush()
        return [db_to_pydantic_edge(row) for row in rows]

    @staticmethod
    async def load_product_profile(product_id: int, db: AsyncSession) -> Optional[ProductPackagingProfile]:
        """Typed packaging profile of a product; None when the product or its data is absent"""
        result = await db.execute(select(ProductDB).where(ProductDB.id == product_id))
        product = result.scalar_one_or_none()
        if product is None or not product.packaging_hierarchy_data:
            return None
        return ProductPackagingProfile.from_dynamic_fields(
            product.packaging_hierarchy_data,
            product_id=product.id,
            category_id=product.category_id,
        )

    @staticmethod
    async def save_product_profile(
        product_id: int,
        profile: ProductPackagingProfile,
        db: AsyncSession,
    ) -> Optional[ProductDB]:
        result = await db.execute(select(ProductDB).where(ProductDB.id == product_id))
        product = result.scalar_one_or_none()
        if product is None:
            return None
        product.packaging_hierarchy_data = profile.to_dynamic_fields()
        product.updated_at = datetime.utcnow()
        await db.flush()
        return product

    # ---- Invoices --------------------------------------------------------

    @staticmethod
    async def _get_invoice_row(
        invoice_id: int,
        company_id: Optional[int],
        db: AsyncSession,
        for_update: bool = False,
        refresh: bool = False,
    ) -> Optional[InvoiceDB]:
        query = select(InvoiceDB).where(InvoiceDB.id == invoice_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        if company_id is not None:
            query = query.where(InvoiceDB.company_id == company_id)
        if for_update:
            # Ignored by SQLite; row lock on PostgreSQL/MySQL
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_line_item_rows(invoice_id: int, db: AsyncSession) -> List[LineItemDB]:
        result = await db.execute(
            select(LineItemDB)
            .where(LineItemDB.invoice_id == invoice_id)
            .order_by(LineItemDB.line_number)
        )
        return list(result.scalars().all())

    @staticmethod
    async def load_invoice(
        invoice_id: int,
        company_id: Optional[int],
        db: AsyncSession,
        for_update: bool = False,
        refresh: bool = False,
    ) -> Optional[InvoicePydantic]:
        """Invoice with its line items; None when absent or owned by another company"""
        invoice_db = await DatabaseService._get_invoice_row(invoice_id, company_id, db, for_update, refresh)
        if invoice_db is None:
            return None
        line_items = await DatabaseService._get_line_item_rows(invoice_id, db)
        return db_to_pydantic_invoice(invoice_db, line_items)

    @staticmethod
    async def save_invoice(
        invoice: InvoicePydantic,
        db: AsyncSession,
        replace_line_items: bool = True,
    ) -> InvoicePydantic:
        """
        Insert or update an invoice header with its aggregates.

        With ``replace_line_items`` the stored line items are deleted and the
        invoice's current ones inserted in their place.
        """
        invoice_db = None
        if invoice.id is not None:
            invoice_db = await DatabaseService._get_invoice_row(invoice.id, None, db)

        if invoice_db is not None:
            logger.info(f"Updating invoice: {invoice.id}")
            apply_invoice_to_db(invoice, invoice_db)
        else:
            invoice_db = pydantic_to_db_invoice(invoice)
            db.add(invoice_db)
        await db.flush()

        if replace_line_items:
            await DatabaseService._sync_line_items(invoice_db.id, invoice, db)

        line_items = await DatabaseService._get_line_item_rows(invoice_db.id, db)
        return db_to_pydantic_invoice(invoice_db, line_items)

    @staticmethod
    async def _sync_line_items(invoice_id: int, invoice: InvoicePydantic, db: AsyncSession) -> None:
        """Make the stored line items match ``invoice.line_items``; rows keep their id when the item does"""
        existing = {row.id: row for row in await DatabaseService._get_line_item_rows(invoice_id, db)}
        kept = set()

        for item in invoice.line_items:
            new_row = pydantic_to_db_line_item(item, invoice_id, invoice.company_id)
            row = existing.get(item.id) if item.id is not None else None
            if row is None:
                db.add(new_row)
                continue
            kept.add(row.id)
            for column in LineItemDB.__table__.columns.keys():
                if column != "id":
                    setattr(row, column, getattr(new_row, column))

        for row_id, row in existing.items():
            if row_id not in kept:
                await db.delete(row)

        await db.flush()
        logger.debug(f"Saved {len(invoice.line_items)} line items for invoice {invoice_id}")

    @staticmethod
    async def delete_invoice(invoice_id: int, db: AsyncSession) -> None:
        """Delete an invoice and its line items (history rows are kept)"""
        await db.execute(delete(LineItemDB).where(LineItemDB.invoice_id == invoice_id))
        await db.execute(delete(InvoiceDB).where(InvoiceDB.id == invoice_id))
        await db.flush()

    @staticmethod
    async def list_invoices(
        company_id: int,
        db: AsyncSession,
        status: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[InvoicePydantic], int]:
        """Invoices of a company, newest first, with the unpaginated total count"""
        query = select(InvoiceDB).where(InvoiceDB.company_id == company_id)
        if status:
            query = query.where(InvoiceDB.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                InvoiceDB.pi_number.ilike(pattern),
                InvoiceDB.party_name.ilike(pattern),
            ))

        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar_one()

        result = await db.execute(
            query.order_by(InvoiceDB.created_at.desc(), InvoiceDB.id.desc()).offset(skip).limit(limit)
        )
        invoices = []
        for invoice_db in result.scalars().all():
            line_items = await DatabaseService._get_line_item_rows(invoice_db.id, db)
            invoices.append(db_to_pydantic_invoice(invoice_db, line_items))
        return invoices, total

    @staticmethod
    async def list_confirmed_without_order(company_id: int, db: AsyncSession) -> List[InvoicePydantic]:
        """Confirmed invoices that have no Order yet"""
        has_order = select(OrderDB.id).where(OrderDB.invoice_id == InvoiceDB.id).exists()
        result = await db.execute(
            select(InvoiceDB)
            .where(InvoiceDB.company_id == company_id, InvoiceDB.status == "confirmed", ~has_order)
            .order_by(InvoiceDB.created_at.desc())
        )
        return [db_to_pydantic_invoice(invoice_db) for invoice_db in result.scalars().all()]

    @staticmethod
    async def update_invoice_amounts(
        invoice_id: int,
        total_amount: Decimal,
        db: AsyncSession,
        advance_amount: Optional[Decimal] = None,
        updated_by: Optional[int] = None,
    ) -> None:
        invoice_db = await DatabaseService._get_invoice_row(invoice_id, None, db)
        invoice_db.total_amount = total_amount
        if advance_amount is not None:
            invoice_db.advance_amount = advance_amount
        invoice_db.updated_by = updated_by
        invoice_db.updated_at = datetime.utcnow()
        await db.flush()

    @staticmethod
    async def transition_state(
        invoice_id: int,
        company_id: int,
        expected_status: str,
        new_status: str,
        db: AsyncSession,
        updated_by: Optional[int] = None,
    ) -> bool:
        """
        Atomically move an invoice from ``expected_status`` to ``new_status``.

        A single guarded UPDATE (not SELECT-then-UPDATE): it is the first write
        of the transaction, so on SQLite it takes the write lock and a
        concurrent request waits, then matches no row.

        Returns:
            True if the row was updated, False if it is absent or no longer
            in ``expected_status``
        """
        result = await db.execute(
            update(InvoiceDB)
            .where(
                InvoiceDB.id == invoice_id,
                InvoiceDB.company_id == company_id,
                InvoiceDB.status == expected_status,
            )
            .values(status=new_status, updated_by=updated_by, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(f"Invoice {invoice_id} is no longer {expected_status}; transition to {new_status} skipped")
            return False
        return True

    # ---- Payments / Orders -----------------------------------------------

    @staticmethod
    async def get_payment_for_invoice(invoice_id: int, db: AsyncSession) -> Optional[PaymentPydantic]:
        result = await db.execute(select(PaymentDB).where(PaymentDB.invoice_id == invoice_id))
        payment = result.scalar_one_or_none()
        return db_to_pydantic_payment(payment) if payment else None

    @staticmethod
    async def get_order_for_invoice(invoice_id: int, db: AsyncSession) -> Optional[OrderPydantic]:
        result = await db.execute(select(OrderDB).where(OrderDB.invoice_id == invoice_id))
        order = result.scalar_one_or_none()
        return db_to_pydantic_order(order) if order else None

    @staticmethod
    async def count_orders_for_invoice(invoice_id: int, db: AsyncSession) -> int:
        result = await db.execute(
            select(func.count()).select_from(OrderDB).where(OrderDB.invoice_id == invoice_id)
        )
        return result.scalar_one()

    @staticmethod
    async def create_payment(payment: PaymentPydantic, db: AsyncSession) -> PaymentPydantic:
        payment_db = PaymentDB(
            company_id=payment.company_id,
            invoice_id=payment.invoice_id,
            amount=payment.amount,
            due_amount=payment.due_amount,
            due_date=payment.due_date,
            status=payment.status,
            created_by=payment.created_by,
        )
        db.add(payment_db)
        await db.flush()
        return db_to_pydantic_payment(payment_db)

    @staticmethod
    async def create_order(order: OrderPydantic, db: AsyncSession) -> OrderPydantic:
        order_db = OrderDB(
            company_id=order.company_id,
            invoice_id=order.invoice_id,
            order_number=order.order_number,
            pi_number=order.pi_number,
            total_amount=order.total_amount,
            payment_amount=order.payment_amount,
            product_qty=order.product_qty,
            delivery_terms=order.delivery_terms,
            order_status=order.order_status,
            created_by=order.created_by,
        )
        db.add(order_db)
        await db.flush()
        return db_to_pydantic_order(order_db)

    @staticmethod
    async def update_order_payment_amount(
        order_id: int,
        payment_amount: Decimal,
        db: AsyncSession,
    ) -> OrderPydantic:
        result = await db.execute(select(OrderDB).where(OrderDB.id == order_id))
        order_db = result.scalar_one()
        order_db.payment_amount = payment_amount
        await db.flush()
        return db_to_pydantic_order(order_db)

    # ---- History ---------------------------------------------------------

    @staticmethod
    async def append_history(
        db: AsyncSession,
        invoice_id: int,
        action: HistoryAction,
        **kwargs,
    ) -> InvoiceHistoryEntry:
        return await HistoryRecorder.append(db, invoice_id, action, **kwargs)
