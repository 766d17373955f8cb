"""SQLAlchemy ORM models"""

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Numeric, Text, JSON, Index,
    ForeignKey, UniqueConstraint, CheckConstraint, event,
)
from datetime import datetime

from tradecore.exceptions import HistoryImmutable
from .database import Base


class Category(Base):
    """Product category; owns one packaging hierarchy"""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    primary_unit = Column(String(50), nullable=True)
    secondary_unit = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class PackagingUnit(Base):
    """Packaging unit reference data"""
    __tablename__ = "packaging_units"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    abbreviation = Column(String(20), nullable=False)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class ConversionEdge(Base):
    """One level of a category's packaging hierarchy: quantity from_unit = 1 to_unit"""
    __tablename__ = "packaging_hierarchy"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    level = Column(Integer, nullable=False)
    from_unit_id = Column(Integer, ForeignKey("packaging_units.id"), nullable=False)
    to_unit_id = Column(Integer, ForeignKey("packaging_units.id"), nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_packaging_hierarchy_quantity_positive"),
        CheckConstraint("level >= 1", name="ck_packaging_hierarchy_level_positive"),
        Index("ix_packaging_hierarchy_category_level", "category_id", "level"),
    )


class Product(Base):
    """Product with its packaging profile stored as dynamic-field JSON"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    name = Column(String(200), nullable=False)
    sku = Column(String(100), nullable=True)
    packaging_hierarchy_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Invoice(Base):
    """Proforma invoice with persisted aggregates"""
    __tablename__ = "pi_invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, nullable=False)
    pi_number = Column(String(50), nullable=False, unique=True)
    party_id = Column(Integer, nullable=True)
    party_name = Column(String, nullable=True)
    status = Column(String(50), nullable=False, default="pending")
    container_type = Column(String(50), nullable=True)
    charges = Column(JSON, nullable=True)
    advance_amount = Column(Numeric(18, 2), nullable=False, default=0)
    delivery_term = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    # Aggregates
    subtotal = Column(Numeric(18, 2), nullable=False, default=0)
    total_weight = Column(Numeric(18, 4), nullable=False, default=0)
    total_gross_weight = Column(Numeric(18, 4), nullable=False, default=0)
    total_volume = Column(Numeric(18, 4), nullable=False, default=0)
    total_boxes = Column(Numeric(18, 4), nullable=False, default=0)
    total_pallets = Column(Numeric(18, 4), nullable=False, default=0)
    charges_total = Column(Numeric(18, 2), nullable=False, default=0)
    total_amount = Column(Numeric(18, 2), nullable=False, default=0)
    required_containers = Column(Integer, nullable=False, default=1)
    number_of_containers = Column(Integer, nullable=False, default=1)

    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("number_of_containers >= 1", name="ck_pi_invoices_containers_positive"),
        Index("ix_pi_invoices_company_status", "company_id", "status"),
    )


class Payment(Base):
    """Payment created on confirmation; at most one per invoice"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, nullable=False)
    invoice_id = Column(Integer, ForeignKey("pi_invoices.id"), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    due_amount = Column(Numeric(18, 2), nullable=False)
    due_date = Column(DateTime, nullable=False)
    status = Column(String(50), nullable=False, default="pending")
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("invoice_id", name="uq_payments_invoice_id"),
    )


class Order(Base):
    """Order created on confirmation; at most one per invoice"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, nullable=False)
    invoice_id = Column(Integer, ForeignKey("pi_invoices.id"), nullable=False)
    order_number = Column(String(50), nullable=False)
    pi_number = Column(String(50), nullable=True)
    total_amount = Column(Numeric(18, 2), nullable=False, default=0)
    payment_amount = Column(Numeric(18, 2), nullable=True)
    product_qty = Column(Numeric(18, 4), nullable=False, default=0)
    delivery_terms = Column(String, nullable=True)
    order_status = Column(String(50), nullable=False, default="confirmed")
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("invoice_id", name="uq_orders_invoice_id"),
        UniqueConstraint("order_number", name="uq_orders_order_number"),
    )


class InvoiceHistory(Base):
    """Append-only audit trail; not foreign-keyed so it outlives deleted invoices"""
    __tablename__ = "pi_invoice_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, nullable=False, index=True)
    action = Column(String(20), nullable=False)
    status_before = Column(String(50), nullable=True)
    status_after = Column(String(50), nullable=True)
    changed_fields = Column(JSON, nullable=True)
    change_data = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class InvoiceYearlyCounter(Base):
    """Per-financial-year counter behind PI numbers"""
    __tablename__ = "pi_yearly_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    financial_year = Column(String(20), nullable=False, unique=True)
    last_number = Column(Integer, nullable=False, default=0)


@event.listens_for(InvoiceHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise HistoryImmutable("updated")


@event.listens_for(InvoiceHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise HistoryImmutable("deleted")
