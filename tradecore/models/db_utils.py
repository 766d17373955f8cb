"""Utilities for converting between Pydantic and SQLAlchemy models"""

from typing import List, Optional
from datetime import datetime
from decimal import Decimal
import json

from .decimal_wire import to_wire
from .invoice import (
    Invoice as InvoicePydantic,
    InvoiceLineItem as LineItemPydantic,
    InvoiceHistoryEntry,
    Order as OrderPydantic,
    PackingBreakdown,
    Payment as PaymentPydantic,
)
from .packaging import (
    Category as CategoryPydantic,
    ConversionEdge as EdgePydantic,
    PackagingUnit as UnitPydantic,
)
from .db_models import (
    Category as CategoryDB,
    ConversionEdge as EdgeDB,
    Invoice as InvoiceDB,
    InvoiceHistory as InvoiceHistoryDB,
    Order as OrderDB,
    PackagingUnit as UnitDB,
    Payment as PaymentDB,
)
from .line_item_db_models import InvoiceLineItem as LineItemDB


# Invoice columns copied one-to-one between the two representations
INVOICE_SCALAR_FIELDS = (
    "company_id", "pi_number", "party_id", "party_name", "status", "container_type",
    "advance_amount", "delivery_term", "notes",
    "subtotal", "total_weight", "total_gross_weight", "total_volume", "total_boxes",
    "total_pallets", "charges_total", "total_amount", "required_containers",
    "number_of_containers", "created_by", "updated_by",
)


def _json(data):
    if isinstance(data, str):
        return json.loads(data)
    return data


def db_to_pydantic_category(category_db: CategoryDB) -> CategoryPydantic:
    return CategoryPydantic(
        id=category_db.id,
        company_id=category_db.company_id,
        name=category_db.name,
        primary_unit=category_db.primary_unit,
        secondary_unit=category_db.secondary_unit,
    )


def db_to_pydantic_unit(unit_db: UnitDB) -> UnitPydantic:
    return UnitPydantic(
        id=unit_db.id,
        name=unit_db.name,
        abbreviation=unit_db.abbreviation,
        description=unit_db.description,
        is_active=bool(unit_db.is_active),
    )


def db_to_pydantic_edge(edge_db: EdgeDB) -> EdgePydantic:
    return EdgePydantic(
        id=edge_db.id,
        category_id=edge_db.category_id,
        level=edge_db.level,
        from_unit_id=edge_db.from_unit_id,
        to_unit_id=edge_db.to_unit_id,
        quantity=edge_db.quantity,
        is_active=bool(edge_db.is_active),
    )


def pydantic_to_db_line_item(item: LineItemPydantic, invoice_id: int, company_id: int) -> LineItemDB:
    """Convert a computed line item to its table row"""
    breakdown = item.packing_breakdown
    return LineItemDB(
        invoice_id=invoice_id,
        company_id=company_id,
        line_number=item.line_number,
        product_id=item.product_id,
        product_name=item.product_name,
        quantity=item.quantity,
        unit=item.unit,
        rate=item.rate,
        total=item.total,
        total_weight=item.total_weight,
        calculated_boxes=breakdown.calculated_boxes if breakdown else None,
        calculated_pallets=breakdown.calculated_pallets if breakdown else None,
        total_cbm=breakdown.total_cbm if breakdown else None,
        breakdown_weight=breakdown.total_weight if breakdown else None,
        gross_weight_per_box=item.gross_weight_per_box,
    )


def db_to_pydantic_line_item(item_db: LineItemDB) -> LineItemPydantic:
    breakdown = None
    if item_db.calculated_boxes is not None:
        breakdown = PackingBreakdown(
            calculated_boxes=item_db.calculated_boxes,
            calculated_pallets=item_db.calculated_pallets or Decimal("0"),
            total_weight=item_db.breakdown_weight or Decimal("0"),
            total_cbm=item_db.total_cbm or Decimal("0"),
        )
    return LineItemPydantic(
        id=item_db.id,
        line_number=item_db.line_number,
        product_id=item_db.product_id,
        product_name=item_db.product_name,
        quantity=item_db.quantity or Decimal("0"),
        unit=item_db.unit,
        rate=item_db.rate or Decimal("0"),
        total=item_db.total or Decimal("0"),
        total_weight=item_db.total_weight or Decimal("0"),
        packing_breakdown=breakdown,
        gross_weight_per_box=item_db.gross_weight_per_box,
    )


def apply_invoice_to_db(invoice: InvoicePydantic, invoice_db: InvoiceDB) -> InvoiceDB:
    """Copy header fields and aggregates onto an ORM row (new or loaded)"""
    for field in INVOICE_SCALAR_FIELDS:
        setattr(invoice_db, field, getattr(invoice, field))
    invoice_db.charges = to_wire(invoice.charges) if invoice.charges else None
    invoice_db.updated_at = datetime.utcnow()
    return invoice_db


def pydantic_to_db_invoice(invoice: InvoicePydantic) -> InvoiceDB:
    """Convert Pydantic Invoice to a new SQLAlchemy row (line items are stored separately)"""
    invoice_db = InvoiceDB(created_at=invoice.created_at or datetime.utcnow())
    if invoice.id is not None:
        invoice_db.id = invoice.id
    return apply_invoice_to_db(invoice, invoice_db)


def db_to_pydantic_invoice(
    invoice_db: InvoiceDB,
    line_items_db: Optional[List[LineItemDB]] = None,
) -> InvoicePydantic:
    """Convert SQLAlchemy Invoice (plus its line item rows) to Pydantic"""
    data = {field: getattr(invoice_db, field) for field in INVOICE_SCALAR_FIELDS}
    for field in ("advance_amount", "subtotal", "total_weight", "total_gross_weight",
                  "total_volume", "total_boxes", "total_pallets", "charges_total", "total_amount"):
        if data[field] is None:
            data[field] = Decimal("0")
    data["required_containers"] = data["required_containers"] or 1
    data["number_of_containers"] = data["number_of_containers"] or 1
    return InvoicePydantic(
        id=invoice_db.id,
        charges=_json(invoice_db.charges) or {},
        line_items=[db_to_pydantic_line_item(item) for item in (line_items_db or [])],
        created_at=invoice_db.created_at,
        updated_at=invoice_db.updated_at,
        **data,
    )


def db_to_pydantic_payment(payment_db: PaymentDB) -> PaymentPydantic:
    return PaymentPydantic(
        id=payment_db.id,
        company_id=payment_db.company_id,
        invoice_id=payment_db.invoice_id,
        amount=payment_db.amount,
        due_amount=payment_db.due_amount,
        due_date=payment_db.due_date,
        status=payment_db.status,
        created_by=payment_db.created_by,
        created_at=payment_db.created_at,
    )


def db_to_pydantic_order(order_db: OrderDB) -> OrderPydantic:
    return OrderPydantic(
        id=order_db.id,
        company_id=order_db.company_id,
        invoice_id=order_db.invoice_id,
        order_number=order_db.order_number,
        pi_number=order_db.pi_number,
        total_amount=order_db.total_amount or Decimal("0"),
        payment_amount=order_db.payment_amount,
        product_qty=order_db.product_qty or Decimal("0"),
        delivery_terms=order_db.delivery_terms,
        order_status=order_db.order_status,
        created_by=order_db.created_by,
        created_at=order_db.created_at,
    )


def db_to_pydantic_history(entry_db: InvoiceHistoryDB) -> InvoiceHistoryEntry:
    return InvoiceHistoryEntry(
        id=entry_db.id,
        invoice_id=entry_db.invoice_id,
        action=entry_db.action,
        status_before=entry_db.status_before,
        status_after=entry_db.status_after,
        changed_fields=_json(entry_db.changed_fields) or [],
        change_data=_json(entry_db.change_data),
        description=entry_db.description,
        created_at=entry_db.created_at,
        created_by=entry_db.created_by,
    )
