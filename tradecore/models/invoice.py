"""Proforma invoice, payment, order and history data models"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field
from enum import Enum


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states; only pending -> confirmed has side effects"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class ContainerType(str, Enum):
    """Shipping container types with a row in the capacity table"""
    FEET_20 = "20 Feet"
    FEET_40 = "40 Feet"
    FEET_40_HQ = "40 Feet HQ"
    FEET_45_HQ = "45 Feet HQ"
    REEFER_20 = "Reefer 20"
    REEFER_40 = "Reefer 40"
    LCL = "LCL"


class HistoryAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class PackingBreakdown(BaseModel):
    """Derived box/pallet/weight/volume figures for one line item"""
    calculated_boxes: Decimal = Decimal("0")
    calculated_pallets: Decimal = Decimal("0")
    total_weight: Decimal = Decimal("0")
    total_cbm: Decimal = Decimal("0")


class LineItemInput(BaseModel):
    """Line item as submitted on create/update"""
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    quantity: Decimal = Decimal("0")
    unit: Optional[str] = None
    rate: Decimal = Decimal("0")
    # Flat weight typed by the user; only used when no breakdown can be computed
    total_weight: Optional[Decimal] = None


class InvoiceLineItem(BaseModel):
    """Line item with derived figures"""
    id: Optional[int] = None
    line_number: int = 1
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    quantity: Decimal = Decimal("0")
    unit: Optional[str] = None
    rate: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    total_weight: Decimal = Decimal("0")
    packing_breakdown: Optional[PackingBreakdown] = None
    gross_weight_per_box: Optional[Decimal] = None


class InvoiceTotals(BaseModel):
    """Invoice-level aggregates, always recomputed from the line items"""
    subtotal: Decimal = Decimal("0")
    total_weight: Decimal = Decimal("0")
    total_gross_weight: Decimal = Decimal("0")
    total_volume: Decimal = Decimal("0")
    total_boxes: Decimal = Decimal("0")
    total_pallets: Decimal = Decimal("0")
    charges_total: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    required_containers: int = Field(ge=1, default=1)


class Invoice(BaseModel):
    """Proforma invoice"""
    id: Optional[int] = None
    company_id: int
    pi_number: Optional[str] = None
    party_id: Optional[int] = None
    party_name: Optional[str] = None
    status: str = InvoiceStatus.PENDING.value
    container_type: Optional[str] = None
    charges: Dict[str, Any] = Field(default_factory=dict)
    advance_amount: Decimal = Decimal("0")
    delivery_term: Optional[str] = None
    notes: Optional[str] = None

    line_items: List[InvoiceLineItem] = Field(default_factory=list)

    # Totals
    subtotal: Decimal = Decimal("0")
    total_weight: Decimal = Decimal("0")
    total_gross_weight: Decimal = Decimal("0")
    total_volume: Decimal = Decimal("0")
    total_boxes: Decimal = Decimal("0")
    total_pallets: Decimal = Decimal("0")
    charges_total: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    required_containers: int = 1
    number_of_containers: int = Field(ge=1, default=1)

    # Audit
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def apply_totals(self, totals: InvoiceTotals) -> None:
        for key, value in totals.model_dump().items():
            setattr(self, key, value)


class InvoiceCreate(BaseModel):
    """Payload for creating an invoice"""
    party_id: Optional[int] = None
    party_name: Optional[str] = None
    status: str = InvoiceStatus.PENDING.value
    container_type: Optional[str] = None
    charges: Dict[str, Any] = Field(default_factory=dict)
    delivery_term: Optional[str] = None
    notes: Optional[str] = None
    # User override of the computed container count
    number_of_containers: Optional[int] = None
    # Gross weight already computed by the caller; wins over the heuristic
    total_gross_weight: Optional[Decimal] = None
    line_items: List[LineItemInput] = Field(default_factory=list)


class InvoiceUpdate(BaseModel):
    """Partial update; a missing or empty ``line_items`` keeps the existing lines"""
    party_id: Optional[int] = None
    party_name: Optional[str] = None
    container_type: Optional[str] = None
    charges: Optional[Dict[str, Any]] = None
    delivery_term: Optional[str] = None
    notes: Optional[str] = None
    number_of_containers: Optional[int] = None
    total_gross_weight: Optional[Decimal] = None
    line_items: Optional[List[LineItemInput]] = None


class Payment(BaseModel):
    id: Optional[int] = None
    company_id: int
    invoice_id: int
    amount: Decimal
    due_amount: Decimal
    due_date: datetime
    status: str = PaymentStatus.PENDING.value
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class Order(BaseModel):
    id: Optional[int] = None
    company_id: int
    invoice_id: int
    order_number: str
    pi_number: Optional[str] = None
    total_amount: Decimal = Decimal("0")
    payment_amount: Optional[Decimal] = None
    product_qty: Decimal = Decimal("0")
    delivery_terms: Optional[str] = None
    order_status: str = InvoiceStatus.CONFIRMED.value
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class InvoiceHistoryEntry(BaseModel):
    """Immutable audit record"""
    id: Optional[int] = None
    invoice_id: int
    action: HistoryAction
    status_before: Optional[str] = None
    status_after: Optional[str] = None
    changed_fields: List[str] = Field(default_factory=list)
    change_data: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[int] = None


class TransitionResult(BaseModel):
    """Outcome of a status transition, handed to post-commit notifiers"""
    invoice: Invoice
    status_before: str
    status_after: str
    order: Optional[Order] = None
    payment: Optional[Payment] = None
    order_created: bool = False
    payment_created: bool = False
    payment_amount_updated: bool = False
    message: str = ""


class InvoicePage(BaseModel):
    """One page of an invoice listing"""
    invoices: List[Invoice] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10
    total_pages: int = 0
