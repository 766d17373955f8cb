"""Proforma invoice lifecycle: create, update, delete and line item edits

Every mutation recomputes the line items it touches and the invoice totals
from the authoritative line items, and appends a history entry in the same
transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional
import logging
import math

from sqlalchemy.ext.asyncio import AsyncSession

from tradecore.exceptions import InvalidQuantity, MissingPackagingData, NotFound, RelatedOrdersExist
from tradecore.models.decimal_wire import wire_to_decimal
from tradecore.models.invoice import (
    HistoryAction,
    Invoice,
    InvoiceCreate,
    InvoiceHistoryEntry,
    InvoiceLineItem,
    InvoicePage,
    InvoiceUpdate,
    LineItemInput,
)
from tradecore.models.packaging import ProductPackagingProfile
from .confirmation_workflow import parse_status
from .db_service import DatabaseService, transaction
from .history_recorder import HistoryRecorder
from .invoice_aggregator import InvoiceAggregator
from .packing_calculator import PackingCalculator
from .sequence_service import SequenceService
from .unit_graph import round_half_up

logger = logging.getLogger(__name__)

INVOICE_ENTITY = "PI Invoice"
LINE_ITEM_ENTITY = "PI Product"


def compute_line_item(
    item: LineItemInput,
    line_number: int,
    profile: Optional[ProductPackagingProfile] = None,
    line_item_id: Optional[int] = None,
) -> InvoiceLineItem:
    """
    Derive total, packing breakdown and weight for one line.

    Missing packaging data is not fatal: the line is kept without a breakdown
    and falls back to the user-typed weight, else one kg per unit.
    """
    quantity = wire_to_decimal(item.quantity) or Decimal("0")
    if quantity < 0:
        raise InvalidQuantity(item.quantity)
    rate = wire_to_decimal(item.rate) or Decimal("0")

    breakdown = None
    if profile is not None:
        try:
            breakdown = PackingCalculator(profile).calculate(quantity, item.unit)
        except MissingPackagingData as e:
            logger.warning(f"Line {line_number}: no packing breakdown ({e.message})")

    if breakdown is not None and breakdown.total_weight:
        total_weight = breakdown.total_weight
    elif item.total_weight:
        total_weight = item.total_weight
    else:
        total_weight = quantity

    return InvoiceLineItem(
        id=line_item_id,
        line_number=line_number,
        product_id=item.product_id,
        product_name=item.product_name,
        quantity=quantity,
        unit=item.unit,
        rate=rate,
        total=round_half_up(quantity * rate, 2),
        total_weight=total_weight,
        packing_breakdown=breakdown,
        gross_weight_per_box=profile.gross_weight_per_box if profile else None,
    )


def recompute_invoice_totals(
    invoice: Invoice,
    gross_weight_override: Optional[Decimal] = None,
    containers_override: Optional[int] = None,
) -> Invoice:
    """Recompute every aggregate of ``invoice`` from its line items (in place)"""
    totals = InvoiceAggregator.compute_totals(
        invoice.line_items,
        invoice.charges,
        invoice.container_type,
        gross_weight_override,
    )
    invoice.apply_totals(totals)
    invoice.number_of_containers = InvoiceAggregator.number_of_containers(
        totals.required_containers, containers_override
    )
    return invoice


class InvoiceService:
    """Invoice operations inside one session"""

    def __init__(self, db: AsyncSession, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or datetime.utcnow

    async def _compute_lines(
        self,
        items: List[LineItemInput],
        first_line_number: int = 1,
    ) -> List[InvoiceLineItem]:
        profiles: Dict[int, Optional[ProductPackagingProfile]] = {}
        lines = []
        for offset, item in enumerate(items):
            profile = None
            if item.product_id:
                if item.product_id not in profiles:
                    profiles[item.product_id] = await DatabaseService.load_product_profile(item.product_id, self.db)
                profile = profiles[item.product_id]
            lines.append(compute_line_item(item, first_line_number + offset, profile))
        return lines

    async def _load(self, invoice_id: int, company_id: int, for_update: bool = False) -> Invoice:
        invoice = await DatabaseService.load_invoice(invoice_id, company_id, self.db, for_update=for_update)
        if invoice is None:
            raise NotFound(INVOICE_ENTITY, invoice_id, company_id)
        return invoice

    async def create_invoice(self, company_id: int, data: InvoiceCreate, user_id: Optional[int] = None) -> Invoice:
        """Create a pending invoice with computed line items and a CREATE history entry"""
        status = parse_status(data.status)

        async with transaction(self.db, "Invoice creation"):
            pi_number = await SequenceService(self.db, now=self.clock).next_pi_number()
            invoice = Invoice(
                company_id=company_id,
                pi_number=pi_number,
                party_id=data.party_id,
                party_name=data.party_name,
                status=status.value,
                container_type=data.container_type,
                charges=data.charges,
                delivery_term=data.delivery_term,
                notes=data.notes,
                line_items=await self._compute_lines(data.line_items),
                created_by=user_id,
                updated_by=user_id,
            )
            recompute_invoice_totals(invoice, data.total_gross_weight, data.number_of_containers)
            invoice = await DatabaseService.save_invoice(invoice, self.db)

            await HistoryRecorder.append(
                self.db,
                invoice.id,
                HistoryAction.CREATE,
                status_before="New",
                status_after=invoice.status,
                changed_fields=["all"],
                change_data={**data.model_dump(exclude={"line_items"}), "products": invoice.line_items},
                created_by=user_id,
                description=f"PI Invoice {pi_number} was created",
            )

        logger.info(f"Created PI {invoice.pi_number} with {len(invoice.line_items)} line items")
        return invoice

    async def update_invoice(
        self,
        invoice_id: int,
        company_id: int,
        data: InvoiceUpdate,
        user_id: Optional[int] = None,
    ) -> Invoice:
        """
        Update header fields and, when a non-empty ``line_items`` list is given,
        replace the line items. Totals are recomputed either way.
        """
        async with transaction(self.db, "Invoice update"):
            existing = await self._load(invoice_id, company_id, for_update=True)
            previous = existing.model_dump()

            updates = data.model_dump(exclude_unset=True, exclude={"line_items", "number_of_containers",
                                                                   "total_gross_weight"})
            invoice = existing.model_copy(update={k: v for k, v in updates.items() if v is not None})
            replace_lines = bool(data.line_items)
            if replace_lines:
                invoice.line_items = await self._compute_lines(data.line_items)

            recompute_invoice_totals(invoice, data.total_gross_weight, data.number_of_containers)
            invoice.updated_by = user_id

            updated = {**updates, "line_items": invoice.line_items if replace_lines else None}
            changed_fields = HistoryRecorder.get_changed_fields(previous, updated)

            invoice = await DatabaseService.save_invoice(invoice, self.db, replace_line_items=replace_lines)
            await HistoryRecorder.append(
                self.db,
                invoice_id,
                HistoryAction.UPDATE,
                status_before=existing.status,
                status_after=invoice.status,
                changed_fields=changed_fields,
                change_data={"previous": previous, "updated": invoice.model_dump()},
                created_by=user_id,
                description=f"PI Invoice {existing.pi_number} was updated",
            )

        return invoice

    async def delete_invoice(self, invoice_id: int, company_id: int, user_id: Optional[int] = None) -> None:
        """Delete an invoice without orders; its history is kept"""
        async with transaction(self.db, "Invoice deletion"):
            invoice = await self._load(invoice_id, company_id, for_update=True)
            order_count = await DatabaseService.count_orders_for_invoice(invoice_id, self.db)
            if order_count > 0:
                raise RelatedOrdersExist(invoice_id, order_count)

            await HistoryRecorder.append(
                self.db,
                invoice_id,
                HistoryAction.DELETE,
                status_before=invoice.status or "Unknown",
                status_after="Deleted",
                changed_fields=["all"],
                change_data=invoice.model_dump(),
                created_by=user_id,
                description=f"PI Invoice {invoice.pi_number} was deleted",
            )
            await DatabaseService.delete_invoice(invoice_id, self.db)

        logger.info(f"Deleted PI {invoice.pi_number}")

    async def _save_line_change(
        self,
        previous: Invoice,
        invoice: Invoice,
        user_id: Optional[int],
        description: str,
    ) -> Invoice:
        # A container count that differs from the computed one was set by the user and is kept;
        # gross weight is always re-derived from the lines
        kept_containers = None
        if previous.number_of_containers != previous.required_containers:
            kept_containers = previous.number_of_containers
        recompute_invoice_totals(invoice, containers_override=kept_containers)
        invoice.updated_by = user_id
        saved = await DatabaseService.save_invoice(invoice, self.db)
        await HistoryRecorder.append(
            self.db,
            invoice.id,
            HistoryAction.UPDATE,
            status_before=previous.status,
            status_after=saved.status,
            changed_fields=["products"],
            change_data={"previous": previous.model_dump(), "updated": saved.model_dump()},
            created_by=user_id,
            description=description,
        )
        return saved

    async def add_line_item(
        self,
        invoice_id: int,
        company_id: int,
        item: LineItemInput,
        user_id: Optional[int] = None,
    ) -> InvoiceLineItem:
        """Append a line item after the highest line number"""
        async with transaction(self.db, "Line item creation"):
            previous = await self._load(invoice_id, company_id, for_update=True)
            invoice = previous.model_copy(deep=True)
            next_line = max((line.line_number for line in invoice.line_items), default=0) + 1
            invoice.line_items.extend(await self._compute_lines([item], first_line_number=next_line))

            saved = await self._save_line_change(
                previous, invoice, user_id, f"Line {next_line} added to PI Invoice {previous.pi_number}"
            )

        return next(line for line in saved.line_items if line.line_number == next_line)

    async def update_line_item(
        self,
        invoice_id: int,
        company_id: int,
        line_item_id: int,
        item: LineItemInput,
        user_id: Optional[int] = None,
    ) -> InvoiceLineItem:
        """Replace the user input of one line item and recompute it"""
        async with transaction(self.db, "Line item update"):
            previous = await self._load(invoice_id, company_id, for_update=True)
            invoice = previous.model_copy(deep=True)
            index = next((i for i, line in enumerate(invoice.line_items) if line.id == line_item_id), None)
            if index is None:
                raise NotFound(LINE_ITEM_ENTITY, line_item_id, company_id)

            line_number = invoice.line_items[index].line_number
            profile = None
            if item.product_id:
                profile = await DatabaseService.load_product_profile(item.product_id, self.db)
            invoice.line_items[index] = compute_line_item(item, line_number, profile, line_item_id=line_item_id)

            saved = await self._save_line_change(
                previous, invoice, user_id, f"Line {line_number} of PI Invoice {previous.pi_number} was updated"
            )

        return next(line for line in saved.line_items if line.id == line_item_id)

    async def remove_line_item(
        self,
        invoice_id: int,
        company_id: int,
        line_item_id: int,
        user_id: Optional[int] = None,
    ) -> Invoice:
        async with transaction(self.db, "Line item removal"):
            previous = await self._load(invoice_id, company_id, for_update=True)
            invoice = previous.model_copy(deep=True)
            remaining = [line for line in invoice.line_items if line.id != line_item_id]
            if len(remaining) == len(invoice.line_items):
                raise NotFound(LINE_ITEM_ENTITY, line_item_id, company_id)
            invoice.line_items = remaining

            saved = await self._save_line_change(
                previous, invoice, user_id, f"Line item removed from PI Invoice {previous.pi_number}"
            )

        return saved

    async def get_invoice(self, invoice_id: int, company_id: int) -> Invoice:
        return await self._load(invoice_id, company_id)

    async def list_invoices(
        self,
        company_id: int,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> InvoicePage:
        if status:
            status = parse_status(status).value
        page = max(page, 1)
        invoices, total = await DatabaseService.list_invoices(
            company_id, self.db, status=status, search=search, skip=(page - 1) * limit, limit=limit
        )
        return InvoicePage(
            invoices=invoices,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if limit else 0,
        )

    async def list_confirmed_without_order(self, company_id: int) -> List[Invoice]:
        """Confirmed invoices still waiting for an Order"""
        return await DatabaseService.list_confirmed_without_order(company_id, self.db)

    async def get_history(self, invoice_id: int, company_id: int) -> List[InvoiceHistoryEntry]:
        """History of an invoice of this company, newest first"""
        await self._load(invoice_id, company_id)
        return await HistoryRecorder.list_for_invoice(self.db, invoice_id)

    async def update_amount_direct(
        self,
        invoice_id: int,
        company_id: int,
        total_amount,
        user_id: Optional[int] = None,
        advance_amount=None,
    ) -> Invoice:
        """
        Overwrite ``total_amount`` (and ``advance_amount`` when given) without
        recomputing. Used for negotiated amounts; the next recomputation of the
        invoice restores the derived total.
        """
        amount = wire_to_decimal(total_amount)
        if amount is None or amount < 0:
            raise InvalidQuantity(total_amount)
        advance = wire_to_decimal(advance_amount)

        async with transaction(self.db, "Invoice amount update"):
            await self._load(invoice_id, company_id, for_update=True)
            await DatabaseService.update_invoice_amounts(
                invoice_id, amount, self.db, advance_amount=advance, updated_by=user_id
            )
            invoice = await self._load(invoice_id, company_id)

        return invoice
