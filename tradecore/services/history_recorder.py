"""Append-only invoice audit trail"""

from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradecore.models.db_models import InvoiceHistory as InvoiceHistoryDB
from tradecore.models.db_utils import db_to_pydantic_history
from tradecore.models.decimal_wire import to_wire
from tradecore.models.invoice import HistoryAction, InvoiceHistoryEntry

logger = logging.getLogger(__name__)

LINE_ITEMS_KEY = "line_items"
# Line item fields a user edits; derived figures are not compared
LINE_ITEM_COMPARE_FIELDS = ("product_id", "product_name", "quantity", "unit", "rate")


class HistoryRecorder:
    """Writes and reads ``InvoiceHistoryEntry`` rows inside the caller's transaction"""

    @staticmethod
    async def append(
        session: AsyncSession,
        invoice_id: int,
        action: HistoryAction,
        status_before: Optional[str] = None,
        status_after: Optional[str] = None,
        changed_fields: Optional[List[str]] = None,
        change_data: Optional[Dict[str, Any]] = None,
        created_by: Optional[int] = None,
        description: Optional[str] = None,
    ) -> InvoiceHistoryEntry:
        """
        Append a history entry. The row is flushed, not committed: it becomes
        visible together with the change it records, or not at all.
        """
        entry_db = InvoiceHistoryDB(
            invoice_id=invoice_id,
            action=HistoryAction(action).value,
            status_before=status_before,
            status_after=status_after,
            changed_fields=list(changed_fields or []),
            change_data=to_wire(change_data) if change_data is not None else None,
            description=description,
            created_by=created_by,
        )
        session.add(entry_db)
        await session.flush()
        logger.debug(f"History {entry_db.action} appended for invoice {invoice_id}")
        return db_to_pydantic_history(entry_db)

    @staticmethod
    async def list_for_invoice(session: AsyncSession, invoice_id: int) -> List[InvoiceHistoryEntry]:
        """History of an invoice, newest first (survives deletion of the invoice)"""
        result = await session.execute(
            select(InvoiceHistoryDB)
            .where(InvoiceHistoryDB.invoice_id == invoice_id)
            .order_by(InvoiceHistoryDB.created_at.desc(), InvoiceHistoryDB.id.desc())
        )
        return [db_to_pydantic_history(row) for row in result.scalars().all()]

    @staticmethod
    def get_changed_fields(previous: Dict[str, Any], updated: Dict[str, Any]) -> List[str]:
        """
        Names of the top-level fields whose wire form differs, plus ``products``
        when the line items changed. ``["none"]`` when nothing changed.

        Keys absent from ``updated`` (or set to None there) were not part of the
        update and are skipped.
        """
        changed = []
        for key, value in updated.items():
            if key == LINE_ITEMS_KEY or value is None:
                continue
            if to_wire(previous.get(key)) != to_wire(value):
                changed.append(key)

        new_items = updated.get(LINE_ITEMS_KEY)
        if new_items is not None:
            old_items = previous.get(LINE_ITEMS_KEY) or []
            if len(new_items) != len(old_items) or _line_signature(new_items) != _line_signature(old_items):
                changed.append("products")

        return changed or ["none"]


def _line_signature(items) -> List[Dict[str, Any]]:
    signature = []
    for item in items:
        data = item.model_dump() if hasattr(item, "model_dump") else dict(item)
        signature.append(to_wire({field: data.get(field) for field in LINE_ITEM_COMPARE_FIELDS}))
    return signature
