"""
Invoice status transitions and the confirmation side effects

``pending -> confirmed`` creates, exactly once per invoice, a Payment and an
Order in the same transaction as the status change and its STATUS_CHANGE
history entry. Re-confirming a confirmed invoice is rejected with
``DuplicateConfirmation`` and writes nothing.

The status is written first, by an UPDATE guarded on the status that was read,
so only one of several concurrent confirmations matches the row; the others
see the confirmed invoice and are rejected before writing anything. The
existence checks and the unique constraints on ``payments.invoice_id``,
``orders.invoice_id`` and ``orders.order_number`` reject whatever a concurrent
request slips past them, and the whole transaction is rolled back.

Post-commit notifiers (PDF rendering, sockets, e-mail) receive the final
``TransitionResult`` only after the commit succeeded.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Tuple, Union
import inspect
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tradecore.config import settings
from tradecore.exceptions import (
    DuplicateConfirmation,
    InvalidStatus,
    NotFound,
    TradeCoreError,
    TransactionFailure,
)
from tradecore.models.invoice import (
    HistoryAction,
    Invoice,
    InvoiceStatus,
    Order,
    Payment,
    PaymentStatus,
    TransitionResult,
)
from .db_service import DatabaseService
from .sequence_service import SequenceService

logger = logging.getLogger(__name__)

Notifier = Callable[[TransitionResult], Union[None, Awaitable[None]]]

# Guarded UPDATE attempts before a status change is given up
MAX_CLAIM_ATTEMPTS = 3


def parse_status(value) -> InvoiceStatus:
    """Normalize a requested status; unknown values raise ``InvalidStatus``"""
    if isinstance(value, InvoiceStatus):
        return value
    try:
        return InvoiceStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidStatus(value, [status.value for status in InvoiceStatus])


class ConfirmationWorkflow:
    """Drives invoice status changes inside one session"""

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Callable[[], datetime]] = None,
        notifiers: Optional[List[Notifier]] = None,
    ):
        self.db = db
        self.clock = clock or datetime.utcnow
        self.notifiers: List[Notifier] = list(notifiers or [])

    def register_notifier(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    async def transition_status(
        self,
        invoice_id: int,
        company_id: int,
        new_status,
        user_id: Optional[int] = None,
        payment_amount: Optional[Decimal] = None,
    ) -> TransitionResult:
        """
        Move an invoice to ``new_status``.

        Raises:
            InvalidStatus: ``new_status`` is not a lifecycle state
            NotFound: invoice absent or owned by another company
            DuplicateConfirmation: invoice already confirmed (carries the existing Order)
            TransactionFailure: the backing store failed; nothing was written
        """
        status = parse_status(new_status)

        try:
            invoice, status_before = await self._claim(invoice_id, company_id, status, user_id)

            await DatabaseService.append_history(
                self.db,
                invoice_id,
                HistoryAction.STATUS_CHANGE,
                status_before=status_before,
                status_after=status.value,
                changed_fields=["status"],
                change_data={
                    "previous": {"status": status_before},
                    "updated": {"status": status.value},
                },
                created_by=user_id,
                description=(
                    f"PI Invoice {invoice.pi_number} status changed from {status_before} to {status.value}"
                ),
            )

            existing_order = await DatabaseService.get_order_for_invoice(invoice_id, self.db)
            order = existing_order
            payment = None
            payment_created = False
            order_created = False
            payment_amount_updated = False

            if status == InvoiceStatus.CONFIRMED:
                payment = await DatabaseService.get_payment_for_invoice(invoice_id, self.db)
                if payment is None:
                    payment = await self._create_payment(invoice, user_id)
                    payment_created = True

                if existing_order is None:
                    order = await self._create_order(invoice, user_id, payment_amount)
                    order_created = True

            if existing_order is not None and payment_amount is not None:
                order = await DatabaseService.update_order_payment_amount(
                    existing_order.id, payment_amount, self.db
                )
                payment_amount_updated = True

            await self.db.commit()

        except TradeCoreError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Status change of invoice {invoice_id} to {status.value} failed: {e}", exc_info=True)
            raise TransactionFailure("Invoice status change", e) from e

        result = TransitionResult(
            invoice=invoice,
            status_before=status_before,
            status_after=status.value,
            order=order,
            payment=payment,
            order_created=order_created,
            payment_created=payment_created,
            payment_amount_updated=payment_amount_updated,
            message=self._message(status, order if order_created else None),
        )
        logger.info(f"PI {invoice.pi_number}: {result.message}")

        await self._notify(result)
        return result

    async def _claim(
        self,
        invoice_id: int,
        company_id: int,
        status: InvoiceStatus,
        user_id: Optional[int],
    ) -> Tuple[Invoice, str]:
        """
        Write the new status with a guarded UPDATE before anything else.

        When another request changed the status between the read and the
        UPDATE, the invoice is read again: a confirmation that lost the race
        becomes ``DuplicateConfirmation``, any other transition is retried
        from the new status.
        """
        for _ in range(MAX_CLAIM_ATTEMPTS):
            invoice = await DatabaseService.load_invoice(
                invoice_id, company_id, self.db, for_update=True, refresh=True
            )
            if invoice is None:
                raise NotFound("PI Invoice", invoice_id, company_id)

            status_before = invoice.status
            if status == InvoiceStatus.CONFIRMED and status_before == InvoiceStatus.CONFIRMED.value:
                existing_order = await DatabaseService.get_order_for_invoice(invoice_id, self.db)
                logger.warning(f"Attempt to confirm already confirmed PI {invoice.pi_number}")
                raise DuplicateConfirmation(invoice_id, invoice.pi_number, existing_order)

            claimed = await DatabaseService.transition_state(
                invoice_id, company_id, status_before, status.value, self.db, updated_by=user_id
            )
            if claimed:
                invoice = await DatabaseService.load_invoice(invoice_id, company_id, self.db, refresh=True)
                return invoice, status_before

        logger.error(f"Invoice {invoice_id} status kept changing; transition to {status.value} abandoned")
        raise TransactionFailure("Invoice status change")

    async def _create_payment(self,invoice: Invoice, user_id: Optional[int]) -> Payment:
        return await DatabaseService.create_payment(
            Payment(
                company_id=invoice.company_id,
                invoice_id=invoice.id,
                amount=invoice.total_amount + invoice.advance_amount,
                due_amount=invoice.total_amount,
                due_date=self.clock() + timedelta(days=settings.PAYMENT_DUE_DAYS),
                status=PaymentStatus.PENDING.value,
                created_by=user_id,
            ),
            self.db,
        )

    async def _create_order(
        self,
        invoice: Invoice,
        user_id: Optional[int],
        payment_amount: Optional[Decimal],
    ) -> Order:
        order_number = await SequenceService(self.db, now=self.clock).next_order_number()
        order = await DatabaseService.create_order(
            Order(
                company_id=invoice.company_id,
                invoice_id=invoice.id,
                order_number=order_number,
                pi_number=invoice.pi_number,
                total_amount=invoice.total_amount,
                payment_amount=payment_amount,
                product_qty=sum((item.quantity for item in invoice.line_items), Decimal("0")),
                delivery_terms=invoice.delivery_term or "Standard",
                order_status=InvoiceStatus.CONFIRMED.value,
                created_by=user_id,
            ),
            self.db,
        )
        logger.info(f"Order {order_number} created for PI {invoice.pi_number}")
        return order

    @staticmethod
    def _message(status: InvoiceStatus, created_order: Optional[Order]) -> str:
        message = f"PI status updated to {status.value}"
        if created_order is not None:
            message += f" and Order {created_order.order_number} created automatically"
        return message

    async def _notify(self, result: TransitionResult) -> None:
        """Best-effort delivery; a failing notifier never affects the committed result"""
        for notifier in self.notifiers:
            try:
                outcome = notifier(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(
                    f"Post-commit notifier {getattr(notifier, '__name__', notifier)!r} failed "
                    f"for invoice {result.invoice.id}: {e}",
                    exc_info=True,
                )
