"""Integration tests: pending -> confirmed with exactly-once Payment and Order"""

import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import func, select

from tradecore.exceptions import DuplicateConfirmation, InvalidStatus, NotFound, TransactionFailure
from tradecore.models.db_models import Order as OrderDB, Payment as PaymentDB
from tradecore.models.invoice import HistoryAction
from tradecore.services.confirmation_workflow import ConfirmationWorkflow
from tradecore.services.db_service import DatabaseService
from tradecore.services.invoice_service import InvoiceService

COMPANY_ID = 1
OTHER_COMPANY_ID = 2
USER_ID = 7


async def count_rows(db_session, model, invoice_id) -> int:
    result = await db_session.execute(
        select(func.count()).select_from(model).where(model.invoice_id == invoice_id)
    )
    return result.scalar_one()


@pytest.fixture
async def pending_invoice(db_session, clock, invoice_payload):
    service = InvoiceService(db_session, clock=clock)
    return await service.create_invoice(COMPANY_ID, invoice_payload, user_id=USER_ID)


@pytest.mark.integration
class TestConfirmation:
    """First confirmation of a pending invoice"""

    @pytest.mark.asyncio
    async def test_confirm_creates_payment_and_order(self, db_session, clock, pending_invoice):
        workflow = ConfirmationWorkflow(db_session, clock=clock)

        result = await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed", user_id=USER_ID)

        assert result.status_before == "pending"
        assert result.status_after == "confirmed"
        assert result.invoice.status == "confirmed"

        assert result.payment_created is True
        assert result.payment.due_date == clock() + timedelta(days=30)
        assert result.payment.amount == pending_invoice.total_amount
        assert result.payment.due_amount == pending_invoice.total_amount

        assert result.order_created is True
        assert result.order.order_number == "ORD-20250611-0001"
        assert result.order.pi_number == pending_invoice.pi_number
        assert result.order.product_qty == Decimal("104")
        assert result.order.delivery_terms == "FOB"
        assert result.message == "PI status updated to confirmed and Order ORD-20250611-0001 created automatically"

        stored = await InvoiceService(db_session).get_invoice(pending_invoice.id, COMPANY_ID)
        assert stored.status == "confirmed"

    @pytest.mark.asyncio
    async def test_status_change_is_recorded_once(self, db_session, clock, pending_invoice):
        workflow = ConfirmationWorkflow(db_session, clock=clock)
        await workflow.transition_status(pending_invoice.id, COMPANY_ID, "Confirmed", user_id=USER_ID)

        history = await InvoiceService(db_session).get_history(pending_invoice.id, COMPANY_ID)
        status_changes = [entry for entry in history if entry.action == HistoryAction.STATUS_CHANGE]

        assert len(status_changes) == 1
        assert status_changes[0].status_before == "pending"
        assert status_changes[0].status_after == "confirmed"
        assert status_changes[0].changed_fields == ["status"]
        assert status_changes[0].created_by == USER_ID

    @pytest.mark.asyncio
    async def test_second_order_of_the_day_gets_next_number(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        first = await service.create_invoice(COMPANY_ID, invoice_payload)
        second = await service.create_invoice(COMPANY_ID, invoice_payload)
        workflow = ConfirmationWorkflow(db_session, clock=clock)

        await workflow.transition_status(first.id, COMPANY_ID, "confirmed")
        result = await workflow.transition_status(second.id, COMPANY_ID, "confirmed")

        assert result.order.order_number == "ORD-20250611-0002"


@pytest.mark.integration
class TestDuplicateConfirmation:
    """Re-confirming never creates a second Payment or Order"""

    @pytest.mark.asyncio
    async def test_reconfirm_is_rejected_with_existing_order(self, db_session, clock, pending_invoice):
        workflow = ConfirmationWorkflow(db_session, clock=clock)
        first = await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")

        with pytest.raises(DuplicateConfirmation) as exc_info:
            await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")

        assert exc_info.value.existing_order.order_number == first.order.order_number
        assert exc_info.value.existing_order.id == first.order.id
        assert await count_rows(db_session, PaymentDB, pending_invoice.id) == 1
        assert await count_rows(db_session, OrderDB, pending_invoice.id) == 1

    @pytest.mark.asyncio
    async def test_rejected_duplicate_writes_no_history(self, db_session, clock, pending_invoice):
        workflow = ConfirmationWorkflow(db_session, clock=clock)
        await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")
        before = await InvoiceService(db_session).get_history(pending_invoice.id, COMPANY_ID)

        with pytest.raises(DuplicateConfirmation):
            await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")

        after = await InvoiceService(db_session).get_history(pending_invoice.id, COMPANY_ID)
        assert len(after) == len(before)

    @pytest.mark.asyncio
    async def test_reconfirm_after_reopen_keeps_single_rows(self, db_session, clock, pending_invoice):
        """confirmed -> pending -> confirmed reuses the Payment and the Order"""
        workflow = ConfirmationWorkflow(db_session, clock=clock)
        first = await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")
        await workflow.transition_status(pending_invoice.id, COMPANY_ID, "pending")

        again = await workflow.transition_status(
            pending_invoice.id, COMPANY_ID, "confirmed", payment_amount=Decimal("100.00")
        )

        assert again.order_created is False
        assert again.payment_created is False
        assert again.payment_amount_updated is True
        assert again.order.id == first.order.id
        assert again.order.payment_amount == Decimal("100.00")
        assert again.message == "PI status updated to confirmed"
        assert await count_rows(db_session, PaymentDB, pending_invoice.id) == 1
        assert await count_rows(db_session, OrderDB, pending_invoice.id) == 1


@pytest.mark.integration
class TestTransitionErrors:
    """Validation and rollback"""

    @pytest.mark.asyncio
    async def test_unknown_status(self, db_session, pending_invoice):
        with pytest.raises(InvalidStatus):
            await ConfirmationWorkflow(db_session).transition_status(pending_invoice.id, COMPANY_ID, "shipped")

    @pytest.mark.asyncio
    async def test_unknown_status_is_reported_before_missing_invoice(self, db_session):
        with pytest.raises(InvalidStatus):
            await ConfirmationWorkflow(db_session).transition_status(9999, COMPANY_ID, "shipped")

    @pytest.mark.asyncio
    async def test_missing_invoice(self, db_session):
        with pytest.raises(NotFound):
            await ConfirmationWorkflow(db_session).transition_status(9999, COMPANY_ID, "confirmed")

    @pytest.mark.asyncio
    async def test_other_company_cannot_confirm(self, db_session, pending_invoice):
        with pytest.raises(NotFound):
            await ConfirmationWorkflow(db_session).transition_status(
                pending_invoice.id, OTHER_COMPANY_ID, "confirmed"
            )
        assert await count_rows(db_session, OrderDB, pending_invoice.id) == 0

    @pytest.mark.asyncio
    async def test_store_failure_rolls_back_everything(self, db_session, clock, pending_invoice, monkeypatch):
        """A unique-constraint violation mid-confirmation leaves the invoice pending"""
        workflow = ConfirmationWorkflow(db_session, clock=clock)
        await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")
        await workflow.transition_status(pending_invoice.id, COMPANY_ID, "pending")
        history_before = await InvoiceService(db_session).get_history(pending_invoice.id, COMPANY_ID)

        async def payment_check_misses(invoice_id, db):
            return None

        monkeypatch.setattr(DatabaseService, "get_payment_for_invoice", staticmethod(payment_check_misses))

        with pytest.raises(TransactionFailure):
            await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")

        monkeypatch.undo()
        stored = await InvoiceService(db_session).get_invoice(pending_invoice.id, COMPANY_ID)
        history_after = await InvoiceService(db_session).get_history(pending_invoice.id, COMPANY_ID)

        assert stored.status == "pending"
        assert len(history_after) == len(history_before)
        assert await count_rows(db_session, PaymentDB, pending_invoice.id) == 1


@pytest.mark.integration
class TestNotifiers:
    """Post-commit callbacks"""

    @pytest.mark.asyncio
    async def test_notifiers_receive_committed_result(self, db_session, clock, pending_invoice):
        received = []

        async def render_pdf(result):
            received.append(("pdf", result.order.order_number))

        def push_socket(result):
            received.append(("socket", result.status_after))

        workflow = ConfirmationWorkflow(db_session, clock=clock, notifiers=[render_pdf])
        workflow.register_notifier(push_socket)

        await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")

        assert received == [("pdf", "ORD-20250611-0001"), ("socket", "confirmed")]

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_undo_confirmation(self, db_session, clock, pending_invoice):
        def broken(result):
            raise RuntimeError("mail server down")

        workflow = ConfirmationWorkflow(db_session, clock=clock, notifiers=[broken])

        result = await workflow.transition_status(pending_invoice.id, COMPANY_ID, "confirmed")

        assert result.order_created is True
        stored = await InvoiceService(db_session).get_invoice(pending_invoice.id, COMPANY_ID)
        assert stored.status == "confirmed"

    @pytest.mark.asyncio
    async def test_notifiers_not_called_on_failure(self, db_session, pending_invoice):
        calls = []
        workflow = ConfirmationWorkflow(db_session, notifiers=[calls.append])

        with pytest.raises(NotFound):
            await workflow.transition_status(pending_invoice.id, OTHER_COMPANY_ID, "confirmed")

        assert calls == []
