"""Integration tests for the invoice lifecycle and total recomputation"""

import pytest
from decimal import Decimal

from tradecore.exceptions import InvalidQuantity, InvalidStatus, NotFound, RelatedOrdersExist
from tradecore.models.invoice import HistoryAction, InvoiceCreate, InvoiceUpdate, LineItemInput
from tradecore.services.confirmation_workflow import ConfirmationWorkflow
from tradecore.services.history_recorder import HistoryRecorder
from tradecore.services.invoice_service import InvoiceService, compute_line_item
from tradecore.validation.aggregation_validator import AggregationValidator

COMPANY_ID = 1
OTHER_COMPANY_ID = 2
USER_ID = 7


@pytest.mark.unit
class TestComputeLineItem:
    """Single line derivation"""

    def test_line_with_profile(self, tile_profile):
        item = LineItemInput(product_id=1, quantity=Decimal("100"), unit="pcs", rate=Decimal("2.505"))

        line = compute_line_item(item, 1, tile_profile)

        assert line.total == Decimal("250.50")
        assert line.total_weight == Decimal("50.00")
        assert line.packing_breakdown.calculated_boxes == Decimal("9")
        assert line.gross_weight_per_box == Decimal("6.5")

    def test_missing_packaging_data_keeps_line(self, tile_profile):
        """No sqm figure on the product: no breakdown, typed weight is used"""
        item = LineItemInput(product_id=1, quantity=Decimal("10"), unit="sqm", rate=Decimal("3"),
                             total_weight=Decimal("12.5"))

        line = compute_line_item(item, 1, tile_profile)

        assert line.packing_breakdown is None
        assert line.total_weight == Decimal("12.5")
        assert line.total == Decimal("30.00")

    def test_weight_falls_back_to_quantity(self):
        line = compute_line_item(LineItemInput(quantity=Decimal("7"), unit="set", rate=Decimal("1")), 1)
        assert line.total_weight == Decimal("7")

    def test_negative_quantity(self):
        with pytest.raises(InvalidQuantity):
            compute_line_item(LineItemInput(quantity=Decimal("-1"), rate=Decimal("1")), 1)


@pytest.mark.integration
class TestCreateInvoice:
    """Invoice creation"""

    @pytest.mark.asyncio
    async def test_create_computes_lines_and_totals(self, db_session, clock, invoice_payload):
        invoice = await InvoiceService(db_session, clock=clock).create_invoice(
            COMPANY_ID, invoice_payload, user_id=USER_ID
        )

        assert invoice.id is not None
        assert invoice.pi_number == "VGR-001-25-26"
        assert invoice.status == "pending"
        assert [line.line_number for line in invoice.line_items] == [1, 2]

        tiles, kit = invoice.line_items
        assert tiles.packing_breakdown.calculated_boxes == Decimal("9")
        assert tiles.total_weight == Decimal("50")
        assert kit.packing_breakdown is None
        assert kit.total_weight == Decimal("3.2")

        assert invoice.subtotal == Decimal("290")
        assert invoice.total_weight == Decimal("53.2")
        assert invoice.total_volume == Decimal("0.45")
        assert invoice.total_boxes == Decimal("9")
        assert invoice.charges_total == Decimal("175.5")
        assert invoice.total_amount == Decimal("465.5")
        assert invoice.total_gross_weight == Decimal("0.325")
        assert invoice.required_containers == 1
        assert invoice.number_of_containers == 1

    @pytest.mark.asyncio
    async def test_stored_invoice_is_consistent(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        created = await service.create_invoice(COMPANY_ID, invoice_payload)

        stored = await service.get_invoice(created.id, COMPANY_ID)

        assert stored.total_amount == created.total_amount
        assert stored.line_items[0].packing_breakdown.total_cbm == Decimal("0.45")
        assert AggregationValidator.get_validation_summary(stored)["all_valid"] is True

    @pytest.mark.asyncio
    async def test_create_records_history(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload, user_id=USER_ID)

        history = await service.get_history(invoice.id, COMPANY_ID)

        assert len(history) == 1
        assert history[0].action == HistoryAction.CREATE
        assert history[0].status_before == "New"
        assert history[0].status_after == "pending"
        assert history[0].changed_fields == ["all"]
        assert history[0].change_data["party_name"] == "Acme Imports"

    @pytest.mark.asyncio
    async def test_container_override(self, db_session, clock, invoice_payload):
        payload = invoice_payload.model_copy(update={"number_of_containers": 3})

        invoice = await InvoiceService(db_session, clock=clock).create_invoice(COMPANY_ID, payload)

        assert invoice.required_containers == 1
        assert invoice.number_of_containers == 3

    @pytest.mark.asyncio
    async def test_invalid_status(self, db_session, clock):
        with pytest.raises(InvalidStatus):
            await InvoiceService(db_session, clock=clock).create_invoice(
                COMPANY_ID, InvoiceCreate(status="draft")
            )

    @pytest.mark.asyncio
    async def test_pi_numbers_increment(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        await service.create_invoice(COMPANY_ID, invoice_payload)
        second = await service.create_invoice(COMPANY_ID, invoice_payload)

        assert second.pi_number == "VGR-002-25-26"


@pytest.mark.integration
class TestUpdateInvoice:
    """Header and line replacement"""

    @pytest.mark.asyncio
    async def test_header_update_keeps_lines(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)
        line_ids = [line.id for line in invoice.line_items]

        updated = await service.update_invoice(
            invoice.id, COMPANY_ID, InvoiceUpdate(party_name="Globex", charges={"freight": "50"}), user_id=USER_ID
        )

        assert updated.party_name == "Globex"
        assert [line.id for line in updated.line_items] == line_ids
        assert updated.charges_total == Decimal("50")
        assert updated.total_amount == Decimal("340")

        history = await service.get_history(invoice.id, COMPANY_ID)
        assert history[0].action == HistoryAction.UPDATE
        assert sorted(history[0].changed_fields) == ["charges", "party_name"]

    @pytest.mark.asyncio
    async def test_empty_line_list_keeps_lines(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        updated = await service.update_invoice(invoice.id, COMPANY_ID, InvoiceUpdate(line_items=[]))

        assert len(updated.line_items) == 2
        assert updated.subtotal == invoice.subtotal

    @pytest.mark.asyncio
    async def test_replacing_lines_recomputes(self, db_session, clock, invoice_payload, tile_product):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        updated = await service.update_invoice(
            invoice.id,
            COMPANY_ID,
            InvoiceUpdate(line_items=[
                LineItemInput(product_id=tile_product, quantity=Decimal("480"), unit="pcs", rate=Decimal("1")),
            ]),
        )

        assert len(updated.line_items) == 1
        assert updated.subtotal == Decimal("480")
        assert updated.total_boxes == Decimal("40")
        assert updated.total_pallets == Decimal("1")
        assert updated.total_weight == Decimal("240")

        history = await service.get_history(invoice.id, COMPANY_ID)
        assert "products" in history[0].changed_fields

    @pytest.mark.asyncio
    async def test_container_type_change_resizes(self, db_session, clock):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, InvoiceCreate(
            container_type="LCL",
            line_items=[LineItemInput(product_name="Steel", quantity=Decimal("45000"), unit="kg",
                                      rate=Decimal("1"), total_weight=Decimal("45000"))],
        ))
        assert invoice.required_containers == 1

        updated = await service.update_invoice(invoice.id, COMPANY_ID, InvoiceUpdate(container_type="20 Feet"))

        assert updated.required_containers == 3
        assert updated.number_of_containers == 3

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, db_session):
        with pytest.raises(NotFound):
            await InvoiceService(db_session).update_invoice(42, COMPANY_ID, InvoiceUpdate(notes="x"))


@pytest.mark.integration
class TestLineItems:
    """Single line edits"""

    @pytest.mark.asyncio
    async def test_add_line_item(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        line = await service.add_line_item(
            invoice.id, COMPANY_ID, LineItemInput(product_name="Grout", quantity=Decimal("2"), rate=Decimal("5"))
        )

        assert line.line_number == 3
        assert line.id is not None
        stored = await service.get_invoice(invoice.id, COMPANY_ID)
        assert stored.subtotal == Decimal("300")
        assert AggregationValidator.get_validation_summary(stored)["all_valid"] is True

    @pytest.mark.asyncio
    async def test_line_edit_keeps_container_override(self, db_session, clock, invoice_payload):
        payload = invoice_payload.model_copy(
            update={"number_of_containers": 3, "total_gross_weight": Decimal("0.9")}
        )
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, payload)
        assert invoice.total_gross_weight == Decimal("0.9")

        await service.add_line_item(
            invoice.id, COMPANY_ID, LineItemInput(product_name="Grout", quantity=Decimal("2"), rate=Decimal("5"))
        )

        stored = await service.get_invoice(invoice.id, COMPANY_ID)
        assert stored.required_containers == 1
        assert stored.number_of_containers == 3
        # Gross weight is re-derived from the product lines
        assert stored.total_gross_weight == Decimal("0.325")

    @pytest.mark.asyncio
    async def test_update_line_item_keeps_id(self, db_session, clock, invoice_payload, tile_product):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)
        tiles = invoice.line_items[0]

        line = await service.update_line_item(
            invoice.id,
            COMPANY_ID,
            tiles.id,
            LineItemInput(product_id=tile_product, quantity=Decimal("24"), unit="pcs", rate=Decimal("2.50")),
            user_id=USER_ID,
        )

        assert line.id == tiles.id
        assert line.line_number == 1
        assert line.packing_breakdown.calculated_boxes == Decimal("2")
        stored = await service.get_invoice(invoice.id, COMPANY_ID)
        assert stored.subtotal == Decimal("100")
        assert stored.total_boxes == Decimal("2")

        history = await service.get_history(invoice.id, COMPANY_ID)
        assert history[0].changed_fields == ["products"]
        assert history[0].created_by == USER_ID

    @pytest.mark.asyncio
    async def test_update_unknown_line_item(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        with pytest.raises(NotFound) as exc_info:
            await service.update_line_item(invoice.id, COMPANY_ID, 9999, LineItemInput(quantity=Decimal("1")))

        assert exc_info.value.entity == "PI Product"

    @pytest.mark.asyncio
    async def test_remove_line_item(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        updated = await service.remove_line_item(invoice.id, COMPANY_ID, invoice.line_items[1].id)

        assert len(updated.line_items) == 1
        assert updated.subtotal == Decimal("250")
        assert updated.total_weight == Decimal("50")


@pytest.mark.integration
class TestDeleteAndQueries:
    """Deletion, listing and direct amount updates"""

    @pytest.mark.asyncio
    async def test_delete_keeps_history(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        await service.delete_invoice(invoice.id, COMPANY_ID, user_id=USER_ID)

        with pytest.raises(NotFound):
            await service.get_invoice(invoice.id, COMPANY_ID)

        history = await HistoryRecorder.list_for_invoice(db_session, invoice.id)
        assert [entry.action for entry in history] == [HistoryAction.DELETE, HistoryAction.CREATE]
        assert history[0].status_after == "Deleted"

    @pytest.mark.asyncio
    async def test_delete_refused_with_order(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)
        await ConfirmationWorkflow(db_session, clock=clock).transition_status(invoice.id, COMPANY_ID, "confirmed")

        with pytest.raises(RelatedOrdersExist):
            await service.delete_invoice(invoice.id, COMPANY_ID)

        assert (await service.get_invoice(invoice.id, COMPANY_ID)).status == "confirmed"

    @pytest.mark.asyncio
    async def test_other_company_sees_nothing(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        with pytest.raises(NotFound):
            await service.get_invoice(invoice.id, OTHER_COMPANY_ID)
        with pytest.raises(NotFound):
            await service.get_history(invoice.id, OTHER_COMPANY_ID)
        page = await service.list_invoices(OTHER_COMPANY_ID)
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_list_invoices(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        for _ in range(3):
            await service.create_invoice(COMPANY_ID, invoice_payload)
        await service.create_invoice(COMPANY_ID, invoice_payload.model_copy(update={"party_name": "Initech"}))

        page = await service.list_invoices(COMPANY_ID, page=2, limit=3)
        assert page.total == 4
        assert page.total_pages == 2
        assert len(page.invoices) == 1

        found = await service.list_invoices(COMPANY_ID, search="initech")
        assert [invoice.party_name for invoice in found.invoices] == ["Initech"]

        by_number = await service.list_invoices(COMPANY_ID, search="VGR-002")
        assert by_number.total == 1

    @pytest.mark.asyncio
    async def test_list_by_status(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        first = await service.create_invoice(COMPANY_ID, invoice_payload)
        await service.create_invoice(COMPANY_ID, invoice_payload)
        await ConfirmationWorkflow(db_session, clock=clock).transition_status(first.id, COMPANY_ID, "confirmed")

        confirmed = await service.list_invoices(COMPANY_ID, status="CONFIRMED")

        assert [invoice.id for invoice in confirmed.invoices] == [first.id]

    @pytest.mark.asyncio
    async def test_confirmed_without_order(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(
            COMPANY_ID, invoice_payload.model_copy(update={"status": "confirmed"})
        )

        waiting = await service.list_confirmed_without_order(COMPANY_ID)
        assert [item.id for item in waiting] == [invoice.id]

    @pytest.mark.asyncio
    async def test_update_amount_direct(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        updated = await service.update_amount_direct(
            invoice.id, COMPANY_ID, "400.00", user_id=USER_ID, advance_amount="50"
        )

        assert updated.total_amount == Decimal("400")
        assert updated.advance_amount == Decimal("50")
        assert updated.subtotal == invoice.subtotal
        summary = AggregationValidator.get_validation_summary(updated)
        assert summary["validations"]["total_amount"][0] is False

    @pytest.mark.asyncio
    async def test_update_amount_direct_rejects_negative(self, db_session, clock, invoice_payload):
        service = InvoiceService(db_session, clock=clock)
        invoice = await service.create_invoice(COMPANY_ID, invoice_payload)

        with pytest.raises(InvalidQuantity):
            await service.update_amount_direct(invoice.id, COMPANY_ID, "-5")
