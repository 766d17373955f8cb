"""Aggregation validation utilities

Validates that invoice-level aggregates match what the line items and the
container table imply. Stored totals are never trusted: a mismatch means the
invoice was changed without recomputation (e.g. a direct amount update).
"""

from decimal import Decimal
from typing import Optional
from tradecore.models.invoice import Invoice
from tradecore.services.invoice_aggregator import InvoiceAggregator
import logging

logger = logging.getLogger(__name__)


class AggregationValidator:
    """Validates aggregation consistency between invoice and line items"""

    TOLERANCE = Decimal("0.01")  # Allow 1 cent rounding differences

    @staticmethod
    def _compare(name: str, stored: Decimal, expected: Decimal, expected_label: str) -> tuple[bool, Optional[str]]:
        difference = abs((stored or Decimal("0")) - expected)
        if difference > AggregationValidator.TOLERANCE:
            return False, (
                f"{name} mismatch: invoice.{name}={stored} != "
                f"{expected_label}={expected}, difference={difference}"
            )
        return True, None

    @staticmethod
    def validate_subtotal(invoice: Invoice) -> tuple[bool, Optional[str]]:
        """
        Validate: invoice.subtotal == sum(line_item.total)

        Returns:
            (is_valid, error_message)
        """
        expected = sum((item.total for item in invoice.line_items), Decimal("0"))
        return AggregationValidator._compare("subtotal", invoice.subtotal, expected, "sum(line_item.total)")

    @staticmethod
    def validate_total_weight(invoice: Invoice) -> tuple[bool, Optional[str]]:
        """Validate: invoice.total_weight == sum(line_item.total_weight)"""
        expected = sum((item.total_weight for item in invoice.line_items), Decimal("0"))
        return AggregationValidator._compare(
            "total_weight", invoice.total_weight, expected, "sum(line_item.total_weight)"
        )

    @staticmethod
    def validate_packing_totals(invoice: Invoice) -> tuple[bool, Optional[str]]:
        """Validate boxes, pallets and volume against the sum of the line breakdowns"""
        breakdowns = [item.packing_breakdown for item in invoice.line_items if item.packing_breakdown]
        checks = (
            ("total_boxes", sum((b.calculated_boxes for b in breakdowns), Decimal("0"))),
            ("total_pallets", sum((b.calculated_pallets for b in breakdowns), Decimal("0"))),
            ("total_volume", sum((b.total_cbm for b in breakdowns), Decimal("0"))),
        )
        for name, expected in checks:
            is_valid, error = AggregationValidator._compare(
                name, getattr(invoice, name), expected, "sum(packing_breakdown)"
            )
            if not is_valid:
                return is_valid, error
        return True, None

    @staticmethod
    def validate_total_amount(invoice: Invoice) -> tuple[bool, Optional[str]]:
        """
        Validate: invoice.total_amount == subtotal + charges_total

        Returns:
            (is_valid, error_message)
        """
        calculated_total = (invoice.subtotal or Decimal("0")) + (invoice.charges_total or Decimal("0"))
        return AggregationValidator._compare(
            "total_amount", invoice.total_amount, calculated_total, "calculated (subtotal + charges)"
        )

    @staticmethod
    def validate_containers(invoice: Invoice) -> tuple[bool, Optional[str]]:
        """Validate required_containers against the capacity table and number_of_containers >= 1"""
        if invoice.number_of_containers < 1:
            return False, f"number_of_containers={invoice.number_of_containers} is below 1"

        expected = InvoiceAggregator.required_containers(
            invoice.total_weight, invoice.total_volume, invoice.container_type
        )
        if invoice.required_containers != expected:
            return False, (
                f"required_containers mismatch: invoice.required_containers={invoice.required_containers} != "
                f"{expected} for {invoice.container_type or 'no container type'}"
            )
        return True, None

    @staticmethod
    def validate_all(invoice: Invoice) -> dict[str, tuple[bool, Optional[str]]]:
        """
        Run all aggregation validations.

        Returns:
            Dictionary mapping validation name to (is_valid, error_message)
        """
        results = {}

        results["subtotal"] = AggregationValidator.validate_subtotal(invoice)
        results["total_weight"] = AggregationValidator.validate_total_weight(invoice)
        results["packing_totals"] = AggregationValidator.validate_packing_totals(invoice)
        results["total_amount"] = AggregationValidator.validate_total_amount(invoice)
        results["containers"] = AggregationValidator.validate_containers(invoice)

        return results

    @staticmethod
    def get_validation_summary(invoice: Invoice) -> dict:
        """
        Get a summary of aggregation validation results.

        Returns:
            Dictionary with validation summary including:
            - all_valid: bool
            - validations: dict of validation results
            - errors: list of error messages
        """
        results = AggregationValidator.validate_all(invoice)

        all_valid = all(is_valid for is_valid, _ in results.values())
        errors = [error for is_valid, error in results.values() if not is_valid and error]
        if errors:
            logger.warning(f"Invoice {invoice.pi_number or invoice.id}: {len(errors)} aggregation mismatch(es)")

        return {
            "all_valid": all_valid,
            "validations": results,
            "errors": errors,
            "total_validations": len(results),
            "passed_validations": sum(1 for is_valid, _ in results.values() if is_valid),
            "failed_validations": len(errors)
        }
