"""Error taxonomy for the computation core

Validation-class errors map to 4xx responses, ``NotFound`` to 404 and
``TransactionFailure`` to 5xx. Every error carries enough context (units,
category, invoice) for the caller to log and display it.
"""

from typing import Any, Dict, Optional


class TradeCoreError(Exception):
    """Base class for all core errors"""

    status_code: int = 400
    error_code: str = "TRADECORE_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
        }


class InvalidConversionEdge(TradeCoreError):
    """Conversion edge with a missing unit or a non-positive quantity"""

    error_code = "INVALID_CONVERSION_EDGE"

    def __init__(self, message: str, level: Optional[int] = None, quantity: Any = None):
        super().__init__(message, {"level": level, "quantity": quantity})
        self.level = level
        self.quantity = quantity


class InvalidQuantity(TradeCoreError):
    """Quantity is negative or not a number"""

    error_code = "INVALID_QUANTITY"

    def __init__(self, quantity: Any):
        super().__init__(
            f"Quantity must be a valid non-negative number. Received: {quantity}",
            {"quantity": quantity},
        )
        self.quantity = quantity


class NoConversionPath(TradeCoreError):
    """Greedy graph walk could not reach the target unit"""

    error_code = "NO_CONVERSION_PATH"

    def __init__(self, from_unit: str, to_unit: str, category_id: Optional[int] = None):
        super().__init__(
            f"Cannot convert from {from_unit} to {to_unit}. No conversion path found.",
            {"from_unit": from_unit, "to_unit": to_unit, "category_id": category_id},
        )
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.category_id = category_id


class MissingPackagingData(TradeCoreError):
    """Product profile lacks a field needed for the requested unit branch"""

    error_code = "MISSING_PACKAGING_DATA"

    def __init__(self, unit: str, missing_field: str, product_id: Optional[int] = None):
        super().__init__(
            f"Packaging data '{missing_field}' is required to compute a breakdown for unit '{unit}'",
            {"unit": unit, "missing_field": missing_field, "product_id": product_id},
        )
        self.unit = unit
        self.missing_field = missing_field
        self.product_id = product_id


class InvalidStatus(TradeCoreError):
    """Requested invoice status is not part of the lifecycle"""

    error_code = "INVALID_STATUS"

    def __init__(self, status: Any, allowed: list):
        super().__init__(
            f"Status '{status}' is not recognized. Allowed statuses: {', '.join(allowed)}",
            {"status": status, "allowed": allowed},
        )


class DuplicateConfirmation(TradeCoreError):
    """Invoice is already confirmed; carries the Order created by the first confirmation"""

    error_code = "DUPLICATE_CONFIRMATION"

    def __init__(self, invoice_id: int, pi_number: Optional[str] = None, existing_order: Any = None):
        order_number = getattr(existing_order, "order_number", None)
        message = f"PI {pi_number or invoice_id} is already confirmed"
        if order_number:
            message += f" with Order {order_number}"
        super().__init__(
            message,
            {"invoice_id": invoice_id, "pi_number": pi_number, "order_number": order_number},
        )
        self.invoice_id = invoice_id
        self.existing_order = existing_order


class RelatedOrdersExist(TradeCoreError):
    """Invoice cannot be deleted while an Order references it"""

    error_code = "RELATED_ORDERS_EXIST"

    def __init__(self, invoice_id: int, order_count: int):
        super().__init__(
            f"Cannot delete PI Invoice. It has {order_count} related order(s). "
            f"Please delete the orders first.",
            {"invoice_id": invoice_id, "order_count": order_count},
        )


class HistoryImmutable(TradeCoreError):
    """History entries are append-only"""

    error_code = "HISTORY_IMMUTABLE"

    def __init__(self, operation: str):
        super().__init__(
            f"Invoice history entries cannot be {operation}",
            {"operation": operation},
        )


class NotFound(TradeCoreError):
    """Entity absent, or owned by another company"""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: Any, company_id: Optional[int] = None):
        super().__init__(
            f"{entity} not found",
            {"entity": entity, "id": identifier, "company_id": company_id},
        )
        self.entity = entity
        self.identifier = identifier


class TransactionFailure(TradeCoreError):
    """Backing-store error mid-operation; every change of the operation was rolled back"""

    status_code = 500
    error_code = "TRANSACTION_FAILURE"

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"{operation} failed and was rolled back",
            {"operation": operation, "cause": str(cause) if cause else None},
        )
        self.operation = operation
        self.cause = cause
