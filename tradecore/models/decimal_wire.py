"""Decimal wire serialization for JSON columns (dynamic fields, charges, history change data)"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional
import logging

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def decimal_to_wire(d: Optional[Decimal]) -> Optional[str]:
    """
    Convert Decimal to a string without scientific notation.

    Examples:
        >>> decimal_to_wire(Decimal("12.50"))
        "12.5"
        >>> decimal_to_wire(None)
        None
    """
    if d is None:
        return None

    s = format(d, 'f')
    if '.' in s:
        s = s.rstrip('0').rstrip('.')
    return s if s not in ('', '-0') else '0'


def wire_to_decimal(x: Any) -> Optional[Decimal]:
    """
    Parse a stored or user-supplied value to Decimal.

    Floats go through ``str`` to avoid binary artefacts; unparseable values
    yield None (logged) rather than raising.
    """
    if x is None or x == "":
        return None

    if isinstance(x, bool):
        return None

    if isinstance(x, Decimal):
        return x

    try:
        parsed = Decimal(str(x).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        logger.warning(f"Failed to parse value as Decimal: {x!r}, error: {e}")
        return None
    return parsed if parsed.is_finite() else None


def to_wire(value: Any) -> Any:
    """Recursively convert a value into JSON-safe primitives for a JSON column"""
    if isinstance(value, Decimal):
        return decimal_to_wire(value)
    if isinstance(value, BaseModel):
        return to_wire(value.model_dump())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_wire(v) for v in value]
    return value
