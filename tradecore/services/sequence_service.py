"""
Document number generation

Order numbers: ``{ORDER_NUMBER_PREFIX}-YYYYMMDD-NNNN``, a per-day sequence taken
from the highest existing number of the day.

PI numbers: ``{PI_NUMBER_PREFIX}-NNN-YY-YY``, a continuous sequence per
financial year (April to March) held in ``pi_yearly_counters``. The counter row
is read with SELECT FOR UPDATE where the backend supports it; the unique
constraints on the numbers are the second line of defense.

Both run inside the caller's transaction.
"""

from datetime import datetime
from typing import Callable, Optional
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradecore.config import settings
from tradecore.models.db_models import InvoiceYearlyCounter, Order as OrderDB

logger = logging.getLogger(__name__)

# Financial year starts in April
FINANCIAL_YEAR_START_MONTH = 4


def financial_year(now: datetime) -> int:
    """Calendar year in which the financial year containing ``now`` started"""
    return now.year if now.month >= FINANCIAL_YEAR_START_MONTH else now.year - 1


def format_pi_number(counter: int, start_year: int, prefix: Optional[str] = None) -> str:
    """
    Examples:
        >>> format_pi_number(7, 2025)
        "VGR-007-25-26"
        >>> format_pi_number(1234, 2025)
        "VGR-1234-25-26"
    """
    prefix = prefix or settings.PI_NUMBER_PREFIX
    padded = str(counter).zfill(3) if counter <= 999 else str(counter).zfill(4)
    year_suffix = f"{str(start_year)[-2:]}-{str(start_year + 1)[-2:]}"
    return f"{prefix}-{padded}-{year_suffix}"


def format_order_number(day: datetime, sequence: int, prefix: Optional[str] = None) -> str:
    prefix = prefix or settings.ORDER_NUMBER_PREFIX
    return f"{prefix}-{day.strftime('%Y%m%d')}-{sequence:04d}"


class SequenceService:
    """Atomic document numbers inside the caller's session"""

    def __init__(self, db: AsyncSession, now: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.now = now or datetime.utcnow

    async def next_order_number(self) -> str:
        """Next order number for today, e.g. ``ORD-20250611-0001``"""
        day_prefix = f"{settings.ORDER_NUMBER_PREFIX}-{self.now().strftime('%Y%m%d')}"
        result = await self.db.execute(
            select(OrderDB.order_number)
            .where(OrderDB.order_number.like(f"{day_prefix}-%"))
            # Longer suffix first: "-10000" sorts below "-9999" as text
            .order_by(func.length(OrderDB.order_number).desc(), OrderDB.order_number.desc())
            .limit(1)
        )
        last_number = result.scalar_one_or_none()

        sequence = 1
        if last_number:
            try:
                sequence = int(last_number.rsplit("-", 1)[-1]) + 1
            except ValueError:
                logger.warning(f"Unparseable order number suffix: {last_number}")

        return format_order_number(self.now(), sequence)

    async def next_pi_number(self) -> str:
        """Increment the financial-year counter and format the PI number"""
        start_year = financial_year(self.now())
        year_key = f"{start_year}-{start_year + 1}"

        result = await self.db.execute(
            select(InvoiceYearlyCounter)
            .where(InvoiceYearlyCounter.financial_year == year_key)
            .with_for_update()
        )
        counter = result.scalar_one_or_none()

        if counter is None:
            counter = InvoiceYearlyCounter(financial_year=year_key, last_number=1)
            self.db.add(counter)
        else:
            counter.last_number = counter.last_number + 1
        await self.db.flush()

        pi_number = format_pi_number(counter.last_number, start_year)
        logger.debug(f"Generated PI number {pi_number}")
        return pi_number
