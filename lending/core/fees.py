"""
    Late fee computation.

    These are pure functions so the overdue report and the engine's fee
    posting at return time always agree for the same inputs.
"""

import datetime
from decimal import Decimal
from typing import Optional

from lending.configs import LATE_FEE_PER_DAY
from lending.core.utils import utcnow, as_utc

CENT = Decimal('0.01')


def days_overdue(due_at: datetime.datetime,
                 returned_at: Optional[datetime.datetime] = None,
                 as_of: Optional[datetime.datetime] = None) -> int:
    """Whole days between `due_at` and the return (or `as_of`, which
    defaults to now for a loan that is still open), never negative.
    """
    end = returned_at or as_of or utcnow()
    return max(0, (as_utc(end) - as_utc(due_at)).days)


def late_fee(due_at: datetime.datetime,
             returned_at: Optional[datetime.datetime] = None,
             as_of: Optional[datetime.datetime] = None,
             rate: Decimal = LATE_FEE_PER_DAY) -> Decimal:
    days = days_overdue(due_at, returned_at=returned_at, as_of=as_of)
    return (days * Decimal(rate)).quantize(CENT)
