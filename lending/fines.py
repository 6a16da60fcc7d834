import math
from datetime import datetime

from lending.config import FINE_PER_DAY

SECONDS_PER_DAY = 24 * 60 * 60


def days_late(due_date: datetime, return_date: datetime) -> int:
    """Whole days between due and return, a started day counting as a full one."""
    if return_date <= due_date:
        return 0
    elapsed = (return_date - due_date).total_seconds()
    return math.ceil(elapsed / SECONDS_PER_DAY)


def compute_fine(
    due_date: datetime, return_date: datetime, rate: float = FINE_PER_DAY
) -> float:
    return days_late(due_date, return_date) * rate
