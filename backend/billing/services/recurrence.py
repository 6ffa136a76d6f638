"""Due-date arithmetic for recurring templates."""

import calendar as cal
from datetime import datetime, timedelta

from billing.models.recurring_template import Frequency

_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def _add_months(dt: datetime, months: int, anchor_day: int | None = None) -> datetime:
    """Add months to a datetime, clamping to last day of month.

    With ``anchor_day`` the target day is taken from the anchor rather than
    from ``dt``, so Jan 31 -> Feb 29 -> Mar 31 instead of -> Mar 29.
    """
    month = dt.month - 1 + months
    year = dt.year + month // 12
    month = month % 12 + 1
    max_day = cal.monthrange(year, month)[1]
    day = min(anchor_day or dt.day, max_day)
    return dt.replace(year=year, month=month, day=day)


def next_due_date(
    current: datetime,
    frequency: Frequency | str,
    anchor_day: int | None = None,
) -> datetime:
    """Return the due date one cycle after ``current``.

    weekly +7d, biweekly +14d, monthly +1 month, quarterly +3 months,
    yearly +12 months. Calendar months that are shorter than the target day
    clamp to their last day.
    """
    frequency = Frequency(frequency)
    if frequency == Frequency.WEEKLY:
        return current + timedelta(days=7)
    if frequency == Frequency.BIWEEKLY:
        return current + timedelta(days=14)
    if anchor_day is not None and not 1 <= anchor_day <= 31:
        raise ValueError(f"Invalid anchor day: {anchor_day}")
    return _add_months(current, _MONTH_STEPS[frequency], anchor_day)
