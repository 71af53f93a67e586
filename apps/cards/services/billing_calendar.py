"""
Billing calendar helpers.

Pure date arithmetic shared by the lifecycle, allocator and scheduler.
Reference months are represented as the first day of the month.
"""

import calendar
from datetime import date


def first_of_month(value: date) -> date:
    return value.replace(day=1)


def add_months(month_start: date, months: int) -> date:
    """Shift a reference month by ``months`` (may be negative)."""
    index = month_start.year * 12 + (month_start.month - 1) + months
    year, month = divmod(index, 12)
    return date(year, month + 1, 1)


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, pulling days past the month end back to the last day."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def closing_date_for(*, closing_day: int, reference_month: date) -> date:
    return clamp_day(reference_month.year, reference_month.month, closing_day)


def due_date_for(*, closing_day: int, due_day: int, reference_month: date) -> date:
    """
    Due date of a cycle.

    Cards whose due day falls on or before the closing day are due in the
    month after the reference month.
    """
    due_month = reference_month
    if due_day <= closing_day:
        due_month = add_months(reference_month, 1)
    return clamp_day(due_month.year, due_month.month, due_day)


def billing_month_for(*, closing_day: int, on_date: date) -> date:
    """
    Reference month an entry dated ``on_date`` belongs to.

    Anything after the month's closing date rolls into the next cycle.
    """
    month = first_of_month(on_date)
    if on_date > closing_date_for(closing_day=closing_day, reference_month=month):
        return add_months(month, 1)
    return month
