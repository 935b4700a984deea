"""
Next-due-date calculation for screenings.

Month arithmetic keeps the day of month and lets any overflow roll into
the following month instead of clamping to the month end:

    2024-01-31 + 1 month  -> 2024-02-31 -> 2024-03-02
    2023-01-31 + 1 month  -> 2023-02-31 -> 2023-03-03
    2024-01-31 + 12 months -> 2025-01-31

Stored due dates depend on this rule; keep it stable.
"""

from datetime import date, datetime, timedelta

from preventive_care.models.models import Guideline

DEFAULT_FREQUENCY_MONTHS = 12


def add_months(from_date: date, months: int) -> date:
    """Add calendar months to ``from_date`` with day-overflow rollover."""
    if isinstance(from_date, datetime):
        from_date = from_date.date()
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1) + timedelta(days=from_date.day - 1)


def frequency_months(guideline: Guideline, default: int = DEFAULT_FREQUENCY_MONTHS) -> int:
    """Interval for ``guideline``; unset or zero falls back to ``default``."""
    return guideline.frequency_months or default


def next_due_date(
    guideline: Guideline,
    from_date: date,
    default_frequency_months: int = DEFAULT_FREQUENCY_MONTHS,
) -> date:
    """
    Compute when a screening is next due after a completion.

    Args:
        guideline: Guideline providing ``frequency_months``.
        from_date: Completion date.
        default_frequency_months: Interval used when the guideline has none.

    Returns:
        The next due date.
    """
    return add_months(from_date, frequency_months(guideline, default_frequency_months))
