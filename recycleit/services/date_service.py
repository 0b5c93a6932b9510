"""
Date calculation service.
Handles the current date and goal check scheduling per frequency.
"""
from datetime import date, timedelta
from typing import Optional
import calendar

from recycleit.constants import FREQUENCY_DAILY, FREQUENCY_WEEKLY, FREQUENCY_MONTHLY


class DateService:
    """Service for date-related operations"""

    @staticmethod
    def get_today(today: Optional[date] = None) -> date:
        """Return the given date, or the current date when omitted"""
        return today or date.today()

    @staticmethod
    def calculate_next_check(from_date: date, frequency: str) -> date:
        """
        Calculate when a goal started on from_date is evaluated next.

        Args:
            from_date: Date the goal window starts
            frequency: "DAILY", "WEEKLY" or "MONTHLY"

        Returns:
            Date of the next evaluation

        Raises:
            ValueError: If frequency is unknown
        """
        if frequency == FREQUENCY_DAILY:
            return from_date + timedelta(days=1)
        if frequency == FREQUENCY_WEEKLY:
            return from_date + timedelta(days=7)
        if frequency == FREQUENCY_MONTHLY:
            return DateService._add_month(from_date)
        raise ValueError(f"Unknown goal frequency: {frequency}")

    @staticmethod
    def _add_month(from_date: date) -> date:
        """Same day next month, clamped to the last day of shorter months"""
        year = from_date.year + (from_date.month // 12)
        month = from_date.month % 12 + 1
        last_day = calendar.monthrange(year, month)[1]
        return date(year, month, min(from_date.day, last_day))
