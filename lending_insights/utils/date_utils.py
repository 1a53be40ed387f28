"""Date parsing for text-encoded dates in the lending schema"""

from datetime import date, datetime

# customer_since and transaction_date are stored as text
STORED_DATE_FORMAT = "%m/%d/%Y"


def parse_stored_date(value: str, fmt: str = STORED_DATE_FORMAT) -> date:
    """Parse an MM/DD/YYYY string. Raises ValueError on malformed input."""
    if not isinstance(value, str):
        raise ValueError(f"expected text in {fmt} form, got {type(value).__name__}")
    return datetime.strptime(value.strip(), fmt).date()


def days_between(start: date, end: date) -> int:
    """Whole days from start to end (negative when end precedes start)"""
    return (end - start).days
