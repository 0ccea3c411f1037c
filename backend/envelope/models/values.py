"""Value types for money and budget months."""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from envelope.models.errors import ValidationFailure

CENT = Decimal('0.01')
# Stored cents must fit a SQLite INTEGER with room for sums
MAX_AMOUNT = Decimal('10000000000000')
ZERO = Decimal('0.00')

_MONTH_KEY = re.compile(r'^(\d{4})-(\d{2})$')


def to_money(value: Any, field: str = 'amount') -> Decimal:
    """Convert a user or database value to a 2-place Decimal.

    Args:
        value: int, float, str or Decimal
        field: Field name used in the error message

    Returns:
        Decimal quantized to cents

    Raises:
        ValidationFailure: If the value is not a finite number or is too
            large to store
    """
    if isinstance(value, bool) or value is None:
        raise ValidationFailure(f'{field} must be a number')
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise ValidationFailure(f'{field} must be a number')
        if abs(amount) >= MAX_AMOUNT:
            raise ValidationFailure(f'{field} is out of range')
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationFailure(f'{field} must be a number')


def to_cents(value: Any, field: str = 'amount') -> int:
    """Convert a money value to integer cents for storage."""
    return int(to_money(value, field) * 100)


def from_cents(cents: Optional[int]) -> Decimal:
    """Convert stored integer cents back to a Decimal."""
    if not cents:
        return ZERO
    return (Decimal(int(cents)) / 100).quantize(CENT)


def money_json(amount: Optional[Decimal]) -> Optional[float]:
    """Render a Decimal for a JSON response body."""
    if amount is None:
        return None
    return float(amount.quantize(CENT, rounding=ROUND_HALF_UP))


def parse_date(value: Any, field: str = 'date') -> date:
    """Parse a YYYY-MM-DD string (or pass a date through)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationFailure(f'{field} must be a date in YYYY-MM-DD format')


@dataclass(frozen=True, order=True)
class YearMonth:
    """A calendar month, ordered chronologically.

    The canonical string key is zero-padded ``YYYY-MM``, which is how months
    are stored and which therefore also sorts correctly as text.
    """
    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValidationFailure(f'month must be between 1 and 12, got {self.month}')
        if not 1 <= self.year <= 9999:
            raise ValidationFailure(f'year out of range: {self.year}')

    @classmethod
    def parse(cls, key: Any) -> 'YearMonth':
        """Parse a ``YYYY-MM`` key.

        Raises:
            ValidationFailure: If the key is malformed
        """
        if isinstance(key, YearMonth):
            return key
        match = _MONTH_KEY.match(str(key or ''))
        if not match:
            raise ValidationFailure(f'month must be in YYYY-MM format, got {key!r}')
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def from_date(cls, d: date) -> 'YearMonth':
        return cls(d.year, d.month)

    @property
    def key(self) -> str:
        return f'{self.year:04d}-{self.month:02d}'

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def add_months(self, count: int) -> 'YearMonth':
        try:
            return YearMonth.from_date(self.first_day + relativedelta(months=count))
        except (ValueError, OverflowError):
            raise ValidationFailure(f'month out of range: {self.key} {count:+d} months')

    def previous(self) -> 'YearMonth':
        return self.add_months(-1)

    def next(self) -> 'YearMonth':
        return self.add_months(1)

    def __str__(self) -> str:
        return self.key
