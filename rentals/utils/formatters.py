"""
Formatting helpers for money and dates.
Used by the JSON serializers, audit notes and Jinja filters.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime
from typing import Union, Optional

TWO_PLACES = Decimal('0.01')

Number = Union[int, float, Decimal, str, None]


def to_decimal(value: Number, default: Decimal = Decimal('0')) -> Decimal:
    """Convert a user or database value to Decimal, falling back to default."""
    if value is None or value == '':
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def quantize_money(value: Number) -> Decimal:
    """Round a monetary amount to two decimal places."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def money_str(value: Number) -> Optional[str]:
    """Serialize a monetary amount for JSON ("1250.50")."""
    if value is None:
        return None
    return str(quantize_money(value))


def format_currency(value: Number) -> str:
    """
    Format an amount in rupees with comma thousands separators.

    Examples:
        format_currency(1234.5) -> "₹1,234.50"
        format_currency(None) -> "₹0.00"
    """
    amount = quantize_money(value)
    sign = '-' if amount < 0 else ''
    return f"{sign}₹{abs(amount):,.2f}"


def format_currency_compact(value: Number) -> str:
    """
    Format an amount with Indian abbreviations (K, L, Cr).

    Examples:
        format_currency_compact(60825.38) -> "₹60.83K"
        format_currency_compact(125000) -> "₹1.25L"
        format_currency_compact(25000000) -> "₹2.50Cr"
    """
    amount = to_decimal(value)
    if amount == 0:
        return "₹0"
    if amount >= Decimal('10000000'):
        return f"₹{quantize_money(amount / Decimal('10000000'))}Cr"
    if amount >= Decimal('100000'):
        return f"₹{quantize_money(amount / Decimal('100000'))}L"
    if amount >= Decimal('1000'):
        return f"₹{quantize_money(amount / Decimal('1000'))}K"
    return f"₹{quantize_money(amount)}"


def format_date(value: Union[date, datetime, None]) -> str:
    """Format a date as '05 Mar 2025'."""
    if value is None:
        return "-"
    return value.strftime('%d %b %Y')


def format_datetime(value: Optional[datetime], include_time: bool = True) -> str:
    """Format a datetime as '05 Mar 2025, 02:30 PM'."""
    if value is None:
        return "-"
    if include_time and isinstance(value, datetime):
        return value.strftime('%d %b %Y, %I:%M %p')
    return format_date(value)


def iso_or_none(value: Union[date, datetime, None]) -> Optional[str]:
    """ISO-8601 string for JSON output."""
    return value.isoformat() if value is not None else None


def like_pattern(search: str) -> str:
    """Lowercased substring pattern for LIKE ... ESCAPE '\\'; wildcards in the term match literally."""
    term = search.strip().lower()
    term = term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f'%{term}%'
