"""
Field validators for order creation, editing and return processing.

Every validator is a pure function that returns a ValidationResult instead of
raising, so callers decide how to surface the error.
"""
import re
from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta, time
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

MIN_RENTAL_PERIOD = timedelta(hours=1)
PHONE_PATTERN = re.compile(r'^\d{10}$')


@dataclass
class ValidationResult:
    is_valid: bool
    clamped_value: Any = None
    error: Optional[str] = None
    warning: Optional[str] = None

    def to_dict(self):
        return {key: value for key, value in asdict(self).items() if value is not None}


def parse_datetime(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string, date or datetime into a naive local datetime.

    Returns None for empty or unparseable input.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _to_number(value) -> Optional[Decimal]:
    """Decimal for numeric input, None when the value is not a finite number."""
    if value is None or value == '':
        return Decimal('0')
    if isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def validate_date_range(start, end) -> ValidationResult:
    """Both dates required, end after start, rental of at least one hour."""
    if start is None or start == '':
        return ValidationResult(False, error='Start date is required')
    if end is None or end == '':
        return ValidationResult(False, error='End date is required')

    start_dt = parse_datetime(start)
    if start_dt is None:
        return ValidationResult(False, error='Invalid start date format')
    end_dt = parse_datetime(end)
    if end_dt is None:
        return ValidationResult(False, error='Invalid end date format')

    if end_dt <= start_dt:
        return ValidationResult(False, error='End date must be after start date')
    if end_dt - start_dt < MIN_RENTAL_PERIOD:
        return ValidationResult(False, error='Rental period must be at least 1 hour')

    return ValidationResult(True)


def validate_returned_quantity(returned_quantity, max_quantity: int) -> ValidationResult:
    """
    Returned quantity must be a non-negative integer.

    Values above max_quantity are accepted but clamped, with a warning.
    """
    if returned_quantity is None or returned_quantity == '':
        returned_quantity = 0

    number = _to_number(returned_quantity)
    if number is None or number != number.to_integral_value():
        return ValidationResult(False, clamped_value=0, error='Returned quantity must be a valid integer')

    value = int(number)
    if value < 0:
        return ValidationResult(False, clamped_value=0, error='Returned quantity cannot be negative')

    if value > max_quantity:
        return ValidationResult(
            True,
            clamped_value=max_quantity,
            warning=(
                f'Returned quantity cannot exceed {max_quantity} (original quantity). '
                f'Value clamped to {max_quantity}.'
            )
        )

    return ValidationResult(True, clamped_value=value)


def _validate_fee(value, label: str) -> ValidationResult:
    number = _to_number(value)
    if number is None:
        return ValidationResult(False, clamped_value=Decimal('0'), error=f'{label} must be a valid number')
    if number < 0:
        return ValidationResult(False, clamped_value=Decimal('0'), error=f'{label} cannot be negative')
    return ValidationResult(True, clamped_value=number)


def validate_damage_fee(damage_fee) -> ValidationResult:
    return _validate_fee(damage_fee, 'Damage fee')


def validate_late_fee(late_fee) -> ValidationResult:
    return _validate_fee(late_fee, 'Late fee')


def validate_damage_description(damage_fee, damage_description: Optional[str]) -> ValidationResult:
    """A description is mandatory whenever a damage fee is charged."""
    fee = _to_number(damage_fee) or Decimal('0')
    description = (damage_description or '').strip()
    if fee > 0 and not description:
        return ValidationResult(
            False,
            error='Damage description is required when damage fee is greater than 0'
        )
    return ValidationResult(True)


def validate_order_item(item: Mapping[str, Any]) -> ValidationResult:
    """Check that a draft line is complete enough to be saved."""
    quantity = _to_number(item.get('quantity'))
    if quantity is None or quantity <= 0:
        return ValidationResult(False, error='Item quantity must be greater than 0')
    if quantity != quantity.to_integral_value():
        return ValidationResult(False, error='Item quantity must be a whole number')

    price = _to_number(item.get('price_per_day'))
    if price is None or price <= 0:
        return ValidationResult(False, error='Item price per day must be greater than 0')

    product_name = item.get('product_name') or ''
    if not isinstance(product_name, str) or not product_name.strip():
        return ValidationResult(False, error='Item product name is required')

    photo_url = item.get('photo_url') or ''
    if not isinstance(photo_url, str) or not photo_url.strip():
        return ValidationResult(False, error='Item photo is required')
    # Local preview URLs are never reachable from the server
    if photo_url.strip().startswith('blob:'):
        return ValidationResult(False, error='Item photo is still uploading. Please wait.')

    return ValidationResult(True)


def validate_phone(phone: Optional[str]) -> ValidationResult:
    """Indian mobile numbers: exactly 10 digits."""
    if not isinstance(phone, str) or not PHONE_PATTERN.match(phone.strip()):
        return ValidationResult(False, error='Phone number must be exactly 10 digits')
    return ValidationResult(True, clamped_value=phone.strip())
