"""
Order status resolution from rental dates and stored status.

All functions are pure; `today` / `now` can be injected for tests.
"""
import enum
from datetime import date, datetime, timedelta
from typing import Optional, Union

from rentals.models import OrderStatus, CLOSED_STATUSES
from rentals.utils.validators import parse_datetime

DateLike = Union[str, date, datetime, None]


class DisplayCategory(str, enum.Enum):
    """Category shown on order cards and used by list filters."""
    CANCELLED = 'cancelled'
    RETURNED = 'returned'
    LATE = 'late'
    SCHEDULED = 'scheduled'
    ONGOING = 'ongoing'


def _as_date(value: DateLike) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def resolve_order_status(start_date: DateLike, end_date: DateLike, stored_status: str,
                         today: Optional[date] = None) -> str:
    """
    Display status: completed stays completed, orders past their end date are
    pending_return, everything else is active.
    """
    if stored_status == OrderStatus.COMPLETED.value:
        return OrderStatus.COMPLETED.value

    today = today or date.today()
    end = _as_date(end_date)
    if end is not None and today > end:
        return OrderStatus.PENDING_RETURN.value

    return OrderStatus.ACTIVE.value


def is_booking(start_date: DateLike, today: Optional[date] = None) -> bool:
    """An order is a booking when it starts tomorrow or later (time of day ignored)."""
    start = _as_date(start_date)
    if start is None:
        return False
    return start > (today or date.today())


def is_order_late(end_datetime: DateLike, status: Optional[str], now: Optional[datetime] = None) -> bool:
    """Past the end of the rental and not yet closed."""
    if status in CLOSED_STATUSES:
        return False
    end = parse_datetime(end_datetime)
    if end is None:
        return False
    return (now or datetime.now()) > end


def is_overdue(end_date: DateLike, today: Optional[date] = None) -> bool:
    end = _as_date(end_date)
    if end is None:
        return False
    return (today or date.today()) > end


def calculate_days(start_date: DateLike, end_date: DateLike) -> int:
    """Inclusive rental day count (same-day rental is 1 day)."""
    start = _as_date(start_date)
    end = _as_date(end_date)
    if start is None or end is None:
        return 0
    return (end - start).days + 1


def order_display_category(order, now: Optional[datetime] = None) -> str:
    """Precedence: cancelled > returned > late > scheduled > ongoing."""
    now = now or datetime.now()
    if order.status == OrderStatus.CANCELLED.value:
        return DisplayCategory.CANCELLED.value
    if order.status == OrderStatus.COMPLETED.value:
        return DisplayCategory.RETURNED.value
    if is_order_late(order.effective_end, order.status, now=now):
        return DisplayCategory.LATE.value
    if is_booking(order.effective_start, today=now.date()):
        return DisplayCategory.SCHEDULED.value
    return DisplayCategory.ONGOING.value


def can_cancel_order(order, window_minutes: int = 5, now: Optional[datetime] = None) -> bool:
    """Only future bookings, and only shortly after they were created."""
    now = now or datetime.now()
    if order.status in CLOSED_STATUSES:
        return False
    if not is_booking(order.effective_start, today=now.date()):
        return False
    if order.created_at is None:
        return False
    return now - order.created_at <= timedelta(minutes=window_minutes)


def can_edit_order(order, window_minutes: int = 10, now: Optional[datetime] = None) -> bool:
    """
    Scheduled orders are editable until they start; active orders only for a
    few minutes after the rental began. Anything further along is locked.
    """
    now = now or datetime.now()
    if order.status == OrderStatus.SCHEDULED.value:
        return True
    if order.status == OrderStatus.ACTIVE.value:
        active_since = order.start_datetime or order.created_at
        if active_since is None:
            return False
        return now - active_since <= timedelta(minutes=window_minutes)
    return False
