"""
Dashboard service.
Provides aggregated order metrics, recent orders and the booking calendar.
"""

import calendar
from datetime import datetime, date, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import current_app, has_app_context
from sqlalchemy import func, case
from sqlalchemy.orm import joinedload

from rentals.models import Order, OrderStatus
from rentals.services.cache_service import get_cache
from rentals.services.order_service import category_filter
from rentals.services.order_status_service import DisplayCategory
from rentals.utils.formatters import money_str, iso_or_none


def _count_status(status: str):
    return func.coalesce(func.sum(case((Order.status == status, 1), else_=0)), 0)


def _cache_ttl(key: str, default: int) -> int:
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def get_dashboard_stats(session, branch_id: Optional[int], start_dt: datetime, end_dt: datetime,
                        now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Order metrics for orders created in [start_dt, end_dt).

    Args:
        session: SQLAlchemy session
        branch_id: Branch to report on, None for all branches
        start_dt: Start datetime (inclusive)
        end_dt: End datetime (exclusive)

    Returns:
        dict with keys:
            - active, scheduled, pending_return, partially_returned, flagged,
              completed, cancelled, total_orders: int
            - today_collection: Decimal (totals of completed orders)
            - total_revenue: Decimal (totals of non-cancelled orders)
            - late_returns: int (orders in range that came back late)
            - late_orders, ongoing, scheduled_today: int (current state, regardless of range)
    """
    now = now or datetime.now()

    query = session.query(
        func.count(Order.id).label('total_orders'),
        _count_status(OrderStatus.ACTIVE.value).label('active'),
        _count_status(OrderStatus.SCHEDULED.value).label('scheduled'),
        _count_status(OrderStatus.PENDING_RETURN.value).label('pending_return'),
        _count_status(OrderStatus.PARTIALLY_RETURNED.value).label('partially_returned'),
        _count_status(OrderStatus.FLAGGED.value).label('flagged'),
        _count_status(OrderStatus.COMPLETED.value).label('completed'),
        _count_status(OrderStatus.CANCELLED.value).label('cancelled'),
        func.coalesce(
            func.sum(case((Order.status == OrderStatus.COMPLETED.value, Order.total_amount), else_=0)),
            0
        ).label('today_collection'),
        func.coalesce(
            func.sum(case((Order.status != OrderStatus.CANCELLED.value, Order.total_amount), else_=0)),
            0
        ).label('total_revenue'),
        func.coalesce(func.sum(case((Order.late_returned == True, 1), else_=0)), 0).label('late_returns'),
    ).filter(
        Order.created_at >= start_dt,
        Order.created_at < end_dt
    )
    if branch_id is not None:
        query = query.filter(Order.branch_id == branch_id)
    row = query.first()

    def _count(*conditions) -> int:
        query = session.query(func.count(Order.id)).filter(*conditions)
        if branch_id is not None:
            query = query.filter(Order.branch_id == branch_id)
        return int(query.scalar() or 0)

    return {
        'total_orders': int(row.total_orders or 0),
        'active': int(row.active or 0),
        'scheduled': int(row.scheduled or 0),
        'pending_return': int(row.pending_return or 0),
        'partially_returned': int(row.partially_returned or 0),
        'flagged': int(row.flagged or 0),
        'completed': int(row.completed or 0),
        'cancelled': int(row.cancelled or 0),
        'today_collection': Decimal(str(row.today_collection or 0)).quantize(Decimal('0.01')),
        'total_revenue': Decimal(str(row.total_revenue or 0)).quantize(Decimal('0.01')),
        'late_returns': int(row.late_returns or 0),
        # Current workload, independent of the creation range
        'late_orders': _count(category_filter(DisplayCategory.LATE.value, now)),
        'ongoing': _count(category_filter(DisplayCategory.ONGOING.value, now)),
        'scheduled_today': _count(
            Order.status == OrderStatus.SCHEDULED.value,
            Order.start_date == now.date(),
        ),
    }


def get_cached_dashboard_stats(session, branch_id: Optional[int], start_dt: datetime, end_dt: datetime):
    """Cache-aside wrapper around get_dashboard_stats."""
    key = f"stats:{start_dt:%Y%m%d%H%M}:{end_dt:%Y%m%d%H%M}"
    return get_cache().memoize(
        branch_id, 'dashboard', key,
        lambda: get_dashboard_stats(session, branch_id, start_dt, end_dt),
        ttl=_cache_ttl('CACHE_DASHBOARD_TTL', 60)
    )


def get_recent_orders(session, branch_id: Optional[int], limit: int = 8):
    """Latest orders, newest first."""
    query = session.query(Order).options(
        joinedload(Order.customer), joinedload(Order.branch)
    )
    if branch_id is not None:
        query = query.filter(Order.branch_id == branch_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def get_calendar_month(session, branch_id: Optional[int], year: int, month: int) -> Dict[str, Any]:
    """
    Scheduled orders starting in the given month, grouped by start date.

    Returns:
        {'counts': {'2025-03-14': {'scheduled': 2}}, 'orders': {'2025-03-14': [...]}}
    """
    month_start = date(year, month, 1)
    month_end = date(year, month, calendar.monthrange(year, month)[1])

    query = session.query(Order).options(joinedload(Order.customer)).filter(
        Order.status == OrderStatus.SCHEDULED.value,
        Order.start_date >= month_start,
        Order.start_date <= month_end,
    )
    if branch_id is not None:
        query = query.filter(Order.branch_id == branch_id)

    counts: Dict[str, Dict[str, int]] = {}
    orders_by_date: Dict[str, list] = {}
    for order in query.order_by(Order.start_date, Order.start_datetime).all():
        day = order.start_date.isoformat()
        counts.setdefault(day, {'scheduled': 0})['scheduled'] += 1
        orders_by_date.setdefault(day, []).append({
            'id': order.id,
            'invoice_number': order.invoice_number,
            'customer_name': order.customer.name if order.customer else None,
            'customer_phone': order.customer.phone if order.customer else None,
            'start_datetime': iso_or_none(order.start_datetime),
            'total_amount': money_str(order.total_amount),
        })

    return {'counts': counts, 'orders': orders_by_date}


def get_cached_calendar_month(session, branch_id: Optional[int], year: int, month: int):
    return get_cache().memoize(
        branch_id, 'calendar', f"{year}-{month:02d}",
        lambda: get_calendar_month(session, branch_id, year, month),
        ttl=_cache_ttl('CACHE_CALENDAR_TTL', 300)
    )


def get_today_datetime_range():
    """
    Get datetime range for today (local server time).

    Returns:
        tuple: (start_dt, end_dt) where start is 00:00:00 and end is the next midnight
    """
    today = date.today()
    start_dt = datetime.combine(today, time.min)
    end_dt = start_dt + timedelta(days=1)

    return start_dt, end_dt


def get_datetime_range(start: Optional[date], end: Optional[date]):
    """Inclusive date range as a half-open datetime range; defaults to today."""
    if start is None and end is None:
        return get_today_datetime_range()
    start = start or end
    end = end or start
    if end < start:
        start, end = end, start
    return datetime.combine(start, time.min), datetime.combine(end, time.min) + timedelta(days=1)
