"""
Dashboard blueprint.
Order metrics, recent orders and the booking calendar for the user's branch
(or all branches, or a chosen one, for super admins).
"""

from datetime import date
from decimal import Decimal

from flask import Blueprint, request, jsonify, current_app

from rentals.database import get_session
from rentals.decorators.permissions import branch_scope
from rentals.exceptions import ValidationError
from rentals.middleware import require_login
from rentals.services.dashboard_service import (
    get_cached_dashboard_stats, get_cached_calendar_month, get_recent_orders, get_datetime_range
)
from rentals.services.order_service import serialize_order
from rentals.utils.formatters import format_currency_compact, money_str
from rentals.utils.validators import parse_datetime


dashboard_bp = Blueprint('dashboard', __name__, url_prefix='/dashboard')


def _date_arg(name: str):
    value = request.args.get(name, '').strip()
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(f'Invalid {name.replace("_", " ")}', field=name)
    return parsed.date()


@dashboard_bp.route('/stats')
@require_login
def stats():
    """
    Order counts and collections for orders created in a date range.

    Query args: start_date, end_date (default today), branch_id (super admins).
    """
    branch_id = branch_scope(request.args.get('branch_id'))
    start_dt, end_dt = get_datetime_range(_date_arg('start_date'), _date_arg('end_date'))

    data = get_cached_dashboard_stats(get_session(), branch_id, start_dt, end_dt)
    result = {
        key: money_str(value) if isinstance(value, Decimal) else value
        for key, value in data.items()
    }
    result['today_collection_display'] = format_currency_compact(data['today_collection'])
    result['branch_id'] = branch_id
    result['start'] = start_dt.isoformat()
    result['end'] = end_dt.isoformat()
    return jsonify(result)


@dashboard_bp.route('/recent-orders')
@require_login
def recent_orders():
    branch_id = branch_scope(request.args.get('branch_id'))
    limit = request.args.get('limit', type=int) or current_app.config.get('RECENT_ORDERS_LIMIT', 8)
    orders = get_recent_orders(get_session(), branch_id, limit=min(limit, 50))
    return jsonify({'orders': [serialize_order(o, include_items=False) for o in orders]})


@dashboard_bp.route('/calendar')
@require_login
def calendar_month():
    """Scheduled bookings per day for a month (default: current month)."""
    today = date.today()
    year = request.args.get('year', type=int) or today.year
    month = request.args.get('month', type=int) or today.month
    if month < 1 or month > 12:
        raise ValidationError('Month must be between 1 and 12', field='month')

    branch_id = branch_scope(request.args.get('branch_id'))
    data = get_cached_calendar_month(get_session(), branch_id, year, month)
    return jsonify({'year': year, 'month': month, 'branch_id': branch_id, **data})
