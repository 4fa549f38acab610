"""
Orders blueprint.

Order CRUD, status changes, cancellation, returns and timeline, plus the
order draft kept in the user's session while an order is being composed.
"""

from datetime import datetime
from typing import Any, Dict

from flask import Blueprint, request, session, g, jsonify, current_app

from rentals.database import get_session
from rentals.decorators.permissions import branch_scope
from rentals.exceptions import BusinessLogicError, ValidationError
from rentals.middleware import require_login
from rentals.blueprints.metrics import orders_created_total, order_returns_total, orders_cancelled_total
from rentals.services import order_service
from rentals.services.invoice_service import generate_unique_invoice_number
from rentals.services.order_draft_service import TaxConfig, load_draft, save_draft, discard_draft
from rentals.services.order_status_service import can_edit_order
from rentals.services.return_service import process_order_return
from rentals.utils.formatters import money_str
from rentals.utils.validators import parse_datetime, validate_date_range, validate_order_item

orders_bp = Blueprint('orders', __name__, url_prefix='/orders')


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _windows() -> Dict[str, int]:
    return {
        'cancel_window_minutes': current_app.config.get('ORDER_CANCEL_WINDOW_MINUTES', 5),
        'edit_window_minutes': current_app.config.get('ORDER_EDIT_WINDOW_MINUTES', 10),
    }


def _serialize(order, include_items: bool = True):
    return order_service.serialize_order(order, include_items=include_items, **_windows())


def _date_arg(name: str):
    value = request.args.get(name, '').strip()
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(f'Invalid {name.replace("_", " ")}', field=name)
    return parsed.date()


# =====================================================
# ORDERS
# =====================================================

@orders_bp.route('/', methods=['GET'])
@require_login
def list_orders():
    """
    Orders of the caller's branch, newest first.

    Query args: status, category, q, start_date, end_date, page, per_page,
    branch_id (super admins only).
    """
    per_page = request.args.get('per_page', type=int) or current_app.config.get('ORDERS_PAGE_SIZE', 20)
    result = order_service.list_orders(
        get_session(),
        branch_id=branch_scope(request.args.get('branch_id')),
        status=request.args.get('status') or None,
        category=request.args.get('category') or None,
        search=request.args.get('q', '').strip() or None,
        start_date=_date_arg('start_date'),
        end_date=_date_arg('end_date'),
        page=request.args.get('page', 1, type=int),
        per_page=min(per_page, 100),
        **_windows()
    )
    return jsonify(result)


@orders_bp.route('/', methods=['POST'])
@require_login
def create_order():
    order = order_service.create_order(get_session(), _payload(), g.user)
    orders_created_total.labels(branch_id=str(order.branch_id)).inc()
    return jsonify({'status': 'ok', 'order': _serialize(order)}), 201


@orders_bp.route('/invoice-number', methods=['GET'])
@require_login
def suggest_invoice_number():
    """Fresh invoice number for a new order form."""
    return jsonify({'invoice_number': generate_unique_invoice_number(get_session())})


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_login
def get_order(order_id):
    order = order_service.get_order(get_session(), order_id, g.branch_id)
    return jsonify({'order': _serialize(order)})


@orders_bp.route('/<int:order_id>', methods=['PUT'])
@require_login
def update_order(order_id):
    order = order_service.update_order(
        get_session(), order_id, _payload(), g.user,
        branch_id=g.branch_id,
        edit_window_minutes=_windows()['edit_window_minutes'],
    )
    return jsonify({'status': 'ok', 'order': _serialize(order)})


@orders_bp.route('/<int:order_id>/status', methods=['POST'])
@require_login
def update_status(order_id):
    payload = _payload()
    status = str(payload.get('status') or '').strip()
    if not status:
        raise ValidationError('Status is required', field='status')

    order = order_service.update_order_status(
        get_session(), order_id, status,
        late_fee=payload.get('late_fee'),
        user_id=g.user_id,
        branch_id=g.branch_id,
    )
    return jsonify({'status': 'ok', 'order': _serialize(order)})


@orders_bp.route('/<int:order_id>/cancel', methods=['POST'])
@require_login
def cancel_order(order_id):
    order = order_service.cancel_order(
        get_session(), order_id,
        user_id=g.user_id,
        branch_id=g.branch_id,
        window_minutes=_windows()['cancel_window_minutes'],
    )
    orders_cancelled_total.labels(reason='manual').inc()
    return jsonify({'status': 'ok', 'order': _serialize(order)})


@orders_bp.route('/<int:order_id>/returns', methods=['POST'])
@require_login
def process_return(order_id):
    """
    Record returned, missing and damaged items.

    Body: {"items": [{"item_id", "return_status", "returned_quantity",
    "damage_fee", "damage_description", "missing_note"}], "late_fee"}
    """
    db_session = get_session()
    payload = _payload()
    # Scope check before touching anything
    order_service.get_order(db_session, order_id, g.branch_id)

    result = process_order_return(
        db_session, order_id, payload.get('items') or [],
        user_id=g.user_id,
        late_fee=payload.get('late_fee'),
    )
    order = order_service.get_order(db_session, order_id, g.branch_id)
    order_returns_total.labels(branch_id=str(order.branch_id), status=result['new_status']).inc()

    return jsonify({
        'status': 'ok',
        'new_status': result['new_status'],
        'total_amount': money_str(result['total_amount']),
        'damage_fee_total': money_str(result['damage_fee_total']),
        'late_fee': money_str(result['late_fee']),
        'warnings': result['warnings'],
        'order': _serialize(order),
    })


@orders_bp.route('/<int:order_id>/timeline', methods=['GET'])
@require_login
def timeline(order_id):
    events = order_service.get_order_timeline(get_session(), order_id, g.branch_id)
    return jsonify({'events': events})


# =====================================================
# DRAFT
# =====================================================

def _draft_response(draft, status_code: int = 200, **extra):
    totals = draft.totals(TaxConfig.from_profile(g.user))
    body = {
        'draft': draft.to_dict(),
        'totals': {key: money_str(value) for key, value in totals.items()},
    }
    if draft.start_date and draft.end_date:
        date_check = validate_date_range(draft.start_date, draft.end_date)
        if not date_check.is_valid:
            body['date_error'] = date_check.error
    body.update(extra)
    return jsonify(body), status_code


def _validated_item(data: Dict[str, Any]) -> Dict[str, Any]:
    result = validate_order_item(data)
    if not result.is_valid:
        raise ValidationError(result.error, field='items')
    return data


@orders_bp.route('/draft', methods=['GET'])
@require_login
def get_draft():
    return _draft_response(load_draft(session))


@orders_bp.route('/draft', methods=['PUT'])
@require_login
def update_draft():
    """Set customer, rental window and invoice number of the draft."""
    payload = _payload()
    draft = load_draft(session)

    if 'customer_id' in payload:
        customer_id = payload['customer_id']
        try:
            draft.set_customer(int(customer_id) if customer_id not in (None, '') else None)
        except (TypeError, ValueError):
            raise ValidationError('Invalid customer', field='customer_id')
    if 'start_date' in payload:
        draft.set_start_date(payload['start_date'])
    if 'end_date' in payload:
        draft.set_end_date(payload['end_date'])
    if 'invoice_number' in payload:
        draft.set_invoice_number(str(payload['invoice_number'] or '').strip() or None)

    save_draft(session, draft)
    return _draft_response(draft)


@orders_bp.route('/draft', methods=['DELETE'])
@require_login
def clear_draft():
    discard_draft(session)
    return jsonify({'status': 'ok'})


@orders_bp.route('/draft/items', methods=['POST'])
@require_login
def add_draft_item():
    draft = load_draft(session)
    draft.add_item(_validated_item(_payload()))
    save_draft(session, draft)
    return _draft_response(draft, 201)


@orders_bp.route('/draft/items/<int:index>', methods=['PUT'])
@require_login
def update_draft_item(index):
    draft = load_draft(session)
    changes = _payload()
    current = draft.get_item(index).to_dict()
    _validated_item({**current, **changes})
    draft.update_item(index, changes)
    save_draft(session, draft)
    return _draft_response(draft)


@orders_bp.route('/draft/items/<int:index>', methods=['DELETE'])
@require_login
def remove_draft_item(index):
    draft = load_draft(session)
    draft.remove_item(index)
    save_draft(session, draft)
    return _draft_response(draft)


@orders_bp.route('/<int:order_id>/edit', methods=['POST'])
@require_login
def load_order_into_draft(order_id):
    """Start editing an existing order: its content replaces the draft."""
    order = order_service.get_order(get_session(), order_id, g.branch_id)
    if not can_edit_order(order, _windows()['edit_window_minutes'], now=datetime.now()):
        raise BusinessLogicError(f'Order {order.invoice_number} can no longer be edited')

    draft = load_draft(session)
    draft.load_order(order)
    save_draft(session, draft)
    return _draft_response(draft)


@orders_bp.route('/draft/confirm', methods=['POST'])
@require_login
def confirm_draft():
    """Save the draft as a new order, or into the order being edited."""
    db_session = get_session()
    draft = load_draft(session)
    if not draft.items:
        raise ValidationError('Add at least one item before saving the order', field='items')

    if draft.editing_order_id:
        order = order_service.update_order(
            db_session, draft.editing_order_id, {
                'customer_id': draft.customer_id,
                'start_date': draft.start_date,
                'end_date': draft.end_date,
                'invoice_number': draft.invoice_number,
                'items': [item.to_dict() for item in draft.items],
            }, g.user,
            branch_id=g.branch_id,
            edit_window_minutes=_windows()['edit_window_minutes'],
        )
        status_code = 200
    else:
        branch_id = _payload().get('branch_id')
        order = order_service.create_order_from_draft(db_session, draft, g.user, branch_id=branch_id)
        orders_created_total.labels(branch_id=str(order.branch_id)).inc()
        status_code = 201

    discard_draft(session)
    return jsonify({'status': 'ok', 'order': _serialize(order)}), status_code
