from flask import Blueprint, request, g, jsonify, current_app
from typing import Any, Dict

from rentals.database import get_session
from rentals.decorators.permissions import branch_scope
from rentals.middleware import require_login
from rentals.services import customer_service
from rentals.services.order_service import serialize_order

customers_bp = Blueprint('customers', __name__, url_prefix='/customers')


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or request.form.to_dict()


@customers_bp.route('/search', methods=['GET'])
@require_login
def search_customers():
    """Autocomplete for the order form (JSON)."""
    query_str = request.args.get('q', '').strip()
    if not query_str:
        return jsonify({'results': []})

    customers = customer_service.search_customers(get_session(), query_str)
    return jsonify({'results': [
        {'id': c.id, 'name': c.name, 'phone': c.phone, 'customer_number': c.customer_number}
        for c in customers
    ]})


@customers_bp.route('/', methods=['GET'])
@require_login
def list_customers():
    """Paginated customers with their outstanding dues."""
    per_page = request.args.get('per_page', type=int) or current_app.config.get('CUSTOMERS_PAGE_SIZE', 20)
    result = customer_service.list_customers(
        get_session(),
        search=request.args.get('q', '').strip() or None,
        page=request.args.get('page', 1, type=int),
        per_page=min(per_page, 100),
        active_only=request.args.get('active_only', '').lower() in ('1', 'true'),
    )
    return jsonify(result)


@customers_bp.route('/', methods=['POST'])
@require_login
def create_customer():
    customer = customer_service.create_customer(
        get_session(), _payload(), prefix=current_app.config.get('CUSTOMER_NUMBER_PREFIX', 'GLA')
    )
    current_app.logger.info(f"Customer {customer.customer_number} created by {g.user.username}")
    return jsonify({'status': 'ok', 'customer': customer.to_dict()}), 201


@customers_bp.route('/<int:customer_id>', methods=['GET'])
@require_login
def get_customer(customer_id):
    customer = customer_service.get_customer(get_session(), customer_id)
    return jsonify({'customer': customer.to_dict()})


@customers_bp.route('/<int:customer_id>', methods=['PUT', 'PATCH'])
@require_login
def update_customer(customer_id):
    customer = customer_service.update_customer(get_session(), customer_id, _payload())
    return jsonify({'status': 'ok', 'customer': customer.to_dict()})


@customers_bp.route('/<int:customer_id>/toggle', methods=['POST'])
@require_login
def toggle_customer(customer_id):
    payload = request.get_json(silent=True) or {}
    is_active = payload.get('is_active')
    customer = customer_service.set_customer_active(
        get_session(), customer_id, None if is_active is None else bool(is_active)
    )
    return jsonify({'status': 'ok', 'customer': customer.to_dict()})


@customers_bp.route('/<int:customer_id>', methods=['DELETE'])
@require_login
def delete_customer(customer_id):
    customer_service.delete_customer(get_session(), customer_id)
    return jsonify({'status': 'ok'})


@customers_bp.route('/<int:customer_id>/orders', methods=['GET'])
@require_login
def customer_orders(customer_id):
    """Order history of a customer, limited to the caller's branch."""
    orders = customer_service.get_customer_orders(
        get_session(), customer_id, branch_scope(request.args.get('branch_id'))
    )
    return jsonify({'orders': [serialize_order(o, include_items=False) for o in orders]})
