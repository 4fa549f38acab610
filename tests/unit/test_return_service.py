"""
Tests for processing item returns against stored orders.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from rentals.exceptions import BusinessLogicError, NotFoundError, ValidationError
from rentals.models import Order, OrderReturnAudit
from rentals.services.return_service import process_order_return

TWO_ITEMS = (
    {'product_name': 'Sony A7 III', 'quantity': 1, 'price_per_day': Decimal('1500.00')},
    {'product_name': 'Godox SL60', 'quantity': 2, 'price_per_day': Decimal('250.00')},
)


class TestProcessOrderReturn:

    def test_everything_returned_completes_order(self, session, staff_user, make_order):
        order = make_order()
        item = order.items[0]

        result = process_order_return(session, order.id, [
            {'item_id': item.id, 'return_status': 'returned'}
        ], user_id=staff_user.id)

        assert result['new_status'] == 'completed'
        assert result['total_amount'] == Decimal('200.00')
        assert item.returned_quantity == 2
        assert item.actual_return_date is not None

        actions = {entry.action for entry in session.query(OrderReturnAudit).filter_by(order_id=order.id)}
        assert actions == {'marked_returned', 'items_returned'}

    def test_damage_flags_order_and_adds_fee(self, session, make_order):
        order = make_order(items=TWO_ITEMS)
        camera, lights = order.items

        result = process_order_return(session, order.id, [
            {'item_id': camera.id, 'return_status': 'returned', 'damage_fee': '150',
             'damage_description': 'Cracked LCD'},
            {'item_id': lights.id, 'return_status': 'returned'},
        ])

        assert result['new_status'] == 'flagged'
        assert result['damage_fee_total'] == Decimal('150.00')
        assert result['total_amount'] == Decimal('2150.00')
        assert order.damage_fee_total == Decimal('150.00')

    def test_missing_item_flags_order(self, session, make_order):
        order = make_order(items=TWO_ITEMS)
        camera, lights = order.items

        result = process_order_return(session, order.id, [
            {'item_id': camera.id, 'return_status': 'returned'},
            {'item_id': lights.id, 'return_status': 'missing', 'missing_note': 'Customer lost one stand'},
        ])

        assert result['new_status'] == 'flagged'
        assert lights.missing_note == 'Customer lost one stand'

    def test_partial_batch_is_partially_returned(self, session, make_order):
        order = make_order(items=TWO_ITEMS)
        camera = order.items[0]

        result = process_order_return(session, order.id, [{'item_id': camera.id, 'return_status': 'returned'}])
        assert result['new_status'] == 'partially_returned'

    def test_quantity_above_rented_is_clamped(self, session, make_order):
        order = make_order()
        item = order.items[0]

        result = process_order_return(session, order.id, [
            {'item_id': item.id, 'return_status': 'returned', 'returned_quantity': 15}
        ])

        assert item.returned_quantity == 2
        assert result['new_status'] == 'completed'
        assert 'Value clamped to 2.' in result['warnings'][0]

    def test_late_fee_is_replaced_not_added(self, session, make_order):
        now = datetime.now()
        order = make_order(start=now - timedelta(days=3), end=now - timedelta(days=1), items=TWO_ITEMS)
        camera, lights = order.items

        first = process_order_return(session, order.id, [
            {'item_id': camera.id, 'return_status': 'returned'}
        ], late_fee='300')
        assert first['total_amount'] == Decimal('2300.00')
        assert order.late_returned is True
        assert camera.late_return is True

        second = process_order_return(session, order.id, [
            {'item_id': lights.id, 'return_status': 'returned'}
        ], late_fee='300')
        assert second['new_status'] == 'completed'
        assert second['total_amount'] == Decimal('2300.00')

        assert session.get(Order, order.id).late_fee == Decimal('300.00')

    def test_damage_fee_requires_description(self, session, make_order):
        order = make_order()
        item = order.items[0]

        with pytest.raises(ValidationError, match='Damage description is required'):
            process_order_return(session, order.id, [
                {'item_id': item.id, 'return_status': 'returned', 'damage_fee': '100'}
            ])

        reloaded = session.get(Order, order.id)
        assert reloaded.status == 'active'
        assert reloaded.items[0].return_status == 'not_yet_returned'
        assert session.query(OrderReturnAudit).count() == 0

    def test_negative_quantity_is_rejected(self, session, make_order):
        order = make_order()
        with pytest.raises(ValidationError, match='cannot be negative'):
            process_order_return(session, order.id, [
                {'item_id': order.items[0].id, 'return_status': 'returned', 'returned_quantity': -5}
            ])

    def test_closed_orders_reject_returns(self, session, make_order):
        order = make_order(status='completed')
        with pytest.raises(BusinessLogicError, match='completed'):
            process_order_return(session, order.id, [{'item_id': order.items[0].id}])

    def test_item_from_another_order(self, session, make_order):
        order = make_order()
        other = make_order()
        with pytest.raises(NotFoundError):
            process_order_return(session, order.id, [{'item_id': other.items[0].id}])

    def test_empty_batch(self, session, make_order):
        order = make_order()
        with pytest.raises(BusinessLogicError, match='No items'):
            process_order_return(session, order.id, [])
