"""
Tests for order creation, editing, status updates and cancellation.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from rentals.exceptions import BusinessLogicError, ConflictError, NotFoundError, ValidationError
from rentals.models import Order, OrderReturnAudit
from rentals.services.order_draft_service import OrderDraft
from rentals.services.order_status_service import order_display_category
from rentals.services.order_service import (
    auto_cancel_expired_scheduled_orders, cancel_order, create_order, create_order_from_draft,
    get_order, get_order_timeline, list_orders, serialize_order, update_order, update_order_status
)


def _payload(customer, item_payload, start, end, **extra):
    data = {
        'customer_id': customer.id,
        'start_date': start.isoformat(),
        'end_date': end.isoformat(),
        'items': [item_payload()],
    }
    data.update(extra)
    return data


class TestCreateOrder:

    @pytest.mark.parametrize('quantity', ['0.5', '2.5'])
    def test_fractional_quantity_rejected(self, session, staff_user, customer, item_payload, quantity):
        now = datetime.now()
        data = _payload(customer, item_payload, now, now + timedelta(days=1),
                        items=[item_payload(quantity=quantity)])

        with pytest.raises(ValidationError, match='whole number'):
            create_order(session, data, staff_user)
        assert session.query(Order).count() == 0


    def test_totals_follow_staff_gst(self, session, staff_user, customer, item_payload):
        now = datetime.now()
        order = create_order(session, _payload(customer, item_payload, now, now + timedelta(days=1)), staff_user)

        assert order.subtotal == Decimal('200.00')
        assert order.gst_amount == Decimal('10.00')
        assert order.total_amount == Decimal('210.00')
        assert order.status == 'active'
        assert order.branch_id == staff_user.branch_id
        assert order.invoice_number.startswith('GLAORD-')
        assert len(order.items) == 1

    def test_future_start_is_scheduled(self, session, staff_user, customer, item_payload):
        start = datetime.now() + timedelta(days=3)
        order = create_order(session, _payload(customer, item_payload, start, start + timedelta(days=2)), staff_user)
        assert order.status == 'scheduled'

    def test_requires_items(self, session, staff_user, customer, item_payload):
        now = datetime.now()
        data = _payload(customer, item_payload, now, now + timedelta(days=1))
        data['items'] = []
        with pytest.raises(ValidationError, match='at least one item'):
            create_order(session, data, staff_user)

    def test_rejects_short_rentals(self, session, staff_user, customer, item_payload):
        now = datetime.now()
        with pytest.raises(ValidationError, match='at least 1 hour'):
            create_order(session, _payload(customer, item_payload, now, now + timedelta(minutes=20)), staff_user)

    def test_rejects_uploading_photo(self, session, staff_user, customer, item_payload):
        now = datetime.now()
        data = _payload(customer, item_payload, now, now + timedelta(days=1))
        data['items'] = [item_payload(photo_url='blob:http://localhost/abc')]
        with pytest.raises(ValidationError, match='still uploading'):
            create_order(session, data, staff_user)

    def test_inactive_customer(self, session, staff_user, customer, item_payload):
        customer.is_active = False
        session.commit()
        now = datetime.now()
        with pytest.raises(BusinessLogicError, match='inactive'):
            create_order(session, _payload(customer, item_payload, now, now + timedelta(days=1)), staff_user)

    def test_duplicate_invoice_number(self, session, staff_user, customer, item_payload, make_order):
        existing = make_order()
        now = datetime.now()
        data = _payload(customer, item_payload, now, now + timedelta(days=1), invoice_number=existing.invoice_number)
        with pytest.raises(ConflictError):
            create_order(session, data, staff_user)

    def test_super_admin_must_pick_branch(self, session, super_admin, branch, customer, item_payload):
        now = datetime.now()
        data = _payload(customer, item_payload, now, now + timedelta(days=1))
        with pytest.raises(ValidationError, match='Branch is required'):
            create_order(session, data, super_admin)

        data['branch_id'] = branch.id
        order = create_order(session, data, super_admin)
        assert order.branch_id == branch.id
        # Super admin has GST disabled
        assert order.total_amount == Decimal('200.00')

    def test_staff_cannot_bill_another_branch(self, session, staff_user, other_branch, customer, item_payload):
        now = datetime.now()
        data = _payload(customer, item_payload, now, now + timedelta(days=1), branch_id=other_branch.id)
        order = create_order(session, data, staff_user)
        assert order.branch_id == staff_user.branch_id

    def test_from_draft(self, session, staff_user, customer, item_payload):
        start = datetime.now() + timedelta(days=1)
        draft = OrderDraft(customer_id=customer.id, start_date=start, end_date=start + timedelta(days=1))
        draft.add_item(item_payload(quantity=1, price_per_day='500'))

        order = create_order_from_draft(session, draft, staff_user)
        assert order.subtotal == Decimal('500.00')
        assert order.total_amount == Decimal('525.00')
        assert order.status == 'scheduled'


class TestUpdateOrder:

    def test_keeps_fees_already_charged(self, session, staff_user, customer, item_payload, make_order):
        start = datetime.now() + timedelta(days=1)
        order = make_order(start=start, status='scheduled')
        order.late_fee = Decimal('50.00')
        order.total_amount = Decimal('250.00')
        session.commit()

        data = _payload(customer, item_payload, start, start + timedelta(days=1))
        data['items'] = [item_payload(quantity=1, price_per_day='300')]
        updated = update_order(session, order.id, data, staff_user)

        assert updated.subtotal == Decimal('300.00')
        assert updated.gst_amount == Decimal('15.00')
        assert updated.total_amount == Decimal('365.00')
        assert [item.product_name for item in updated.items] == ['Manfrotto Tripod']
        assert session.query(OrderReturnAudit).filter_by(order_id=order.id, action='order_updated').count() == 1

    def test_locked_after_edit_window(self, session, staff_user, customer, item_payload, make_order):
        order = make_order(start=datetime.now() - timedelta(hours=1))
        with pytest.raises(BusinessLogicError, match='can no longer be edited'):
            update_order(session, order.id, {'items': [item_payload()]}, staff_user)

    def test_other_branch_is_not_found(self, session, staff_user, other_branch, item_payload, make_order):
        order = make_order(start=datetime.now() + timedelta(days=1), status='scheduled')
        with pytest.raises(NotFoundError):
            update_order(session, order.id, {'items': [item_payload()]}, staff_user, branch_id=other_branch.id)


class TestUpdateOrderStatus:

    def test_closed_order_status_is_locked(self, session, make_order):
        order = make_order(status='completed')
        with pytest.raises(BusinessLogicError, match='completed order'):
            update_order_status(session, order.id, 'active')
        assert session.get(Order, order.id).status == 'completed'

        cancelled = make_order(status='cancelled')
        with pytest.raises(BusinessLogicError):
            update_order_status(session, cancelled.id, 'pending_return')


    def test_late_fee_replaces_previous_fee(self, session, staff_user, make_order):
        order = make_order()

        update_order_status(session, order.id, 'pending_return', late_fee='50', user_id=staff_user.id)
        assert order.total_amount == Decimal('250.00')

        update_order_status(session, order.id, 'pending_return', late_fee='20', user_id=staff_user.id)
        assert order.total_amount == Decimal('220.00')
        assert order.late_fee == Decimal('20.00')

        update_order_status(session, order.id, 'active')
        assert order.total_amount == Decimal('220.00')

        entries = session.query(OrderReturnAudit).filter_by(order_id=order.id)
        assert entries.count() == 3
        assert entries.filter_by(user_id=staff_user.id).count() == 2

    def test_unknown_status(self, session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            update_order_status(session, order.id, 'lost')

    def test_negative_late_fee(self, session, make_order):
        order = make_order()
        with pytest.raises(ValidationError, match='cannot be negative'):
            update_order_status(session, order.id, 'active', late_fee='-5')
        assert session.get(Order, order.id).late_fee == Decimal('0')


class TestCancelOrder:

    def test_fresh_booking(self, session, staff_user, make_order):
        order = make_order(start=datetime.now() + timedelta(days=2), status='scheduled')
        cancel_order(session, order.id, user_id=staff_user.id)
        assert order.status == 'cancelled'
        assert session.query(OrderReturnAudit).filter_by(order_id=order.id, action='order_cancelled').count() == 1

    def test_window_expired(self, session, make_order):
        order = make_order(start=datetime.now() + timedelta(days=2), status='scheduled',
                           created_at=datetime.now() - timedelta(minutes=30))
        with pytest.raises(BusinessLogicError, match='cannot be cancelled'):
            cancel_order(session, order.id)
        assert order.status == 'scheduled'

    def test_started_order(self, session, make_order):
        order = make_order()
        with pytest.raises(BusinessLogicError):
            cancel_order(session, order.id)

    def test_auto_cancel_expired_bookings(self, session, make_order):
        now = datetime.now()
        expired = make_order(start=now - timedelta(hours=3), status='scheduled')
        upcoming = make_order(start=now + timedelta(days=1), status='scheduled')
        running = make_order(start=now - timedelta(hours=3), status='active')

        assert auto_cancel_expired_scheduled_orders(session, now=now) == 1
        assert expired.status == 'cancelled'
        assert upcoming.status == 'scheduled'
        assert running.status == 'active'
        assert auto_cancel_expired_scheduled_orders(session, now=now) == 0


class TestQueries:

    def test_get_order_is_branch_scoped(self, session, branch, other_branch, make_order):
        order = make_order()
        assert get_order(session, order.id, branch.id).id == order.id
        with pytest.raises(NotFoundError):
            get_order(session, order.id, other_branch.id)

    def test_list_filters(self, session, branch, other_branch, other_staff, make_order):
        now = datetime.now()
        late = make_order(start=now - timedelta(days=4), end=now - timedelta(days=1))
        ongoing = make_order()
        scheduled = make_order(start=now + timedelta(days=2), status='scheduled')
        done = make_order(status='completed')
        make_order(branch_id=other_branch.id, staff_id=other_staff.id)

        result = list_orders(session, branch_id=branch.id, now=now)
        assert result['total'] == 4

        def ids(**filters):
            return {o['id'] for o in list_orders(session, branch_id=branch.id, now=now, **filters)['orders']}

        assert ids(category='late') == {late.id}
        assert ids(category='ongoing') == {ongoing.id}
        assert ids(category='scheduled') == {scheduled.id}
        assert ids(category='returned') == {done.id}
        assert ids(status='completed') == {done.id}
        assert ids(search='ravi') == {late.id, ongoing.id, scheduled.id, done.id}
        assert ids(search=late.invoice_number.lower()) == {late.id}

        assert list_orders(session, now=now)['total'] == 5

    def test_date_only_orders_match_display_category(self, session, branch, make_order):
        now = datetime.now()
        ongoing = make_order()
        late = make_order(start=now - timedelta(days=4), end=now - timedelta(days=1))
        scheduled = make_order(start=now + timedelta(days=3), status='scheduled')
        for order in (ongoing, late, scheduled):
            order.start_datetime = None
            order.end_datetime = None
        session.commit()

        for order in (ongoing, late, scheduled):
            category = order_display_category(order, now=now)
            matched = list_orders(session, branch_id=branch.id, category=category, now=now)['orders']
            assert [o['id'] for o in matched] == [order.id]

    def test_search_wildcards_match_literally(self, session, make_order):
        make_order()
        assert list_orders(session, search='%')['total'] == 0
        assert list_orders(session, search='_')['total'] == 0

    def test_list_pagination(self, session, make_order):
        for _ in range(3):
            make_order()
        page = list_orders(session, per_page=2, page=2)
        assert page['total'] == 3
        assert page['pages'] == 2
        assert len(page['orders']) == 1

    def test_unknown_category(self, session):
        with pytest.raises(ValidationError):
            list_orders(session, category='lost')

    def test_serialized_display_fields(self, make_order):
        order = make_order(start=datetime.now() + timedelta(days=1), status='scheduled')
        data = serialize_order(order)
        assert data['display_category'] == 'scheduled'
        assert data['can_cancel'] is True
        assert data['can_edit'] is True
        assert data['days'] == 3

    def test_timeline_newest_first(self, session, staff_user, make_order):
        order = make_order()
        update_order_status(session, order.id, 'pending_return', user_id=staff_user.id)

        events = get_order_timeline(session, order.id)
        assert [event['action'] for event in events] == ['order_status_updated', 'order_created']
        assert events[0]['user_name'] == staff_user.full_name
