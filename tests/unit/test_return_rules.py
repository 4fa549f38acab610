"""
Unit tests for the return reconciliation rules.
"""

from rentals.services.return_service import determine_order_status


def _item(status, quantity, returned, damage_fee='0', damage_description=None):
    return {
        'return_status': status,
        'quantity': quantity,
        'returned_quantity': returned,
        'damage_fee': damage_fee,
        'damage_description': damage_description,
    }


class TestDetermineOrderStatus:

    def test_everything_back_undamaged_is_completed(self):
        items = [_item('returned', 2, 2), _item('returned', 1, 1)]
        assert determine_order_status(items, 'active') == 'completed'

    def test_damaged_but_fully_returned_is_flagged(self):
        items = [_item('returned', 2, 2, damage_fee='150', damage_description='Cracked lens hood'),
                 _item('returned', 1, 1)]
        assert determine_order_status(items, 'active') == 'flagged'

    def test_damage_description_alone_counts_as_damage(self):
        items = [_item('returned', 1, 1, damage_description='Scratched')]
        assert determine_order_status(items, 'active') == 'flagged'

    def test_one_missing_item_is_flagged(self):
        items = [_item('returned', 1, 1), _item('missing', 1, 0)]
        assert determine_order_status(items, 'pending_return') == 'flagged'

    def test_partial_quantity_is_flagged(self):
        items = [_item('returned', 3, 2)]
        assert determine_order_status(items, 'active') == 'flagged'

    def test_some_items_back_is_partially_returned(self):
        items = [_item('returned', 2, 2), _item('not_yet_returned', 1, 0)]
        assert determine_order_status(items, 'active') == 'partially_returned'

    def test_nothing_back_keeps_current_status(self):
        items = [_item('not_yet_returned', 2, 0)]
        assert determine_order_status(items, 'pending_return') == 'pending_return'

    def test_no_items_keeps_current_status(self):
        assert determine_order_status([], 'active') == 'active'

    def test_completed_takes_priority_over_partial_rules(self):
        # Returned status with the full quantity on every line
        items = [_item('returned', 5, 5)]
        assert determine_order_status(items, 'partially_returned') == 'completed'
