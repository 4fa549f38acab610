"""
Unit tests for the order draft calculator.
"""

import itertools
import pytest
from decimal import Decimal

from rentals.exceptions import NotFoundError, ValidationError
from rentals.services.order_draft_service import (
    DraftItem, OrderDraft, TaxConfig, SESSION_KEY,
    calculate_draft_totals, calculate_line_total, load_draft, save_draft, discard_draft
)


def _item(quantity, price):
    item = DraftItem(product_name='Item', photo_url='https://cdn.example.com/x.jpg',
                     quantity=quantity, price_per_day=Decimal(price))
    item.recalculate()
    return item


class TestLineTotals:

    def test_line_total_is_quantity_times_price(self):
        assert calculate_line_total(2, '100') == Decimal('200.00')
        assert calculate_line_total(3, Decimal('33.33')) == Decimal('99.99')

    def test_days_do_not_multiply_line_total(self):
        item = DraftItem.from_dict({'quantity': 2, 'price_per_day': '100', 'days': 5})
        assert item.days == 5
        assert item.line_total == Decimal('200.00')


class TestDraftTotals:

    def test_gst_excluded_adds_tax_on_top(self):
        totals = calculate_draft_totals([_item(2, '100')], TaxConfig(True, Decimal('5'), False))
        assert totals == {
            'subtotal': Decimal('200.00'),
            'gst_amount': Decimal('10.00'),
            'grand_total': Decimal('210.00'),
        }

    def test_gst_included_carves_tax_out_of_subtotal(self):
        totals = calculate_draft_totals([_item(2, '100')], TaxConfig(True, Decimal('5'), True))
        assert totals['gst_amount'] == Decimal('9.52')
        assert totals['grand_total'] == Decimal('200.00')

    def test_gst_disabled(self):
        totals = calculate_draft_totals([_item(2, '100')], TaxConfig(False, Decimal('18'), False))
        assert totals['gst_amount'] == Decimal('0.00')
        assert totals['grand_total'] == totals['subtotal']

    def test_zero_rate_means_no_tax(self):
        totals = calculate_draft_totals([_item(1, '99.99')], TaxConfig(True, Decimal('0'), False))
        assert totals['gst_amount'] == Decimal('0.00')
        assert totals['grand_total'] == Decimal('99.99')

    def test_empty_draft(self):
        totals = calculate_draft_totals([], TaxConfig(True, Decimal('5'), False))
        assert totals['subtotal'] == Decimal('0.00')
        assert totals['grand_total'] == Decimal('0.00')

    def test_subtotal_independent_of_item_order(self):
        items = [_item(2, '100'), _item(1, '49.50'), _item(7, '12.25')]
        config = TaxConfig(True, Decimal('12'), False)
        results = {
            tuple(calculate_draft_totals(list(perm), config).items())
            for perm in itertools.permutations(items)
        }
        assert len(results) == 1

    @pytest.mark.parametrize('included', [True, False])
    @pytest.mark.parametrize('rate', ['0', '5', '12', '18', '28'])
    def test_grand_total_never_below_subtotal(self, included, rate):
        totals = calculate_draft_totals([_item(3, '333.33'), _item(1, '0.01')],
                                        TaxConfig(True, Decimal(rate), included))
        assert totals['gst_amount'] >= 0
        assert totals['grand_total'] >= totals['subtotal']

    def test_accepts_plain_dicts(self):
        totals = calculate_draft_totals([{'line_total': '50.00'}, {'line_total': '25.50'}])
        assert totals['subtotal'] == Decimal('75.50')

    def test_tax_config_from_missing_profile(self):
        config = TaxConfig.from_profile(None)
        assert config.gst_enabled is False
        assert config.gst_rate == Decimal('5.00')


class TestOrderDraft:

    def test_add_and_update_item_recalculates(self):
        draft = OrderDraft()
        draft.add_item({'product_name': 'Lens', 'photo_url': 'https://x/y.jpg',
                        'quantity': 1, 'price_per_day': '250'})
        assert draft.items[0].line_total == Decimal('250.00')

        draft.update_item(0, {'quantity': 3})
        assert draft.items[0].line_total == Decimal('750.00')

        draft.update_item(0, {'price_per_day': '100.005'})
        assert draft.items[0].price_per_day == Decimal('100.01')
        assert draft.items[0].line_total == Decimal('300.03')

    def test_remove_item(self):
        draft = OrderDraft()
        draft.add_item({'product_name': 'A', 'quantity': 1, 'price_per_day': '10'})
        draft.add_item({'product_name': 'B', 'quantity': 1, 'price_per_day': '20'})
        draft.remove_item(0)
        assert [item.product_name for item in draft.items] == ['B']

    def test_unknown_item_index(self):
        draft = OrderDraft()
        with pytest.raises(NotFoundError):
            draft.update_item(0, {'quantity': 2})
        with pytest.raises(NotFoundError):
            draft.remove_item(-1)

    def test_non_numeric_quantity_rejected(self):
        with pytest.raises(ValidationError):
            DraftItem.from_dict({'quantity': 'two', 'price_per_day': '10'})

    @pytest.mark.parametrize('quantity', ['0.5', '2.5', 'NaN'])
    def test_fractional_quantity_is_not_truncated(self, quantity):
        with pytest.raises(ValidationError, match='whole number'):
            DraftItem.from_dict({'quantity': quantity, 'price_per_day': '10'})

    def test_whole_decimal_quantity_accepted(self):
        assert DraftItem.from_dict({'quantity': '3.0', 'price_per_day': '10'}).quantity == 3

    def test_clear(self):
        draft = OrderDraft(customer_id=3, invoice_number='GLAORD-20250101-0001')
        draft.add_item({'product_name': 'A', 'quantity': 1, 'price_per_day': '10'})
        draft.clear()
        assert draft.customer_id is None
        assert draft.invoice_number is None
        assert draft.items == []

    def test_session_store_round_trip(self):
        store = {}
        draft = OrderDraft(customer_id=7)
        draft.set_start_date('2025-03-14T10:00:00')
        draft.set_end_date('2025-03-16T10:00:00')
        draft.add_item({'product_name': 'Gimbal', 'photo_url': 'https://x/g.jpg',
                        'quantity': 2, 'price_per_day': '150'})
        save_draft(store, draft)

        assert isinstance(store[SESSION_KEY]['items'][0]['line_total'], str)

        restored = load_draft(store)
        assert restored.customer_id == 7
        assert restored.start_date.day == 14
        assert restored.items[0].line_total == Decimal('300.00')
        assert restored.totals(TaxConfig(True, Decimal('5'), False))['grand_total'] == Decimal('315.00')

        discard_draft(store)
        assert SESSION_KEY not in store
        assert load_draft(store).items == []

    def test_two_drafts_are_independent(self):
        first, second = OrderDraft(), OrderDraft()
        first.add_item({'product_name': 'A', 'quantity': 1, 'price_per_day': '10'})
        assert second.items == []
