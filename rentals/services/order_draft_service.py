"""
Order Draft Service - the order being composed before it is saved.

The draft is plain application state: it is passed around explicitly and
crosses the HTTP session boundary only through to_dict() / from_dict().
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, MutableMapping, Optional

from rentals.exceptions import NotFoundError, ValidationError
from rentals.utils.formatters import TWO_PLACES, quantize_money, to_decimal, money_str, iso_or_none
from rentals.utils.validators import parse_datetime

DEFAULT_GST_RATE = Decimal('5.00')
SESSION_KEY = 'order_draft'


@dataclass
class TaxConfig:
    """GST settings of the staff member billing the order."""
    gst_enabled: bool = False
    gst_rate: Decimal = DEFAULT_GST_RATE
    gst_included: bool = False

    @classmethod
    def from_profile(cls, profile) -> 'TaxConfig':
        if profile is None:
            return cls()
        rate = profile.gst_rate if profile.gst_rate is not None else DEFAULT_GST_RATE
        return cls(
            gst_enabled=bool(profile.gst_enabled),
            gst_rate=to_decimal(rate, DEFAULT_GST_RATE),
            gst_included=bool(profile.gst_included),
        )


def calculate_line_total(quantity, price_per_day) -> Decimal:
    """quantity x price_per_day; rental days are not multiplied in."""
    return (to_decimal(quantity) * to_decimal(price_per_day)).quantize(TWO_PLACES)


def _line_total_of(item) -> Decimal:
    if isinstance(item, dict):
        return to_decimal(item.get('line_total'))
    return to_decimal(getattr(item, 'line_total', None))


def calculate_draft_totals(items: Iterable[Any], tax_config: Optional[TaxConfig] = None) -> Dict[str, Decimal]:
    """
    Calculate subtotal, GST and grand total for a list of lines.

    - GST disabled: no tax.
    - GST excluded: tax = subtotal * rate / 100, added on top.
    - GST included: tax = subtotal * rate / (100 + rate), carved out of the
      subtotal, grand total unchanged.
    """
    tax_config = tax_config or TaxConfig()
    subtotal = sum((_line_total_of(item) for item in items), Decimal('0')).quantize(TWO_PLACES)
    rate = max(to_decimal(tax_config.gst_rate), Decimal('0'))

    if not tax_config.gst_enabled or rate == 0:
        gst_amount = Decimal('0.00')
        grand_total = subtotal
    elif tax_config.gst_included:
        gst_amount = quantize_money(subtotal * rate / (Decimal('100') + rate))
        grand_total = subtotal
    else:
        gst_amount = quantize_money(subtotal * rate / Decimal('100'))
        grand_total = subtotal + gst_amount

    return {
        'subtotal': subtotal,
        'gst_amount': gst_amount,
        'grand_total': grand_total.quantize(TWO_PLACES),
    }


@dataclass
class DraftItem:
    photo_url: str = ''
    product_name: str = ''
    quantity: int = 1
    price_per_day: Decimal = Decimal('0')
    days: int = 1
    line_total: Decimal = Decimal('0')

    def recalculate(self) -> None:
        self.line_total = calculate_line_total(self.quantity, self.price_per_day)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'photo_url': self.photo_url,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'price_per_day': money_str(self.price_per_day),
            'days': self.days,
            'line_total': money_str(self.line_total),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DraftItem':
        item = cls(
            photo_url=(data.get('photo_url') or '').strip(),
            product_name=(data.get('product_name') or '').strip(),
            quantity=_to_int(data.get('quantity'), 'quantity', default=1),
            price_per_day=quantize_money(data.get('price_per_day')),
            days=max(_to_int(data.get('days'), 'days', default=1), 1),
        )
        item.recalculate()
        return item


def _to_int(value, field_name: str, default: int = 0) -> int:
    if value is None or value == '':
        return default
    try:
        number = Decimal(str(value))
    except (ArithmeticError, ValueError) as e:
        raise ValidationError(f'{field_name} must be a whole number', field=field_name) from e
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f'{field_name} must be a whole number', field=field_name)
    return int(number)


@dataclass
class OrderDraft:
    """Mutable order draft: customer, rental window and line items."""
    customer_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    invoice_number: Optional[str] = None
    editing_order_id: Optional[int] = None
    items: List[DraftItem] = field(default_factory=list)

    def set_customer(self, customer_id: Optional[int]) -> None:
        self.customer_id = customer_id

    def set_start_date(self, value) -> None:
        self.start_date = parse_datetime(value)

    def set_end_date(self, value) -> None:
        self.end_date = parse_datetime(value)

    def set_invoice_number(self, invoice_number: Optional[str]) -> None:
        self.invoice_number = invoice_number

    def add_item(self, data: Dict[str, Any]) -> DraftItem:
        item = DraftItem.from_dict(data)
        self.items.append(item)
        return item

    def get_item(self, index: int) -> DraftItem:
        if index < 0 or index >= len(self.items):
            raise NotFoundError(f'Draft item {index} not found')
        return self.items[index]

    def update_item(self, index: int, changes: Dict[str, Any]) -> DraftItem:
        """Apply changes to one line; line_total follows quantity and price."""
        item = self.get_item(index)
        if 'photo_url' in changes:
            item.photo_url = (changes['photo_url'] or '').strip()
        if 'product_name' in changes:
            item.product_name = (changes['product_name'] or '').strip()
        if 'days' in changes:
            item.days = max(_to_int(changes['days'], 'days', default=1), 1)
        if 'quantity' in changes:
            item.quantity = _to_int(changes['quantity'], 'quantity')
        if 'price_per_day' in changes:
            item.price_per_day = quantize_money(changes['price_per_day'])
        item.recalculate()
        return item

    def remove_item(self, index: int) -> None:
        self.get_item(index)
        del self.items[index]

    def clear(self) -> None:
        self.customer_id = None
        self.start_date = None
        self.end_date = None
        self.invoice_number = None
        self.editing_order_id = None
        self.items = []

    def load_order(self, order) -> None:
        """Replace the draft with an existing order, for editing."""
        self.customer_id = order.customer_id
        self.start_date = order.effective_start
        self.end_date = order.end_datetime or parse_datetime(order.end_date)
        self.invoice_number = order.invoice_number
        self.editing_order_id = order.id
        self.items = [
            DraftItem(
                photo_url=item.photo_url,
                product_name=item.product_name or '',
                quantity=item.quantity,
                price_per_day=quantize_money(item.price_per_day),
                days=item.days or 1,
                line_total=quantize_money(item.line_total),
            )
            for item in order.items
        ]

    def totals(self, tax_config: Optional[TaxConfig] = None) -> Dict[str, Decimal]:
        return calculate_draft_totals(self.items, tax_config)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'customer_id': self.customer_id,
            'start_date': iso_or_none(self.start_date),
            'end_date': iso_or_none(self.end_date),
            'invoice_number': self.invoice_number,
            'editing_order_id': self.editing_order_id,
            'items': [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'OrderDraft':
        data = data or {}
        return cls(
            customer_id=data.get('customer_id'),
            start_date=parse_datetime(data.get('start_date')),
            end_date=parse_datetime(data.get('end_date')),
            invoice_number=data.get('invoice_number'),
            editing_order_id=data.get('editing_order_id'),
            items=[DraftItem.from_dict(item) for item in data.get('items', [])],
        )


def load_draft(store: MutableMapping) -> OrderDraft:
    """Read the draft kept in a session-like mapping."""
    return OrderDraft.from_dict(store.get(SESSION_KEY))


def save_draft(store: MutableMapping, draft: OrderDraft) -> None:
    store[SESSION_KEY] = draft.to_dict()


def discard_draft(store: MutableMapping) -> None:
    store.pop(SESSION_KEY, None)
