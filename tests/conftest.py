import itertools
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from rentals import create_app
from rentals.database import get_session, create_all, drop_all
from rentals.models import Branch, Profile, Customer, Order, OrderItem


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite, no cache, no CSRF)."""
    app = create_app('config.TestingConfig')
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


@pytest.fixture(autouse=True)
def _reset_database(app):
    """Every test starts from empty tables."""
    get_session().remove()
    drop_all()
    create_all()
    yield
    get_session().remove()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session for testing."""
    session = get_session()
    yield session
    session.rollback()


def _make_profile(session, username, role, branch_id=None, **kwargs):
    profile = Profile(
        username=username,
        full_name=kwargs.pop('full_name', username.title()),
        phone=kwargs.pop('phone', '9876543210'),
        role=role,
        branch_id=branch_id,
        is_active=kwargs.pop('is_active', True),
        **kwargs
    )
    profile.set_password('password123')
    session.add(profile)
    session.commit()
    return profile


@pytest.fixture(scope='function')
def branch(session):
    branch = Branch(name='Koramangala', address='80 Feet Road, Bengaluru', phone='0801234567', is_active=True)
    session.add(branch)
    session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(session):
    branch = Branch(name='Indiranagar', address='100 Feet Road, Bengaluru', is_active=True)
    session.add(branch)
    session.commit()
    return branch


@pytest.fixture(scope='function')
def staff_user(session, branch):
    """Staff member billing with 5% GST on top of the subtotal."""
    return _make_profile(
        session, 'staff1', 'staff', branch.id,
        gst_enabled=True, gst_rate=Decimal('5.00'), gst_included=False,
    )


@pytest.fixture(scope='function')
def branch_admin(session, branch):
    return _make_profile(session, 'manager1', 'branch_admin', branch.id)


@pytest.fixture(scope='function')
def other_staff(session, other_branch):
    return _make_profile(session, 'staff2', 'staff', other_branch.id)


@pytest.fixture(scope='function')
def super_admin(session):
    return _make_profile(session, 'owner', 'super_admin')


@pytest.fixture(scope='function')
def customer(session):
    customer = Customer(customer_number='GLA-00001', name='Ravi Kumar', phone='9123456789', is_active=True)
    session.add(customer)
    session.commit()
    return customer


DEFAULT_ITEMS = (
    {'product_name': 'Canon EOS R6', 'quantity': 2, 'price_per_day': Decimal('100.00')},
)


@pytest.fixture(scope='function')
def make_order(session, branch, staff_user, customer):
    """
    Factory inserting an order directly (no GST), for tests that need a
    precise status, dates or creation time.
    """
    counter = itertools.count(1)

    def _make(start=None, end=None, status='active', items=DEFAULT_ITEMS, created_at=None,
              branch_id=None, staff_id=None, customer_id=None):
        now = datetime.now()
        start = start or now - timedelta(hours=2)
        end = end or start + timedelta(days=2)

        order_items = []
        for data in items:
            line_total = (Decimal(data['quantity']) * data['price_per_day']).quantize(Decimal('0.01'))
            order_items.append(OrderItem(
                photo_url=data.get('photo_url', 'https://cdn.example.com/items/1.jpg'),
                product_name=data['product_name'],
                quantity=data['quantity'],
                price_per_day=data['price_per_day'],
                days=data.get('days', 1),
                line_total=line_total,
            ))
        subtotal = sum((item.line_total for item in order_items), Decimal('0'))

        order = Order(
            invoice_number=f'GLAORD-{now:%Y%m%d}-{next(counter):04d}',
            branch_id=branch_id or branch.id,
            staff_id=staff_id or staff_user.id,
            customer_id=customer_id or customer.id,
            booking_date=created_at or now,
            start_date=start.date(),
            end_date=end.date(),
            start_datetime=start,
            end_datetime=end,
            status=status,
            subtotal=subtotal,
            gst_amount=Decimal('0'),
            late_fee=Decimal('0'),
            damage_fee_total=Decimal('0'),
            total_amount=subtotal,
            created_at=created_at or now,
        )
        order.items = order_items
        session.add(order)
        session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def login(app):
    """Return a factory giving a test client logged in as the given profile."""
    def _login(profile):
        client = app.test_client()
        with client.session_transaction() as sess:
            sess['user_id'] = profile.id
        return client
    return _login


@pytest.fixture(scope='function')
def authenticated_client(login, staff_user):
    """Client logged in as a branch staff member."""
    return login(staff_user)


@pytest.fixture(scope='function')
def admin_client(login, branch_admin):
    return login(branch_admin)


@pytest.fixture(scope='function')
def super_admin_client(login, super_admin):
    return login(super_admin)


@pytest.fixture(scope='function')
def item_payload():
    """Builder for a valid order item payload."""
    def _build(**overrides):
        data = {
            'photo_url': 'https://cdn.example.com/items/tripod.jpg',
            'product_name': 'Manfrotto Tripod',
            'quantity': 2,
            'price_per_day': '100.00',
            'days': 1,
        }
        data.update(overrides)
        return data
    return _build
