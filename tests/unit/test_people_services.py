"""
Tests for customer, staff, branch and authentication services.
"""

import pytest
from decimal import Decimal

from rentals.exceptions import (
    BusinessLogicError, ConflictError, NotFoundError, UnauthorizedError, ValidationError
)
from rentals.models import Profile
from rentals.services.auth_service import authenticate
from rentals.services.branch_service import create_branch, delete_branch, set_branch_active
from rentals.services.customer_service import (
    create_customer, delete_customer, list_customers, search_customers, update_customer
)
from rentals.services.staff_service import (
    create_staff, delete_staff, set_staff_active, update_gst_settings, update_staff
)


def _staff_data(branch_id, **overrides):
    data = {
        'username': 'newhire',
        'password': 'secret123',
        'full_name': 'Anita Rao',
        'phone': '9000000001',
        'role': 'staff',
        'branch_id': branch_id,
    }
    data.update(overrides)
    return data


class TestCustomers:

    def test_sequential_customer_numbers(self, session):
        first = create_customer(session, {'name': 'Meera', 'phone': '9000000010'})
        second = create_customer(session, {'name': 'Arjun', 'phone': '9000000011'})
        assert first.customer_number == 'GLA-00001'
        assert second.customer_number == 'GLA-00002'

    def test_duplicate_phone(self, session, customer):
        with pytest.raises(ConflictError):
            create_customer(session, {'name': 'Someone Else', 'phone': customer.phone})

    def test_invalid_phone(self, session):
        with pytest.raises(ValidationError, match='10 digits'):
            create_customer(session, {'name': 'Meera', 'phone': '12345'})

    def test_id_proof_type(self, session):
        customer = create_customer(session, {'name': 'Meera', 'phone': '9000000010', 'id_proof_type': 'Aadhar'})
        assert customer.id_proof_type == 'aadhar'
        with pytest.raises(ValidationError):
            update_customer(session, customer.id, {'id_proof_type': 'library card'})

    def test_partial_update(self, session, customer):
        update_customer(session, customer.id, {'address': '12 MG Road'})
        assert customer.address == '12 MG Road'
        assert customer.name == 'Ravi Kumar'

    def test_delete_blocked_by_orders(self, session, customer, make_order):
        make_order()
        with pytest.raises(BusinessLogicError, match='1 order'):
            delete_customer(session, customer.id)

    def test_delete(self, session, customer):
        delete_customer(session, customer.id)
        with pytest.raises(NotFoundError):
            delete_customer(session, customer.id)

    def test_due_amount_counts_open_orders(self, session, customer, make_order):
        make_order()
        make_order(status='pending_return')
        make_order(status='completed')

        result = list_customers(session)
        assert result['total'] == 1
        assert result['customers'][0]['due_amount'] == '400.00'

    def test_search(self, session, customer):
        create_customer(session, {'name': 'Meera', 'phone': '9000000010'})
        assert [c.name for c in search_customers(session, 'ravi')] == ['Ravi Kumar']
        assert len(search_customers(session, '9000')) == 1
        assert search_customers(session, '  ') == []
        assert list_customers(session, search='gla-00001')['total'] == 1

    def test_search_wildcards_match_literally(self, session, customer):
        assert search_customers(session, '%') == []
        assert list_customers(session, search='_')['total'] == 0
        assert list_customers(session, search='gla_00001')['total'] == 0


class TestStaff:

    def test_create(self, session, branch, branch_admin):
        profile = create_staff(session, _staff_data(branch.id, gst_enabled='true', gst_rate='12'), branch_admin)
        assert profile.check_password('secret123')
        assert profile.gst_enabled is True
        assert profile.gst_rate == Decimal('12.00')

    def test_required_fields(self, session, branch):
        with pytest.raises(ValidationError, match='full_name'):
            create_staff(session, _staff_data(branch.id, full_name=''))

    def test_short_password(self, session, branch):
        with pytest.raises(ValidationError, match='at least 6'):
            create_staff(session, _staff_data(branch.id, password='abc'))

    def test_duplicate_username(self, session, branch, staff_user):
        with pytest.raises(ConflictError):
            create_staff(session, _staff_data(branch.id, username='STAFF1'))

    def test_branch_required_except_for_super_admin(self, session):
        with pytest.raises(ValidationError, match='Branch is required'):
            create_staff(session, _staff_data(None))
        assert create_staff(session, _staff_data(None, role='super_admin')).branch_id is None

    def test_branch_admin_limits(self, session, branch, other_branch, branch_admin):
        with pytest.raises(UnauthorizedError):
            create_staff(session, _staff_data(None, role='super_admin'), branch_admin)
        with pytest.raises(UnauthorizedError):
            create_staff(session, _staff_data(other_branch.id), branch_admin)

    def test_plain_staff_manage_nobody(self, session, branch, staff_user):
        with pytest.raises(UnauthorizedError):
            create_staff(session, _staff_data(branch.id), staff_user)

    def test_update_role_and_password(self, session, branch, staff_user, super_admin):
        update_staff(session, staff_user.id, {'role': 'branch_admin', 'password': 'changed99'}, super_admin)
        assert staff_user.role == 'branch_admin'
        assert staff_user.check_password('changed99')

    def test_cannot_deactivate_self(self, session, branch_admin):
        with pytest.raises(BusinessLogicError):
            set_staff_active(session, branch_admin.id, acting_user=branch_admin)

    def test_toggle_active(self, session, staff_user, branch_admin):
        set_staff_active(session, staff_user.id, acting_user=branch_admin)
        assert staff_user.is_active is False
        set_staff_active(session, staff_user.id, acting_user=branch_admin)
        assert staff_user.is_active is True

    def test_delete_blocked_by_orders(self, session, staff_user, super_admin, make_order):
        make_order()
        with pytest.raises(BusinessLogicError, match='Deactivate'):
            delete_staff(session, staff_user.id, super_admin)

    def test_delete(self, session, branch_admin, super_admin):
        delete_staff(session, branch_admin.id, super_admin)
        assert session.get(Profile, branch_admin.id) is None

    def test_gst_settings(self, session, staff_user):
        update_gst_settings(session, staff_user.id, {'gst_included': True, 'gst_number': '29abcde1234f1z5',
                                                      'role': 'super_admin'})
        assert staff_user.gst_included is True
        assert staff_user.gst_number == '29ABCDE1234F1Z5'
        assert staff_user.role == 'staff'

        with pytest.raises(ValidationError):
            update_gst_settings(session, staff_user.id, {'gst_rate': '120'})


class TestBranches:

    def test_create_requires_address(self, session):
        with pytest.raises(ValidationError):
            create_branch(session, {'name': 'Jayanagar'})

    def test_toggle(self, session, branch):
        set_branch_active(session, branch.id)
        assert branch.is_active is False

    def test_delete_blocked_by_orders(self, session, branch, make_order):
        make_order()
        with pytest.raises(BusinessLogicError, match='Deactivate'):
            delete_branch(session, branch.id)

    def test_delete_unassigns_staff(self, session, branch, branch_admin):
        admin_id = branch_admin.id
        delete_branch(session, branch.id)
        assert session.get(Profile, admin_id).branch_id is None


class TestAuthenticate:

    def test_valid_credentials(self, session, staff_user):
        assert authenticate(session, 'Staff1', 'password123').id == staff_user.id

    def test_wrong_password(self, session, staff_user):
        with pytest.raises(BusinessLogicError) as exc_info:
            authenticate(session, 'staff1', 'nope')
        assert exc_info.value.status_code == 401

    def test_deactivated_account(self, session, staff_user):
        staff_user.is_active = False
        session.commit()
        with pytest.raises(UnauthorizedError):
            authenticate(session, 'staff1', 'password123')
