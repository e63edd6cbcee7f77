from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import OTHER_SCHOOL, SCHOOL, TODAY
from errors import ValidationError
from policy import (
    DEFAULT_POLICY, borrowing_days, borrowing_limit, calculate_fine, get_settings,
    resolve_policy, update_settings,
)


def test_defaults_apply_without_settings_row(db):
    assert get_settings(db, SCHOOL) is None
    policy = resolve_policy(db, SCHOOL)

    assert policy == DEFAULT_POLICY
    assert (borrowing_limit(policy, 'student'), borrowing_days(policy, 'student')) == (3, 14)
    assert (borrowing_limit(policy, 'teacher'), borrowing_days(policy, 'teacher')) == (5, 30)
    assert (borrowing_limit(policy, 'staff'), borrowing_days(policy, 'staff')) == (3, 21)


def test_update_settings_upserts_per_school(db):
    update_settings(db, SCHOOL, student_borrowing_limit=4, fine_per_day='2.50')
    update_settings(db, SCHOOL, max_renewals=1)

    policy = resolve_policy(db, SCHOOL)
    assert policy.student_borrowing_limit == 4
    assert policy.fine_per_day == Decimal('2.50')
    assert policy.max_renewals == 1
    # untouched fields keep their defaults
    assert policy.teacher_borrowing_days == 30

    assert resolve_policy(db, OTHER_SCHOOL) == DEFAULT_POLICY


@pytest.mark.parametrize('fields', [
    {'fine_per_day': -1},
    {'max_renewals': 'many'},
    {'staff_borrowing_days': 0},
    {'library_hours': 8},
    {'fine_per_day': float('nan')},
    {'fine_per_day': 'NaN'},
    {'max_fine_amount': float('inf')},
    {'max_fine_amount': '1e30'},
    {'student_borrowing_limit': 1.7},
    {'student_borrowing_days': '1.7'},
    {'max_renewals': True},
    {'reservation_hold_days': float('inf')},
])
def test_update_settings_rejects_bad_values(db, fields):
    with pytest.raises(ValidationError):
        update_settings(db, SCHOOL, **fields)
    assert get_settings(db, SCHOOL) is None


def test_unknown_member_type(db):
    with pytest.raises(ValidationError):
        borrowing_limit(DEFAULT_POLICY, 'visitor')


def test_no_fine_until_due_date_passes():
    assert calculate_fine(DEFAULT_POLICY, TODAY, TODAY) == Decimal('0.00')
    assert calculate_fine(DEFAULT_POLICY, TODAY, TODAY - timedelta(days=3)) == Decimal('0.00')


def test_fine_per_day_after_grace_period(db):
    update_settings(db, SCHOOL, fine_per_day='1.50', grace_period_days=2)
    policy = resolve_policy(db, SCHOOL)

    assert calculate_fine(policy, TODAY, TODAY + timedelta(days=2)) == Decimal('0.00')
    assert calculate_fine(policy, TODAY, TODAY + timedelta(days=5)) == Decimal('4.50')


def test_fine_is_capped(db):
    update_settings(db, SCHOOL, fine_per_day=5, max_fine_amount=20)
    policy = resolve_policy(db, SCHOOL)
    assert calculate_fine(policy, TODAY, TODAY + timedelta(days=30)) == Decimal('20.00')

    update_settings(db, SCHOOL, max_fine_amount=0)
    policy = resolve_policy(db, SCHOOL)
    assert calculate_fine(policy, TODAY, TODAY + timedelta(days=30)) == Decimal('150.00')


def test_whole_number_settings_accept_integral_values(db):
    update_settings(db, SCHOOL, student_borrowing_limit=4.0, max_renewals='3', fine_per_day=0.5)
    policy = resolve_policy(db, SCHOOL)
    assert (policy.student_borrowing_limit, policy.max_renewals) == (4, 3)
    assert policy.fine_per_day == Decimal('0.50')
