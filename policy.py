"""
Library policy: per-school settings with fallback defaults.

A school without a settings row borrows under the defaults below; nothing is
raised for the missing row.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from definitions import LibrarySettings, MEMBER_TYPES
from errors import ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
MAX_AMOUNT = Decimal('100000000')

DEFAULT_SETTINGS = {
    'fine_per_day': Decimal('1.00'),
    'grace_period_days': 0,
    'max_fine_amount': Decimal('100.00'),
    'student_borrowing_limit': 3,
    'teacher_borrowing_limit': 5,
    'staff_borrowing_limit': 3,
    'student_borrowing_days': 14,
    'teacher_borrowing_days': 30,
    'staff_borrowing_days': 21,
    'max_renewals': 2,
    'reservation_hold_days': 3,
}

DECIMAL_FIELDS = ('fine_per_day', 'max_fine_amount')


@dataclass(frozen=True)
class Policy:
    fine_per_day: Decimal
    grace_period_days: int
    max_fine_amount: Decimal
    student_borrowing_limit: int
    teacher_borrowing_limit: int
    staff_borrowing_limit: int
    student_borrowing_days: int
    teacher_borrowing_days: int
    staff_borrowing_days: int
    max_renewals: int
    reservation_hold_days: int


DEFAULT_POLICY = Policy(**DEFAULT_SETTINGS)


def get_settings(db, school_id):
    return db.query(LibrarySettings).filter(LibrarySettings.school_id == school_id).first()


def resolve_policy(db, school_id):
    settings = get_settings(db, school_id)
    if settings is None:
        logger.debug("no library settings for school %s, using defaults", school_id)
        return DEFAULT_POLICY

    values = {}
    for name, default in DEFAULT_SETTINGS.items():
        value = getattr(settings, name)
        if value is None:
            value = default
        values[name] = Decimal(value) if name in DECIMAL_FIELDS else int(value)
    return Policy(**values)


def _check_member_type(member_type):
    if member_type not in MEMBER_TYPES:
        raise ValidationError(f"member_type must be one of {', '.join(MEMBER_TYPES)}")


def borrowing_limit(policy, member_type):
    _check_member_type(member_type)
    return getattr(policy, f'{member_type}_borrowing_limit')


def borrowing_days(policy, member_type):
    _check_member_type(member_type)
    return getattr(policy, f'{member_type}_borrowing_days')


def calculate_fine(policy, due_date, returned_on):
    """Fine for returning on `returned_on` a book due on `due_date`.

    Days past the grace period are charged at fine_per_day, capped at
    max_fine_amount (a cap of zero disables the cap).
    """
    days_late = (returned_on - due_date).days - policy.grace_period_days
    if days_late <= 0:
        return Decimal('0.00')

    amount = policy.fine_per_day * days_late
    if policy.max_fine_amount > 0:
        amount = min(amount, policy.max_fine_amount)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _clean_setting(name, value):
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")

    if name in DECIMAL_FIELDS:
        try:
            value = Decimal(str(value))
        except (TypeError, ValueError, ArithmeticError):
            raise ValidationError(f"{name} must be a number")
        if not value.is_finite():
            raise ValidationError(f"{name} must be a number")
        # DECIMAL(10, 2) column
        if abs(value) >= MAX_AMOUNT:
            raise ValidationError(f"{name} must be below {MAX_AMOUNT}")
        value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        if isinstance(value, float):
            # NaN and infinity are not integers either
            if not value.is_integer():
                raise ValidationError(f"{name} must be a whole number")
            value = int(value)
        elif isinstance(value, str):
            try:
                value = int(value.strip())
            except ValueError:
                raise ValidationError(f"{name} must be a whole number")
        elif not isinstance(value, int):
            raise ValidationError(f"{name} must be a whole number")

    if value < 0:
        raise ValidationError(f"{name} cannot be negative")
    return value


def update_settings(db, school_id, **fields):
    unknown = set(fields) - set(DEFAULT_SETTINGS)
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

    cleaned = {name: _clean_setting(name, value) for name, value in fields.items()}

    for name in ('student_borrowing_days', 'teacher_borrowing_days', 'staff_borrowing_days'):
        if cleaned.get(name) == 0:
            raise ValidationError(f"{name} must be at least 1")

    settings = get_settings(db, school_id)
    if settings is None:
        settings = LibrarySettings(school_id=school_id, **DEFAULT_SETTINGS)
        db.add(settings)
    for name, value in cleaned.items():
        setattr(settings, name, value)

    db.commit()
    logger.info("library settings updated for school %s: %s", school_id, sorted(cleaned))
    return settings
