from datetime import date, datetime
from decimal import Decimal

import pytz
from sqlalchemy import inspect

from definitions import BookTransaction, LibraryMember
from errors import NotFoundError, ValidationError

TIMEZONE = pytz.utc


def today():
    return datetime.now(TIMEZONE).date()


def parse_date(value, field='date'):
    if value is None or isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format")


def to_dict(row):
    """Column values of a model row, JSON friendly."""
    data = {}
    for attr in inspect(row).mapper.column_attrs:
        value = getattr(row, attr.key)
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        data[attr.key] = value
    return data


def get_or_404(db, model, school_id, record_id):
    row = (
        db.query(model)
        .filter(model.id == record_id, model.school_id == school_id)
        .first()
    )
    if row is None:
        raise NotFoundError(f"{model.__name__} {record_id} not found")
    return row


def get_member_unpaid_fines(db, school_id, member_id):
    # fines are stored on the transaction they were charged for
    fines = (
        db.query(BookTransaction, LibraryMember.member_code)
        .join(LibraryMember, BookTransaction.member_id == LibraryMember.id)
        .filter(
            (BookTransaction.school_id == school_id)
            & (BookTransaction.member_id == member_id)
            & (BookTransaction.fine_amount > 0)
            & (BookTransaction.fine_paid == False)  # noqa: E712
        )
        .all()
    )

    return [
        {
            "member_code": member_code,
            "transaction_id": transaction.id,
            "amount": float(transaction.fine_amount),
            "paid": transaction.fine_paid,
        }
        for transaction, member_code in fines
    ]
