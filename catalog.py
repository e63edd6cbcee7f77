import logging

from sqlalchemy import func, or_

from definitions import (
    Book, BookInventoryLog, BookReservation, BookTransaction, LibraryMember,
    INVENTORY_ACTIONS, MEMBER_TYPES, OPEN_TRANSACTION_STATUSES, OVERDUE, PENDING,
)
from errors import DuplicateMemberError, InvalidTransactionState, LibraryError, ValidationError
from helpers import get_or_404, today as current_date
from policy import borrowing_limit, resolve_policy
from reservations import cancel_open_reservations, promote_from_shelf

logger = logging.getLogger(__name__)

BOOK_FIELDS = (
    'title', 'author', 'isbn', 'edition', 'publisher', 'genre', 'language',
    'rack_location', 'description',
)
MEMBER_FIELDS = ('borrowing_limit', 'suspended_until', 'suspension_reason')
MEMBER_CODE_PREFIXES = {'student': 'STU', 'teacher': 'TCH', 'staff': 'STF'}


def _int_at_least(value, field, minimum=1):
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if value < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return value


# books

def create_book(db, school_id, title, author, total_copies=1, performed_by=None, **details):
    if not title or not author:
        raise ValidationError('title and author are required')
    unknown = set(details) - set(BOOK_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown book fields: {', '.join(sorted(unknown))}")
    total_copies = _int_at_least(total_copies, 'total_copies')

    book = Book(
        school_id=school_id,
        title=title,
        author=author,
        total_copies=total_copies,
        available_copies=total_copies,
        **{k: v for k, v in details.items() if v is not None},
    )
    db.add(book)
    db.flush()
    db.add(BookInventoryLog(
        school_id=school_id,
        book_id=book.id,
        action_type='added',
        quantity_change=total_copies,
        reason='New title',
        performed_by=performed_by,
    ))
    db.commit()
    logger.info("book %s added to school %s with %d copies", book.id, school_id, total_copies)
    return book


def update_book(db, school_id, book_id, **updates):
    book = get_or_404(db, Book, school_id, book_id)
    for name, value in updates.items():
        if name not in BOOK_FIELDS:
            raise ValidationError(f"{name} cannot be updated here")
        if name in ('title', 'author') and not value:
            raise ValidationError(f"{name} cannot be empty")
        setattr(book, name, value)
    db.commit()
    return book


def adjust_copies(db, school_id, book_id, quantity_change, action_type=None, reason=None, performed_by=None):
    """Add copies (positive change) or take shelved copies out of stock (negative change)."""
    try:
        quantity_change = int(quantity_change)
    except (TypeError, ValueError):
        raise ValidationError('quantity_change must be an integer')
    if quantity_change == 0:
        raise ValidationError('quantity_change cannot be zero')

    if action_type is None:
        action_type = 'added' if quantity_change > 0 else 'removed'
    if action_type not in INVENTORY_ACTIONS:
        raise ValidationError(f"action_type must be one of {', '.join(INVENTORY_ACTIONS)}")
    if (action_type == 'added') != (quantity_change > 0):
        raise ValidationError(f"{action_type} does not match a change of {quantity_change}")

    book = get_or_404(db, Book, school_id, book_id)

    # only copies on the shelf can leave stock
    updated = (
        db.query(Book)
        .filter(
            (Book.id == book.id)
            & (Book.available_copies + quantity_change >= 0)
            & (Book.total_copies + quantity_change >= 1)
        )
        .update(
            {
                Book.total_copies: Book.total_copies + quantity_change,
                Book.available_copies: Book.available_copies + quantity_change,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise ValidationError('Not enough copies on the shelf for this change')

    db.add(BookInventoryLog(
        school_id=school_id,
        book_id=book.id,
        action_type=action_type,
        quantity_change=quantity_change,
        reason=reason,
        performed_by=performed_by,
    ))
    if quantity_change > 0:
        promote_from_shelf(db, school_id, book.id)
    db.commit()
    db.refresh(book)
    logger.info("book %s copies %+d (%s)", book.id, quantity_change, action_type)
    return book


def deactivate_book(db, school_id, book_id):
    book = get_or_404(db, Book, school_id, book_id)
    open_loans = (
        db.query(BookTransaction)
        .filter(
            (BookTransaction.book_id == book.id)
            & (BookTransaction.status.in_(OPEN_TRANSACTION_STATUSES))
        )
        .count()
    )
    if open_loans:
        raise InvalidTransactionState('Book has copies issued and cannot be removed')
    cancel_open_reservations(db, school_id, book_id=book.id)
    book.is_active = False
    db.commit()
    logger.info("book %s removed from the catalog", book.id)
    return book


def list_books(db, school_id, search=None, genre=None, availability='all'):
    query = db.query(Book).filter(Book.school_id == school_id, Book.is_active == True)  # noqa: E712

    if search:
        pattern = f'%{search.lower()}%'
        query = query.filter(or_(
            func.lower(Book.title).like(pattern),
            func.lower(Book.author).like(pattern),
            func.lower(Book.isbn).like(pattern),
        ))
    if genre:
        query = query.filter(Book.genre == genre)
    if availability == 'available':
        query = query.filter(Book.available_copies > 0)
    elif availability == 'issued':
        query = query.filter(Book.available_copies == 0)
    elif availability not in (None, 'all'):
        raise ValidationError('availability must be all, available or issued')

    return query.order_by(Book.title).all()


# members

def _check_person_link(member_type, student_id, staff_id):
    if member_type == 'student':
        if not student_id or staff_id:
            raise ValidationError('A student member must be linked to exactly one student record')
    elif not staff_id or student_id:
        raise ValidationError(f'A {member_type} member must be linked to exactly one staff record')


def generate_member_code(db, school_id, member_type, today=None):
    """Next card number for the type and year, e.g. STU260001."""
    today = today or current_date()
    base = f"{MEMBER_CODE_PREFIXES[member_type]}{today:%y}"
    codes = (
        db.query(LibraryMember.member_code)
        .filter((LibraryMember.school_id == school_id) & LibraryMember.member_code.like(f'{base}%'))
        .all()
    )
    sequence = 0
    for (code,) in codes:
        suffix = code[len(base):]
        if suffix.isdigit():
            sequence = max(sequence, int(suffix))
    return f"{base}{sequence + 1:04d}"


def create_member(db, school_id, member_code, member_type, student_id=None, staff_id=None,
                  borrowing_limit_override=None, today=None):
    if member_type not in MEMBER_TYPES:
        raise ValidationError(f"member_type must be one of {', '.join(MEMBER_TYPES)}")
    _check_person_link(member_type, student_id, staff_id)
    if not member_code:
        member_code = generate_member_code(db, school_id, member_type, today=today)

    existing = (
        db.query(LibraryMember)
        .filter((LibraryMember.school_id == school_id) & (LibraryMember.member_code == member_code))
        .first()
    )
    if existing:
        raise DuplicateMemberError(f"Member code {member_code} is already registered")

    if student_id:
        person = (LibraryMember.student_id == student_id)
    else:
        person = (LibraryMember.staff_id == staff_id)
    enrolled = (
        db.query(LibraryMember)
        .filter((LibraryMember.school_id == school_id) & (LibraryMember.is_active == True) & person)  # noqa: E712
        .first()
    )
    if enrolled:
        raise DuplicateMemberError(f"Already a library member as {enrolled.member_code}")

    if borrowing_limit_override is None:
        limit = borrowing_limit(resolve_policy(db, school_id), member_type)
    else:
        limit = _int_at_least(borrowing_limit_override, 'borrowing_limit', minimum=0)

    member = LibraryMember(
        school_id=school_id,
        member_code=member_code,
        member_type=member_type,
        student_id=student_id,
        staff_id=staff_id,
        borrowing_limit=limit,
        is_active=True,
    )
    db.add(member)
    db.commit()
    logger.info("library member %s (%s) created for school %s", member_code, member_type, school_id)
    return member


def bulk_create_members(db, school_id, rows, today=None):
    """Enrol many members at once; a bad row is reported and the rest carry on.

    Each row takes the create_member fields, with member_code and
    borrowing_limit optional.
    """
    if not isinstance(rows, list):
        raise ValidationError('members must be a list')

    results = []
    for index, row in enumerate(rows):
        try:
            if not isinstance(row, dict):
                raise ValidationError('Each member must be an object')
            member = create_member(
                db, school_id,
                row.get('member_code'),
                row.get('member_type'),
                student_id=row.get('student_id'),
                staff_id=row.get('staff_id'),
                borrowing_limit_override=row.get('borrowing_limit'),
                today=today,
            )
        except LibraryError as error:
            db.rollback()
            results.append({'row': index, 'status': 'error', 'error': error.message})
        else:
            results.append({'row': index, 'status': 'success', 'id': member.id, 'member_code': member.member_code})

    success = sum(1 for r in results if r['status'] == 'success')
    logger.info("bulk enrolment for school %s: %d of %d members added", school_id, success, len(rows))
    return {'success': success, 'failed': len(rows) - success, 'total': len(rows), 'results': results}


def update_member(db, school_id, member_id, **updates):
    member = get_or_404(db, LibraryMember, school_id, member_id)
    for name, value in updates.items():
        if name not in MEMBER_FIELDS:
            raise ValidationError(f"{name} cannot be updated here")
        if name == 'borrowing_limit':
            value = _int_at_least(value, name, minimum=0)
        setattr(member, name, value)
    db.commit()
    return member


def open_transaction_count(db, member_id):
    return (
        db.query(BookTransaction)
        .filter(
            (BookTransaction.member_id == member_id)
            & (BookTransaction.status.in_(OPEN_TRANSACTION_STATUSES))
        )
        .count()
    )


def deactivate_member(db, school_id, member_id):
    member = get_or_404(db, LibraryMember, school_id, member_id)
    if open_transaction_count(db, member.id):
        raise InvalidTransactionState('Member still holds books')
    cancel_open_reservations(db, school_id, member_id=member.id)
    member.is_active = False
    db.commit()
    logger.info("library member %s deactivated", member.member_code)
    return member


def list_members(db, school_id, member_type=None):
    """Active members with the number of books each currently holds."""
    current_books = (
        db.query(BookTransaction.member_id, func.count(BookTransaction.id).label('current_books'))
        .filter(BookTransaction.status.in_(OPEN_TRANSACTION_STATUSES))
        .group_by(BookTransaction.member_id)
        .subquery()
    )
    query = (
        db.query(LibraryMember, func.coalesce(current_books.c.current_books, 0))
        .outerjoin(current_books, current_books.c.member_id == LibraryMember.id)
        .filter(LibraryMember.school_id == school_id, LibraryMember.is_active == True)  # noqa: E712
    )
    if member_type:
        query = query.filter(LibraryMember.member_type == member_type)
    return query.order_by(LibraryMember.member_code).all()


def library_stats(db, school_id, today=None):
    today = today or current_date()

    total_fines = (
        db.query(func.coalesce(func.sum(BookTransaction.fine_amount), 0))
        .filter(
            (BookTransaction.school_id == school_id)
            & (BookTransaction.fine_paid == False)  # noqa: E712
            & (BookTransaction.fine_amount > 0)
        )
        .scalar()
    )

    return {
        'total_books': db.query(Book).filter(Book.school_id == school_id, Book.is_active == True).count(),  # noqa: E712
        'total_members': db.query(LibraryMember).filter(
            LibraryMember.school_id == school_id, LibraryMember.is_active == True).count(),  # noqa: E712
        'books_issued': db.query(BookTransaction).filter(
            BookTransaction.school_id == school_id,
            BookTransaction.status.in_(OPEN_TRANSACTION_STATUSES)).count(),
        'overdue_books': db.query(BookTransaction).filter(
            BookTransaction.school_id == school_id,
            or_(
                BookTransaction.status == OVERDUE,
                BookTransaction.status.in_(OPEN_TRANSACTION_STATUSES) & (BookTransaction.due_date < today),
            )).count(),
        'total_fines': float(total_fines or 0),
        'pending_reservations': db.query(BookReservation).filter(
            BookReservation.school_id == school_id, BookReservation.status == PENDING).count(),
    }
