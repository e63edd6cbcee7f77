import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from definitions import (
    Book, BookReservation, BookTransaction, LibraryMember,
    AVAILABLE, CANCELLED, EXPIRED, FULFILLED, ISSUED, OPEN_TRANSACTION_STATUSES, OVERDUE, PENDING, RETURNED,
)
from catalog import open_transaction_count
from errors import (
    BookUnavailableError, BorrowingLimitError, InvalidTransactionState, InvalidTransition, MemberNotEligibleError,
    RenewalLimitError, ReservationConflictError, UnpaidFinesError, ValidationError,
)
from helpers import get_member_unpaid_fines, get_or_404, parse_date, today as current_date
from policy import CENT, borrowing_days, calculate_fine, resolve_policy
from reservations import (
    cancel_reservation, check_transition, expire_reservation, hand_over_copy, mark_available,
)

logger = logging.getLogger(__name__)


def check_member_can_borrow(member, today):
    if not member.is_active:
        raise MemberNotEligibleError('Member is not active')
    if member.suspended_until and member.suspended_until >= today:
        reason = f": {member.suspension_reason}" if member.suspension_reason else ''
        raise MemberNotEligibleError(f"Member is suspended until {member.suspended_until.isoformat()}{reason}")


def issue_book(db, school_id, book_id, member_id, due_date=None, issued_by=None, notes=None, today=None):
    today = today or current_date()
    book = get_or_404(db, Book, school_id, book_id)
    member = get_or_404(db, LibraryMember, school_id, member_id)

    if not book.is_active:
        raise BookUnavailableError('Book has been removed from the catalog')
    check_member_can_borrow(member, today)

    if get_member_unpaid_fines(db, school_id, member.id):
        raise UnpaidFinesError('Fine not paid')

    if open_transaction_count(db, member.id) >= member.borrowing_limit:
        raise BorrowingLimitError(f"Member has reached the borrowing limit of {member.borrowing_limit}")

    policy = resolve_policy(db, school_id)
    due_date = parse_date(due_date, 'due_date')
    if due_date is None:
        due_date = today + timedelta(days=borrowing_days(policy, member.member_type))
    elif due_date < today:
        raise ValidationError('due_date cannot be before the issue date')

    reservation = (
        db.query(BookReservation)
        .filter(
            (BookReservation.book_id == book.id)
            & (BookReservation.member_id == member.id)
            & (BookReservation.status.in_((AVAILABLE, PENDING)))
        )
        .first()
    )
    if reservation is not None and reservation.status == AVAILABLE:
        # the held copy is already off the shelf
        reservation.status = FULFILLED
    else:
        updated = (
            db.query(Book)
            .filter((Book.id == book.id) & (Book.available_copies > 0))
            .update({Book.available_copies: Book.available_copies - 1}, synchronize_session=False)
        )
        if not updated:
            db.rollback()
            raise BookUnavailableError()
        if reservation is not None:
            reservation.status = FULFILLED

    transaction = BookTransaction(
        school_id=school_id,
        book_id=book.id,
        member_id=member.id,
        issue_date=today,
        due_date=due_date,
        status=ISSUED,
        renewal_count=0,
        max_renewals=policy.max_renewals,
        fine_amount=Decimal('0.00'),
        fine_paid=False,
        issued_by=issued_by,
        notes=notes,
    )
    db.add(transaction)
    db.commit()
    logger.info("book %s issued to member %s, due %s (transaction %s)",
                book.id, member.id, due_date, transaction.id)
    return transaction


def return_book(db, school_id, transaction_id, return_date=None, fine_amount=None, returned_by=None, notes=None,
                today=None):
    transaction = get_or_404(db, BookTransaction, school_id, transaction_id)
    if transaction.status not in OPEN_TRANSACTION_STATUSES:
        raise InvalidTransactionState('Book has already been returned')

    today = today or current_date()
    return_date = parse_date(return_date, 'return_date') or today
    if return_date < transaction.issue_date:
        raise ValidationError('return_date cannot be before the issue date')

    policy = resolve_policy(db, school_id)
    if fine_amount is None:
        fine = calculate_fine(policy, transaction.due_date, return_date)
    else:
        try:
            fine = Decimal(str(fine_amount)).quantize(CENT)
        except (InvalidOperation, ValueError):
            raise ValidationError('fine_amount must be a number')
        if fine < 0:
            raise ValidationError('fine_amount cannot be negative')

    transaction.return_date = return_date
    transaction.returned_by = returned_by
    transaction.status = RETURNED
    transaction.fine_amount = fine
    if notes:
        transaction.notes = notes

    # a back-dated return still starts the next hold today
    promoted = hand_over_copy(db, school_id, transaction.book_id, policy=policy, today=today)
    db.commit()

    logger.info("transaction %s returned on %s with fine %s", transaction.id, return_date, fine)
    if promoted is not None:
        logger.info("returned copy of book %s held for reservation %s", transaction.book_id, promoted.id)
    return transaction


def renew_book(db, school_id, transaction_id, today=None):
    today = today or current_date()
    transaction = get_or_404(db, BookTransaction, school_id, transaction_id)

    if transaction.status != ISSUED:
        raise InvalidTransactionState('Only issued books can be renewed')
    if transaction.due_date < today:
        raise InvalidTransactionState('Overdue books must be returned before they can be renewed')
    if transaction.renewal_count >= transaction.max_renewals:
        raise RenewalLimitError('Maximum renewals exceeded')

    waiting = (
        db.query(BookReservation)
        .filter(
            (BookReservation.book_id == transaction.book_id)
            & (BookReservation.member_id != transaction.member_id)
            & (BookReservation.status == PENDING)
        )
        .count()
    )
    if waiting:
        raise ReservationConflictError('Book is reserved by another member and cannot be renewed')

    policy = resolve_policy(db, school_id)
    new_due_date = today + timedelta(days=borrowing_days(policy, transaction.member.member_type))
    new_due_date = max(new_due_date, transaction.due_date)

    updated = (
        db.query(BookTransaction)
        .filter(
            (BookTransaction.id == transaction.id)
            & (BookTransaction.status == ISSUED)
            & (BookTransaction.renewal_count == transaction.renewal_count)
            & (BookTransaction.renewal_count < BookTransaction.max_renewals)
        )
        .update(
            {
                BookTransaction.renewal_count: BookTransaction.renewal_count + 1,
                BookTransaction.due_date: new_due_date,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise RenewalLimitError('Maximum renewals exceeded')

    db.commit()
    db.refresh(transaction)
    logger.info("transaction %s renewed (%d/%d), due %s",
                transaction.id, transaction.renewal_count, transaction.max_renewals, transaction.due_date)
    return transaction


def fulfil_reservation(db, school_id, reservation_id, issued_by=None, today=None):
    """Issue the held copy to the reserving member."""
    reservation = get_or_404(db, BookReservation, school_id, reservation_id)
    check_transition(reservation, FULFILLED)
    transaction = issue_book(
        db, school_id, reservation.book_id, reservation.member_id,
        issued_by=issued_by, today=today,
    )
    db.refresh(reservation)
    return reservation, transaction


def update_reservation_status(db, school_id, reservation_id, status, issued_by=None, today=None):
    if status == AVAILABLE:
        return mark_available(db, school_id, reservation_id, today=today)
    if status == CANCELLED:
        return cancel_reservation(db, school_id, reservation_id, today=today)
    if status == EXPIRED:
        return expire_reservation(db, school_id, reservation_id, today=today)
    if status == FULFILLED:
        reservation, _ = fulfil_reservation(db, school_id, reservation_id, issued_by=issued_by, today=today)
        return reservation
    raise InvalidTransition(f"Reservation cannot be set to {status}")


def pay_fine(db, school_id, transaction_id, paid_on=None):
    transaction = get_or_404(db, BookTransaction, school_id, transaction_id)
    if transaction.fine_paid or not transaction.fine_amount or transaction.fine_amount <= 0:
        raise InvalidTransactionState('No unpaid fine on this transaction')

    transaction.fine_paid = True
    transaction.fine_paid_date = parse_date(paid_on, 'paid_on') or current_date()
    db.commit()
    logger.info("fine of %s paid on transaction %s", transaction.fine_amount, transaction.id)
    return transaction


def mark_overdue_transactions(db, today=None):
    """Flag issued transactions past their due date, for every school."""
    today = today or current_date()
    updated = (
        db.query(BookTransaction)
        .filter((BookTransaction.status == ISSUED) & (BookTransaction.due_date < today))
        .update({BookTransaction.status: OVERDUE}, synchronize_session=False)
    )
    db.commit()
    return updated


def list_transactions(db, school_id, status=None, member_id=None, book_id=None):
    query = db.query(BookTransaction).filter(BookTransaction.school_id == school_id)
    if status:
        query = query.filter(BookTransaction.status == status)
    if member_id:
        query = query.filter(BookTransaction.member_id == member_id)
    if book_id:
        query = query.filter(BookTransaction.book_id == book_id)
    return query.order_by(BookTransaction.created_at.desc(), BookTransaction.id.desc()).all()
