"""
Reservation lifecycle.

    pending -> available -> fulfilled | expired
    pending | available -> cancelled

Fulfilment issues the book, so it lives with circulation.

A reservation in the available state holds one copy of the book: that copy
is off the shelf (not counted in available_copies) until the reservation is
fulfilled, or released when it expires or is cancelled. Released and
returned copies go to the oldest pending reservation first.
"""
import logging
from datetime import timedelta

from definitions import (
    Book, BookReservation, LibraryMember,
    AVAILABLE, CANCELLED, EXPIRED, FULFILLED, OPEN_RESERVATION_STATUSES, PENDING,
)
from errors import (
    BookUnavailableError, DuplicateReservationError, InvalidTransition,
    MemberNotEligibleError, ValidationError,
)
from helpers import get_or_404, today as current_date
from policy import resolve_policy

logger = logging.getLogger(__name__)

TRANSITIONS = {
    PENDING: (AVAILABLE, CANCELLED),
    AVAILABLE: (FULFILLED, EXPIRED, CANCELLED),
    FULFILLED: (),
    EXPIRED: (),
    CANCELLED: (),
}


def check_transition(reservation, status):
    if status not in TRANSITIONS:
        raise ValidationError(f"Unknown reservation status {status}")
    if status not in TRANSITIONS[reservation.status]:
        raise InvalidTransition(f"Reservation cannot go from {reservation.status} to {status}")


def queue_for_book(db, school_id, book_id):
    return (
        db.query(BookReservation)
        .filter(
            (BookReservation.school_id == school_id)
            & (BookReservation.book_id == book_id)
            & (BookReservation.status == PENDING)
        )
        # FIFO by reservation date
        .order_by(BookReservation.reservation_date, BookReservation.id)
        .all()
    )


def _take_from_shelf(db, book_id):
    return (
        db.query(Book)
        .filter((Book.id == book_id) & (Book.available_copies > 0))
        .update({Book.available_copies: Book.available_copies - 1}, synchronize_session=False)
    )


def _hold(reservation, policy, today):
    reservation.status = AVAILABLE
    reservation.available_date = today
    reservation.expiry_date = today + timedelta(days=policy.reservation_hold_days)
    reservation.notification_sent = False
    logger.info(
        "reservation %s: book %s held for member %s until %s",
        reservation.id, reservation.book_id, reservation.member_id, reservation.expiry_date,
    )


def hand_over_copy(db, school_id, book_id, policy=None, today=None):
    """Give a freed copy to the next pending reservation, or put it back on the shelf.

    Returns the promoted reservation, if any. The caller commits.
    """
    today = today or current_date()
    queue = queue_for_book(db, school_id, book_id)
    if queue:
        policy = policy or resolve_policy(db, school_id)
        _hold(queue[0], policy, today)
        return queue[0]

    updated = (
        db.query(Book)
        .filter((Book.id == book_id) & (Book.available_copies < Book.total_copies))
        .update({Book.available_copies: Book.available_copies + 1}, synchronize_session=False)
    )
    if not updated:
        logger.warning("book %s already has every copy on the shelf", book_id)
    return None


def promote_from_shelf(db, school_id, book_id, today=None):
    """Hold shelved copies for pending reservations, oldest first. The caller commits."""
    today = today or current_date()
    promoted = []
    policy = None
    for reservation in queue_for_book(db, school_id, book_id):
        if not _take_from_shelf(db, book_id):
            break
        policy = policy or resolve_policy(db, school_id)
        _hold(reservation, policy, today)
        promoted.append(reservation)
    return promoted


def create_reservation(db, school_id, book_id, member_id, today=None):
    today = today or current_date()
    book = get_or_404(db, Book, school_id, book_id)
    member = get_or_404(db, LibraryMember, school_id, member_id)

    if not member.is_active:
        raise MemberNotEligibleError('Member is not active')
    if not book.is_active:
        raise BookUnavailableError('Book has been removed from the catalog')

    existing = (
        db.query(BookReservation)
        .filter(
            (BookReservation.book_id == book.id)
            & (BookReservation.member_id == member.id)
            & (BookReservation.status.in_(OPEN_RESERVATION_STATUSES))
        )
        .first()
    )
    if existing:
        raise DuplicateReservationError()

    reservation = BookReservation(
        school_id=school_id,
        book_id=book.id,
        member_id=member.id,
        reservation_date=today,
        status=PENDING,
        notification_sent=False,
    )
    db.add(reservation)
    db.flush()
    promote_from_shelf(db, school_id, book.id, today=today)
    db.commit()
    logger.info("reservation %s created for book %s by member %s (%s)",
                reservation.id, book.id, member.id, reservation.status)
    return reservation


def mark_available(db, school_id, reservation_id, today=None):
    today = today or current_date()
    reservation = get_or_404(db, BookReservation, school_id, reservation_id)
    check_transition(reservation, AVAILABLE)

    if not _take_from_shelf(db, reservation.book_id):
        db.rollback()
        raise BookUnavailableError('No copy is on the shelf to hold for this reservation')

    _hold(reservation, resolve_policy(db, school_id), today)
    db.commit()
    return reservation


def _release(db, reservation, status, today):
    check_transition(reservation, status)
    was_holding = reservation.status == AVAILABLE
    reservation.status = status
    if was_holding:
        hand_over_copy(db, reservation.school_id, reservation.book_id, today=today)
    logger.info("reservation %s %s", reservation.id, status)


def cancel_reservation(db, school_id, reservation_id, today=None):
    reservation = get_or_404(db, BookReservation, school_id, reservation_id)
    _release(db, reservation, CANCELLED, today or current_date())
    db.commit()
    return reservation


def expire_reservation(db, school_id, reservation_id, today=None):
    reservation = get_or_404(db, BookReservation, school_id, reservation_id)
    _release(db, reservation, EXPIRED, today or current_date())
    db.commit()
    return reservation


def cancel_open_reservations(db, school_id, member_id=None, book_id=None, today=None):
    """Cancel the open reservations of a member or a book. The caller commits.

    Waiting reservations are cancelled before held ones.
    """
    today = today or current_date()
    query = db.query(BookReservation).filter(
        (BookReservation.school_id == school_id)
        & (BookReservation.status.in_(OPEN_RESERVATION_STATUSES))
    )
    if member_id is not None:
        query = query.filter(BookReservation.member_id == member_id)
    if book_id is not None:
        query = query.filter(BookReservation.book_id == book_id)

    open_reservations = query.order_by(BookReservation.id).all()
    open_reservations.sort(key=lambda r: r.status != PENDING)
    for reservation in open_reservations:
        _release(db, reservation, CANCELLED, today)
    return open_reservations


def expire_due_reservations(db, today=None):
    """Expire held reservations past their expiry date, for every school."""
    today = today or current_date()
    overdue_holds = (
        db.query(BookReservation)
        .filter((BookReservation.status == AVAILABLE) & (BookReservation.expiry_date < today))
        .order_by(BookReservation.expiry_date, BookReservation.id)
        .all()
    )
    for reservation in overdue_holds:
        _release(db, reservation, EXPIRED, today)
    db.commit()
    return overdue_holds


def list_reservations(db, school_id, status=None, member_id=None, book_id=None):
    query = db.query(BookReservation).filter(BookReservation.school_id == school_id)
    if status:
        query = query.filter(BookReservation.status == status)
    if member_id:
        query = query.filter(BookReservation.member_id == member_id)
    if book_id:
        query = query.filter(BookReservation.book_id == book_id)
    return query.order_by(BookReservation.reservation_date.desc(), BookReservation.id.desc()).all()
