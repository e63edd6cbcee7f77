from datetime import datetime

import pytz
from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, Date, DateTime, DECIMAL, Text
from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MEMBER_TYPES = ('student', 'teacher', 'staff')

# transaction status
ISSUED = 'issued'
RETURNED = 'returned'
OVERDUE = 'overdue'
OPEN_TRANSACTION_STATUSES = (ISSUED, OVERDUE)

# reservation status
PENDING = 'pending'
AVAILABLE = 'available'
FULFILLED = 'fulfilled'
EXPIRED = 'expired'
CANCELLED = 'cancelled'
OPEN_RESERVATION_STATUSES = (PENDING, AVAILABLE)

INVENTORY_ACTIONS = ('added', 'removed', 'lost', 'damaged', 'discarded')


def _now():
    return datetime.now(pytz.utc).replace(tzinfo=None)


class LibrarySettings(Base):
    __tablename__ = 'library_settings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, unique=True)
    fine_per_day = Column(DECIMAL(10, 2), nullable=False, default=1)
    grace_period_days = Column(Integer, nullable=False, default=0)
    max_fine_amount = Column(DECIMAL(10, 2), nullable=False, default=100)
    student_borrowing_limit = Column(Integer, nullable=False, default=3)
    teacher_borrowing_limit = Column(Integer, nullable=False, default=5)
    staff_borrowing_limit = Column(Integer, nullable=False, default=3)
    student_borrowing_days = Column(Integer, nullable=False, default=14)
    teacher_borrowing_days = Column(Integer, nullable=False, default=30)
    staff_borrowing_days = Column(Integer, nullable=False, default=21)
    max_renewals = Column(Integer, nullable=False, default=2)
    reservation_hold_days = Column(Integer, nullable=False, default=3)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)


class Book(Base):
    __tablename__ = 'books'
    __table_args__ = (
        CheckConstraint('available_copies >= 0', name='ck_books_available_non_negative'),
        CheckConstraint('available_copies <= total_copies', name='ck_books_available_le_total'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    isbn = Column(String(32), nullable=True)
    edition = Column(String(64), nullable=True)
    publisher = Column(String(255), nullable=True)
    genre = Column(String(255), nullable=True)
    language = Column(String(64), nullable=False, default='English')
    rack_location = Column(String(64), nullable=True)
    description = Column(Text, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)


class LibraryMember(Base):
    __tablename__ = 'library_members'
    __table_args__ = (
        UniqueConstraint('school_id', 'member_code', name='uq_library_members_school_code'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    member_code = Column(String(64), nullable=False)
    member_type = Column(String(16), nullable=False)
    student_id = Column(String(64), nullable=True)
    staff_id = Column(String(64), nullable=True)
    borrowing_limit = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    suspended_until = Column(Date, nullable=True)
    suspension_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)


class BookTransaction(Base):
    __tablename__ = 'book_transactions'
    __table_args__ = (
        CheckConstraint('renewal_count <= max_renewals', name='ck_transactions_renewals'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey('books.id'), nullable=False)
    member_id = Column(Integer, ForeignKey('library_members.id'), nullable=False)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=True)
    status = Column(String(16), nullable=False, default=ISSUED)
    renewal_count = Column(Integer, nullable=False, default=0)
    max_renewals = Column(Integer, nullable=False, default=2)
    fine_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    fine_paid = Column(Boolean, nullable=False, default=False)
    fine_paid_date = Column(Date, nullable=True)
    issued_by = Column(String(64), nullable=True)
    returned_by = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)

    book = relationship('Book')
    member = relationship('LibraryMember')


class BookReservation(Base):
    __tablename__ = 'book_reservations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey('books.id'), nullable=False)
    member_id = Column(Integer, ForeignKey('library_members.id'), nullable=False)
    reservation_date = Column(Date, nullable=False)
    available_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=True)
    status = Column(String(16), nullable=False, default=PENDING)
    notification_sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)

    book = relationship('Book')
    member = relationship('LibraryMember')


class BookInventoryLog(Base):
    __tablename__ = 'book_inventory_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey('books.id'), nullable=False)
    action_type = Column(String(16), nullable=False)
    quantity_change = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)
    performed_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now)
