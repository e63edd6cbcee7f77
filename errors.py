class LibraryError(Exception):
    """Base exception for library and fee allocation errors."""

    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class ValidationError(LibraryError):
    """Request data failed validation."""


class NotFoundError(LibraryError):
    """Requested record does not exist for this school."""

    status_code = 404


class MemberNotEligibleError(LibraryError):
    """Member is inactive or suspended."""

    status_code = 403


class UnpaidFinesError(LibraryError):
    """Member has unpaid fines."""

    status_code = 403


class BorrowingLimitError(LibraryError):
    """Member has reached the borrowing limit."""

    status_code = 409


class BookUnavailableError(LibraryError):
    """Book is not available for issue."""

    status_code = 409


class InvalidTransactionState(LibraryError):
    """Transaction is not in a state that allows this operation."""

    status_code = 409


class RenewalLimitError(LibraryError):
    """Maximum renewals exceeded."""

    status_code = 409


class ReservationConflictError(LibraryError):
    """Book is reserved by another member."""

    status_code = 409


class DuplicateReservationError(LibraryError):
    """Member already has an open reservation for this book."""

    status_code = 409


class InvalidTransition(LibraryError):
    """Reservation status change is not allowed."""

    status_code = 409


class DuplicateMemberError(LibraryError):
    """Member code already registered for this school."""

    status_code = 409
