"""Borrow and return transitions for library copies.

A copy is AVAILABLE exactly when no open loan (``end_date`` unset) points at
it. ``LoanService`` is the only code that moves a copy between AVAILABLE and
BORROWED, and it always does so together with opening or closing a loan.
"""
import logging
from datetime import datetime, timezone
from typing import Callable

from lending.exceptions import (
    ConstraintViolationError,
    CopyUnavailableError,
    LoanNotExistsError,
    UserNotFoundError,
)
from lending.models import Copy, CopyStatus, Loan, User
from lending.store import EntityStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LoanService:
    """Service for borrowing and returning copies."""

    def __init__(self, store: EntityStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def borrow_copy(self, library_slug: str, book_id: int, user_email: str) -> Loan:
        """Lend the lowest-id available copy of a book at a library.

        Raises ``CopyUnavailableError`` when the library holds no available
        copy of the book and ``UserNotFoundError`` when no user has
        ``user_email``. Nothing is written in either case.
        """
        copies = self.store.find_available_copies(library_slug, book_id)
        if not copies:
            raise CopyUnavailableError(f"book {book_id} at library {library_slug}")
        return self._lend(copies[0], user_email)

    def borrow_copy_by_id(self, copy_id: int, user_email: str) -> Loan:
        """Lend one specific copy; a missing copy counts as unavailable."""
        copy = self.store.find_copy_by_id(copy_id)
        if copy is None or copy.status != CopyStatus.AVAILABLE:
            raise CopyUnavailableError(f"copy {copy_id}")
        return self._lend(copy, user_email)

    def return_copy(self, loan_id: int) -> Loan:
        """Close an open loan and make its copy available again.

        Returning a loan that is already closed changes nothing and returns
        the loan as stored.
        """
        loan = self.store.find_loan_by_id(loan_id)
        if loan is None:
            raise LoanNotExistsError(loan_id)

        if loan.end_date is not None:
            logger.info(f"Loan {loan_id} already returned on {loan.end_date}")
            return loan

        if not self.store.close_loan(loan, self.clock()):
            # Closed by a concurrent return since it was loaded
            self.store.rollback()
            logger.info(f"Loan {loan_id} was returned concurrently")
            return loan

        loan.copy.status = CopyStatus.AVAILABLE
        self.store.save_copy(loan.copy)
        self.store.commit()

        logger.info(f"Copy {loan.copy.id} returned, loan {loan_id} closed")
        return loan

    def _find_user(self, email: str) -> User:
        users = self.store.find_users_by_email(email)
        if not users:
            raise UserNotFoundError(email)
        return users[0]

    def _lend(self, copy: Copy, user_email: str) -> Loan:
        user = self._find_user(user_email)

        copy.status = CopyStatus.BORROWED
        loan = Loan(copy=copy, user=user, start_date=self.clock(), end_date=None)
        try:
            # Loan must be in the session before the copy that lists it is flushed
            self.store.save_loan(loan)
            self.store.save_copy(copy)
            self.store.commit()
        except ConstraintViolationError as e:
            # Another request opened a loan on this copy first
            logger.warning(f"Borrow of copy {copy.id} lost a race: {e}")
            raise CopyUnavailableError(f"copy {copy.id}")

        logger.info(f"Copy {copy.id} borrowed by {user.email}, loan {loan.id}")
        return loan
