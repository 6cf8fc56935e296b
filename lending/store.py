"""Persistence interface consumed by the loan service.

``EntityStore`` is the only thing :class:`lending.loans.LoanService` knows
about the database. Lookups delegate to :mod:`lending.crud`; saves only
flush, so the copy update and the new or closed loan are committed together
by :meth:`EntityStore.commit`.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from lending import crud, models
from lending.exceptions import ConstraintViolationError, DatabaseError

logger = logging.getLogger(__name__)


class EntityStore:
    def __init__(self, db: Session):
        self.db = db

    def find_copy_by_id(self, copy_id: int) -> Optional[models.Copy]:
        try:
            return self.db.get(models.Copy, copy_id)
        except SQLAlchemyError as e:
            raise DatabaseError("fetch", str(e))

    def find_available_copies(self, library_slug: str, book_id: int) -> List[models.Copy]:
        """Available copies of ``book_id`` at ``library_slug``, lowest id first."""
        return crud.find_copies(
            self.db, library_slug, book_id, status=models.CopyStatus.AVAILABLE
        )

    def find_users_by_email(self, email: str) -> List[models.User]:
        return crud.find_users_by_email(self.db, email)

    def find_loan_by_id(self, loan_id: int) -> Optional[models.Loan]:
        try:
            return self.db.get(models.Loan, loan_id)
        except SQLAlchemyError as e:
            raise DatabaseError("fetch", str(e))

    def save_copy(self, copy: models.Copy) -> models.Copy:
        self._flush(copy, "save copy")
        return copy

    def save_loan(self, loan: models.Loan) -> models.Loan:
        self._flush(loan, "save loan")
        return loan

    def close_loan(self, loan: models.Loan, end_date: datetime) -> bool:
        """Set ``end_date`` only if the loan is still open in the database.

        Returns False when another transaction closed it first; ``loan`` is
        then reloaded with the stored ``end_date``.
        """
        try:
            result = self.db.execute(
                update(models.Loan)
                .where(models.Loan.id == loan.id, models.Loan.end_date.is_(None))
                .values(end_date=end_date)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.refresh(loan)
                return False
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseError("close loan", str(e))
        set_committed_value(loan, "end_date", end_date)
        return True

    def commit(self):
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConstraintViolationError("commit", str(e.orig))
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseError("commit", str(e))

    def rollback(self):
        self.db.rollback()

    def _flush(self, record, operation: str):
        try:
            self.db.add(record)
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise ConstraintViolationError(operation, str(e.orig))
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseError(operation, str(e))
