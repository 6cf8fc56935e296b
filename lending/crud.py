import logging
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import List, Optional

from lending import models, schemas
from lending.exceptions import (
    ConstraintViolationError,
    DatabaseError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


def _persist(db: Session, record, operation: str):
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
        return record
    except IntegrityError as e:
        db.rollback()
        raise ConstraintViolationError(operation, str(e.orig))
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(operation, str(e))


def create_book(db: Session, item: schemas.BookCreate) -> models.Book:
    return _persist(db, models.Book(**item.model_dump()), "create book")


def get_book(db: Session, book_id: int) -> models.Book:
    try:
        book = db.query(models.Book).filter(models.Book.id == book_id).first()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if book is None:
        raise NotFoundError("Book", book_id)
    return book


def list_books(db: Session, skip: int = 0, limit: int = 100) -> List[models.Book]:
    try:
        return db.query(models.Book).order_by(models.Book.id).offset(skip).limit(limit).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def create_library(db: Session, item: schemas.LibraryCreate) -> models.Library:
    return _persist(db, models.Library(**item.model_dump()), "create library")


def get_library(db: Session, slug: str) -> models.Library:
    try:
        library = db.query(models.Library).filter(models.Library.slug == slug).first()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if library is None:
        raise NotFoundError("Library", slug)
    return library


def list_libraries(db: Session) -> List[models.Library]:
    try:
        return db.query(models.Library).order_by(models.Library.slug).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def create_copy(db: Session, item: schemas.CopyCreate) -> models.Copy:
    # Both references must exist before the copy can be seeded
    get_book(db, item.book_id)
    get_library(db, item.library_slug)
    return _persist(db, models.Copy(**item.model_dump()), "create copy")


def get_copy(db: Session, copy_id: int) -> models.Copy:
    try:
        copy = db.query(models.Copy).filter(models.Copy.id == copy_id).first()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if copy is None:
        raise NotFoundError("Copy", copy_id)
    return copy


def find_copies(
    db: Session,
    library_slug: str,
    book_id: int,
    status: Optional[models.CopyStatus] = None,
) -> List[models.Copy]:
    try:
        query = db.query(models.Copy).filter(
            models.Copy.library_slug == library_slug,
            models.Copy.book_id == book_id,
        )
        if status is not None:
            query = query.filter(models.Copy.status == status)
        return query.order_by(models.Copy.id).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def create_user_record(db: Session, user: schemas.UserCreate) -> models.User:
    return _persist(db, models.User(**user.model_dump()), "create user")


def find_users_by_email(db: Session, email: str) -> List[models.User]:
    try:
        return (
            db.query(models.User)
            .filter(models.User.email == email)
            .order_by(models.User.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def get_users(db: Session, skip: int = 0, limit: int = 100) -> List[models.User]:
    try:
        return db.query(models.User).order_by(models.User.id).offset(skip).limit(limit).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def get_loan(db: Session, loan_id: int) -> models.Loan:
    try:
        loan = db.query(models.Loan).filter(models.Loan.id == loan_id).first()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if loan is None:
        raise NotFoundError("Loan", loan_id)
    return loan


def find_loans_by_copy(db: Session, copy_id: int) -> List[models.Loan]:
    try:
        return (
            db.query(models.Loan)
            .filter(models.Loan.copy_id == copy_id)
            .order_by(models.Loan.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def find_open_loans(db: Session, library_slug: str, book_id: int) -> List[models.Loan]:
    try:
        return (
            db.query(models.Loan)
            .join(models.Loan.copy)
            .filter(
                models.Loan.end_date.is_(None),
                models.Copy.library_slug == library_slug,
                models.Copy.book_id == book_id,
            )
            .order_by(models.Loan.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
