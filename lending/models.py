import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class CopyStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BORROWED = "BORROWED"


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)


class Library(Base):
    __tablename__ = "libraries"

    slug = Column(String, primary_key=True)
    name = Column(String, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)


class Copy(Base):
    __tablename__ = "copies"

    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    library_slug = Column(String, ForeignKey("libraries.slug"), nullable=False)
    status = Column(Enum(CopyStatus), nullable=False, default=CopyStatus.AVAILABLE)

    book = relationship("Book", back_populates="copies")
    library = relationship("Library", back_populates="copies")


class Loan(Base):
    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, index=True)
    copy_id = Column(Integer, ForeignKey("copies.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)

    copy = relationship("Copy", back_populates="loans")
    user = relationship("User", back_populates="loans")

    # At most one open loan per copy
    __table_args__ = (
        Index(
            "ix_loans_open_copy",
            "copy_id",
            unique=True,
            sqlite_where=text("end_date IS NULL"),
            postgresql_where=text("end_date IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.end_date is None


Book.copies = relationship("Copy", back_populates="book")
Library.copies = relationship("Copy", back_populates="library")
Copy.loans = relationship("Loan", back_populates="copy")
User.loans = relationship("Loan", back_populates="user")
