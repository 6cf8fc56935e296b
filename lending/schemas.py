from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional

from lending.models import CopyStatus

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


class BookBase(BaseModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)


class BookCreate(BookBase):
    pass


class BookSchema(BookBase):
    id: int

    class Config:
        from_attributes = True


class LibraryBase(BaseModel):
    slug: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9-]+$")
    name: str = Field(..., min_length=1)


class LibraryCreate(LibraryBase):
    pass


class LibrarySchema(LibraryBase):
    class Config:
        from_attributes = True


class CopyCreate(BaseModel):
    """New copies always start AVAILABLE; status only changes through loans."""

    book_id: int
    library_slug: str

    class Config:
        extra = "forbid"


class CopySchema(BaseModel):
    id: int
    status: CopyStatus
    book: BookSchema
    library: LibrarySchema

    class Config:
        from_attributes = True


class CopySearchParams(BaseModel):
    library_slug: str = Field(..., min_length=1)
    book_id: int
    status: Optional[CopyStatus] = None


class UserBase(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)
    name: Optional[str] = None


class UserCreate(UserBase):
    pass


class UserSchema(UserBase):
    id: int

    class Config:
        from_attributes = True


class LoanRequestSchema(BaseModel):
    """Borrow a specific copy on behalf of the user with ``email``."""

    copy_id: int
    email: str = Field(..., pattern=EMAIL_PATTERN)


class BookLoanRequestSchema(BaseModel):
    """Borrow any available copy of a book at a library."""

    email: str = Field(..., pattern=EMAIL_PATTERN)


class LoanSchema(BaseModel):
    id: int
    start_date: datetime
    end_date: Optional[datetime] = None
    book_copy: CopySchema = Field(..., alias="copy")
    user: UserSchema

    class Config:
        from_attributes = True
        json_encoders = {datetime: lambda v: v.isoformat() if v else None}
