import os
from contextlib import asynccontextmanager
import logging
from fastapi import Body, FastAPI, HTTPException, Depends, Response, status
from sqlalchemy.orm import Session
from dotenv import load_dotenv

from lending import crud
from lending.exceptions import (
    ConstraintViolationError,
    MalformedRequestError,
    add_exception_handlers,
)
from lending.loans import LoanService
from lending.models import Base
from lending.schemas import (
    BookCreate,
    BookLoanRequestSchema,
    BookSchema,
    CopyCreate,
    CopySchema,
    CopySearchParams,
    LibraryCreate,
    LibrarySchema,
    LoanRequestSchema,
    LoanSchema,
    UserCreate,
    UserSchema,
)
from lending.storage import SessionLocal, engine
from lending.store import EntityStore

from typing import List, Optional

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Library Lending API",
    lifespan=lifespan,
    description="Books, copies, users and loans for a network of library branches",
    version="1.0.0",
)

add_exception_handlers(app)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_loan_service(db: Session = Depends(get_db)) -> LoanService:
    return LoanService(EntityStore(db))


def _create(create_fn, db: Session, item, entity: str):
    try:
        return create_fn(db, item)
    except ConstraintViolationError as e:
        logger.error(msg=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"{entity} already exists"
        )


# Books
@app.post("/books/", response_model=BookSchema, status_code=status.HTTP_201_CREATED)
def add_book(book: BookCreate, db: Session = Depends(get_db)):
    return _create(crud.create_book, db, book, "Book")


@app.get("/books/", response_model=List[BookSchema])
def list_books(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    return crud.list_books(db, skip, limit)


@app.get("/books/{book_id}", response_model=BookSchema)
def fetch_single_book(book_id: int, db: Session = Depends(get_db)):
    return crud.get_book(db, book_id)


# Libraries
@app.post(
    "/libraries/", response_model=LibrarySchema, status_code=status.HTTP_201_CREATED
)
def add_library(library: LibraryCreate, db: Session = Depends(get_db)):
    return _create(crud.create_library, db, library, "Library")


@app.get("/libraries/", response_model=List[LibrarySchema])
def list_libraries(db: Session = Depends(get_db)):
    return crud.list_libraries(db)


@app.get("/libraries/{slug}", response_model=LibrarySchema)
def fetch_library(slug: str, db: Session = Depends(get_db)):
    return crud.get_library(db, slug)


# Copies
@app.post("/copies/", response_model=CopySchema, status_code=status.HTTP_201_CREATED)
def add_copy(copy: CopyCreate, db: Session = Depends(get_db)):
    return _create(crud.create_copy, db, copy, "Copy")


@app.get("/copies/search", response_model=List[CopySchema])
def search_copies(params: CopySearchParams = Depends(), db: Session = Depends(get_db)):
    return crud.find_copies(db, params.library_slug, params.book_id, params.status)


@app.get("/copies/{copy_id}", response_model=CopySchema)
def fetch_copy(copy_id: int, db: Session = Depends(get_db)):
    return crud.get_copy(db, copy_id)


@app.get("/copies/{copy_id}/loans", response_model=List[LoanSchema])
def list_copy_loans(copy_id: int, db: Session = Depends(get_db)):
    crud.get_copy(db, copy_id)
    return crud.find_loans_by_copy(db, copy_id)


# Users
@app.post("/users/", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
def create_user(user: UserCreate, db: Session = Depends(get_db)):
    return _create(crud.create_user_record, db, user, "User")


@app.get("/users/search", response_model=List[UserSchema])
def search_users(email: str, db: Session = Depends(get_db)):
    return crud.find_users_by_email(db, email)


@app.get("/users/", response_model=List[UserSchema])
def list_users(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    return crud.get_users(db, skip, limit)


# Loans
@app.post("/loans/", response_model=LoanSchema, status_code=status.HTTP_201_CREATED)
def borrow_copy(
    loan_request: Optional[LoanRequestSchema] = Body(None),
    service: LoanService = Depends(get_loan_service),
):
    if loan_request is None:
        raise MalformedRequestError("loan body is missing")
    logger.info(f"Borrow request for copy {loan_request.copy_id} by {loan_request.email}")
    return service.borrow_copy_by_id(loan_request.copy_id, loan_request.email)


@app.post(
    "/libraries/{slug}/books/{book_id}/loans/",
    response_model=LoanSchema,
    status_code=status.HTTP_201_CREATED,
)
def borrow_book(
    slug: str,
    book_id: int,
    loan_request: Optional[BookLoanRequestSchema] = Body(None),
    service: LoanService = Depends(get_loan_service),
):
    if loan_request is None:
        raise MalformedRequestError("loan body is missing")
    logger.info(f"Borrow request for book {book_id} at {slug} by {loan_request.email}")
    return service.borrow_copy(slug, book_id, loan_request.email)


@app.get("/loans/search/open", response_model=List[LoanSchema])
def list_open_loans(library_slug: str, book_id: int, db: Session = Depends(get_db)):
    return crud.find_open_loans(db, library_slug, book_id)


@app.get("/loans/{loan_id}", response_model=LoanSchema)
def fetch_loan(loan_id: int, db: Session = Depends(get_db)):
    return crud.get_loan(db, loan_id)


@app.put("/loans/{loan_id}/return", status_code=status.HTTP_204_NO_CONTENT)
def return_copy(loan_id: int, service: LoanService = Depends(get_loan_service)):
    service.return_copy(loan_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("LENDING_PORT", "8000"))
    print(f"Starting lending server on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
