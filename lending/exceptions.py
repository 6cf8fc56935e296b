from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


class LendingException(Exception):
    """Base exception for lending errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class CopyUnavailableError(LendingException):
    """Raised when no available copy matches a borrow request."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, detail: str):
        super().__init__(f"No available copy for {detail}")


class UserNotFoundError(LendingException):
    """Raised when no user matches the given email."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User with email {email} not found")


class LoanNotExistsError(LendingException):
    """Raised when returning a loan that does not exist."""

    status_code = status.HTTP_428_PRECONDITION_REQUIRED

    def __init__(self, loan_id: int):
        self.loan_id = loan_id
        super().__init__(f"Loan with id {loan_id} does not exist")


class NotFoundError(LendingException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, key):
        super().__init__(f"{entity} with id {key} not found")


class MalformedRequestError(LendingException):
    def __init__(self, message: str):
        super().__init__(f"Malformed request: {message}")


class DatabaseError(LendingException):
    def __init__(self, operation: str, details: str):
        super().__init__(f"Database error during {operation}: {details}")


class ConstraintViolationError(DatabaseError):
    pass


# Exception handlers
INTERNAL_ERROR_DETAIL = "The lending service failed to process this request."


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
    logger.warning(f"{request.method} {request.url.path} rejected, invalid fields: {fields}")
    return JSONResponse(
        status_code=status.HTTP_412_PRECONDITION_FAILED,
        content={"detail": "Request failed validation", "fields": fields},
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"{request.url.path} produced an invalid response: {exc.errors()}")
    return JSONResponse(status_code=500, content={"detail": INTERNAL_ERROR_DETAIL})


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": INTERNAL_ERROR_DETAIL})


async def lending_exception_handler(request: Request, exc: LendingException):
    if exc.status_code >= 500:
        logger.error(f"Lending error: {exc}")
        detail = INTERNAL_ERROR_DETAIL
    else:
        logger.warning(f"Lending error: {exc}")
        detail = str(exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(
        ResponseValidationError, response_validation_exception_handler
    )
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(LendingException, lending_exception_handler)
