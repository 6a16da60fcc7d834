from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


class LibraryException(Exception):
    """Base exception for library-related errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "library_error"


class NotFoundError(LibraryException):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class BookNotFoundError(NotFoundError):
    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__(f"Book with ID {book_id} not found")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_ref: int | str):
        self.user_ref = user_ref
        super().__init__(f"User {user_ref} not found")


class ForbiddenError(LibraryException):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"

    def __init__(self, message: str = "Access denied. Operator role required."):
        super().__init__(message)


class BorrowerForbiddenError(ForbiddenError):
    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User {email} has an operator role and cannot borrow books")


class OutOfStockError(LibraryException):
    code = "out_of_stock"

    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__(f"Book with ID {book_id} is out of stock")


class DuplicateLoanError(LibraryException):
    code = "duplicate_loan"

    def __init__(self, user_id: int, book_id: int):
        self.user_id = user_id
        self.book_id = book_id
        super().__init__(f"User {user_id} already has book {book_id} borrowed")


class NoActiveLoanError(LibraryException):
    code = "no_active_loan"

    def __init__(self, user_id: int, book_id: int):
        self.user_id = user_id
        self.book_id = book_id
        super().__init__(f"No active borrow record found for user {user_id} and book {book_id}")


class DatabaseError(LibraryException):
    """Transient store failure. The operation was rolled back and may be retried."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "store_unavailable"

    def __init__(self, operation: str, details: str):
        self.operation = operation
        super().__init__(f"Database error during {operation}: {details}")


class NotificationDispatchError(LibraryException):
    """Raised by notification senders; handled by the notifier, never by the API."""

    code = "notification_failed"

    def __init__(self, recipient: str, details: str):
        self.recipient = recipient
        super().__init__(f"Could not send notification to {recipient}: {details}")


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Invalid request parameters. Please check your input.",
            "code": "validation_error",
        },
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"Response validation error: {exc.errors()}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "The server encountered an unexpected error. Please contact support."
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please contact support."},
    )


async def library_exception_handler(request: Request, exc: LibraryException):
    logger.error(f"Library error ({exc.code}): {str(exc)}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
    )


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(
        ResponseValidationError, response_validation_exception_handler
    )
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(LibraryException, library_exception_handler)
