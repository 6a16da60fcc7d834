from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI, HTTPException, Depends, status
from sqlalchemy.orm import Session

from common.exceptions import add_exception_handlers
from lending import crud
from lending.circulation import lend_book, list_all_loans, list_user_loans, return_book
from lending.config import LENDING_PORT, OPERATOR_EMAIL, OPERATOR_PASSWORD
from lending.internal_message import setup_messaging, cleanup_messaging
from lending.models import User
from lending.schemas import (
    AllBorrowedBooksResponse,
    BookCreate,
    BookSchema,
    BorrowedBookSchema,
    BorrowedBooksResponse,
    BorrowerSchema,
    BorrowRequestSchema,
    LendResponse,
    LoanSchema,
    LoanWithBorrowerSchema,
    ReturnResponse,
    UserCreate,
    UserSchema,
)
from lending.security import get_current_user, require_operator
from lending.storage import SessionLocal, get_db, init_db

from typing import List

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        init_db()
        if OPERATOR_EMAIL and OPERATOR_PASSWORD:
            with SessionLocal() as db:
                crud.ensure_operator(db, OPERATOR_EMAIL, OPERATOR_PASSWORD)
        await setup_messaging(app)
    yield
    if not app.state.testing:
        await cleanup_messaging(app)


app = FastAPI(
    title="Library Lending API",
    lifespan=lifespan,
    description="Book lending, returns, fines and due-date reminders",
    version="1.0.0",
)

add_exception_handlers(app)


def borrower_view(db: Session, user: User) -> BorrowerSchema:
    loans = [
        BorrowedBookSchema.model_validate(loan) for loan in list_user_loans(db, user.id)
    ]
    return BorrowerSchema(
        id=user.id, username=user.username, email=user.email, loans=loans
    )


# Users
@app.post("/users/", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
def create_user(user: UserCreate, db: Session = Depends(get_db)):
    try:
        db_user = crud.create_user_record(db, user)
        return db_user
    except ValueError as e:
        logger.error(msg=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/users/me", response_model=UserSchema)
def read_current_user(user: User = Depends(get_current_user)):
    return user


@app.post("/users/{user_id}/verify", response_model=UserSchema)
def verify_user(
    user_id: int,
    db: Session = Depends(get_db),
    operator: User = Depends(require_operator),
):
    return crud.verify_user_account(db, user_id)


# Books
@app.post("/books/", response_model=BookSchema, status_code=status.HTTP_201_CREATED)
def add_book(
    book: BookCreate,
    db: Session = Depends(get_db),
    operator: User = Depends(require_operator),
):
    return crud.create_book(db, book)


@app.get("/books/", response_model=List[BookSchema], status_code=status.HTTP_200_OK)
def list_books(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return crud.get_books(db, skip=skip, limit=limit)


@app.get("/books/{book_id}", response_model=BookSchema)
def fetch_single_book(book_id: int, db: Session = Depends(get_db)):
    return crud.get_book(db, book_id)


# Borrowing
@app.post(
    "/borrow/lend/{book_id}",
    response_model=LendResponse,
    status_code=status.HTTP_201_CREATED,
)
def lend_book_item(
    book_id: int,
    borrow_request: BorrowRequestSchema,
    db: Session = Depends(get_db),
    operator: User = Depends(require_operator),
):
    loan = lend_book(db, book_id, borrow_request.email)
    return LendResponse(
        message="Book borrowed successfully",
        loan=LoanSchema.model_validate(loan),
        borrower=borrower_view(db, loan.user),
    )


@app.post("/borrow/return/{book_id}", response_model=ReturnResponse)
def return_book_item(
    book_id: int,
    borrow_request: BorrowRequestSchema,
    db: Session = Depends(get_db),
    operator: User = Depends(require_operator),
):
    loan = return_book(db, book_id, borrow_request.email)
    return ReturnResponse(
        message="Book returned successfully",
        loan=LoanSchema.model_validate(loan),
        fine=loan.fine,
        borrower=borrower_view(db, loan.user),
    )


@app.get("/borrow/admin/borrowed-books", response_model=AllBorrowedBooksResponse)
def list_all_borrowed_books(
    active_only: bool = False,
    db: Session = Depends(get_db),
    operator: User = Depends(require_operator),
):
    loans = list_all_loans(db, active_only)
    return AllBorrowedBooksResponse(
        borrowed_books=[LoanWithBorrowerSchema.model_validate(loan) for loan in loans]
    )


@app.get("/borrow/my-borrowed-books", response_model=BorrowedBooksResponse)
def list_my_borrowed_books(
    db: Session = Depends(get_db), user: User = Depends(get_current_user)
):
    loans = list_user_loans(db, user.id)
    return BorrowedBooksResponse(
        borrowed_books=[BorrowedBookSchema.model_validate(loan) for loan in loans]
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=LENDING_PORT)
