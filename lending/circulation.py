"""Lending and returning books.

Both operations run their check-then-mutate sequence inside one database
transaction while holding a per-book lock, so concurrent requests touching the
same book are serialized within the process. The store itself backs this up:
stock is taken with a conditional ``UPDATE ... WHERE quantity > 0``, loans are
closed with ``UPDATE ... WHERE NOT returned`` and a partial unique index allows
one active loan per borrower and book. Any failure rolls the whole unit back.
"""

import contextlib
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from common.exceptions import (
    BorrowerForbiddenError,
    DatabaseError,
    DuplicateLoanError,
    NoActiveLoanError,
    OutOfStockError,
)
from lending import crud, models
from lending.config import LOAN_PERIOD_DAYS
from lending.fines import compute_fine

logger = logging.getLogger(__name__)

LOAN_PERIOD = timedelta(days=LOAN_PERIOD_DAYS)


class BookLocks:
    """Registry of one lock per book id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    @contextlib.contextmanager
    def hold(self, book_id: int):
        with self._guard:
            lock = self._locks.setdefault(book_id, threading.Lock())
        with lock:
            yield


book_locks = BookLocks()


@contextlib.contextmanager
def _unit_of_work(db: Session, operation: str):
    try:
        yield
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(operation, str(e))
    except Exception:
        db.rollback()
        raise


def lend_book(
    db: Session, book_id: int, borrower_email: str, now: Optional[datetime] = None
) -> models.Loan:
    borrower = crud.get_borrower_by_email(db, borrower_email)
    if borrower.is_operator:
        raise BorrowerForbiddenError(borrower.email)
    crud.get_book(db, book_id)

    with book_locks.hold(book_id):
        try:
            with _unit_of_work(db, "lend"):
                book = crud.get_book(db, book_id)
                if book.quantity <= 0:
                    raise OutOfStockError(book_id)
                if crud.get_active_loan(db, borrower.id, book_id) is not None:
                    raise DuplicateLoanError(borrower.id, book_id)
                if not crud.reserve_copy(db, book_id):
                    raise OutOfStockError(book_id)

                borrowed_date = now or models.utcnow()
                loan = models.Loan(
                    user_id=borrower.id,
                    book_id=book_id,
                    price=book.price,
                    borrowed_date=borrowed_date,
                    due_date=borrowed_date + LOAN_PERIOD,
                    returned=False,
                    fine=0,
                    notified=False,
                )
                db.add(loan)
                db.flush()
        except IntegrityError as e:
            # Another process may have won the race for this borrower and book
            if crud.get_active_loan(db, borrower.id, book_id) is not None:
                raise DuplicateLoanError(borrower.id, book_id)
            raise DatabaseError("lend", str(e))

    db.refresh(loan)
    logger.info(f"Book {book_id} lent to user {borrower.id}, due {loan.due_date}")
    return loan


def return_book(
    db: Session, book_id: int, borrower_email: str, now: Optional[datetime] = None
) -> models.Loan:
    borrower = crud.get_borrower_by_email(db, borrower_email)
    crud.get_book(db, book_id)

    with book_locks.hold(book_id):
        with _unit_of_work(db, "return"):
            loan = crud.get_active_loan(db, borrower.id, book_id)
            if loan is None:
                raise NoActiveLoanError(borrower.id, book_id)

            returned_date = now or models.utcnow()
            fine = compute_fine(loan.due_date, returned_date)
            if not crud.close_loan(db, loan.id, returned_date, fine):
                raise NoActiveLoanError(borrower.id, book_id)
            crud.release_copy(db, book_id)

    db.refresh(loan)
    logger.info(f"Book {book_id} returned by user {borrower.id}, fine {loan.fine}")
    return loan


def list_user_loans(db: Session, user_id: int) -> List[models.Loan]:
    crud.get_user_by_id(db, user_id)
    return crud.get_user_loans(db, user_id)


def list_all_loans(db: Session, active_only: bool = False) -> List[models.Loan]:
    return crud.get_all_loans(db, active_only=active_only)
