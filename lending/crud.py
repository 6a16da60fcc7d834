from datetime import datetime
import logging
from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import SQLAlchemyError
from typing import List, Optional
import bcrypt

from lending import models, schemas
from lending.config import BCRYPT_ROUNDS
from common.exceptions import (
    BookNotFoundError,
    DatabaseError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


# Users


def get_user_by_id(db: Session, user_id: int):
    try:
        user = db.query(models.User).filter(models.User.id == user_id).first()
        if user is None:
            raise UserNotFoundError(user_id)
        return user
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def find_user_by_email(db: Session, email: str) -> Optional[models.User]:
    try:
        return (
            db.query(models.User)
            .filter(models.User.email == email.strip().lower())
            .first()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def get_borrower_by_email(db: Session, email: str):
    """Only verified, active accounts can take part in a loan."""
    try:
        user = (
            db.query(models.User)
            .filter(
                models.User.email == email.strip().lower(),
                models.User.account_verified == True,
                models.User.is_active == True,
            )
            .first()
        )
        if user is None:
            raise UserNotFoundError(email)
        return user
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def create_user_record(
    db: Session,
    user: schemas.UserCreate,
    role: str = models.Role.MEMBER,
    verified: bool = False,
):
    if find_user_by_email(db, user.email) is not None:
        raise ValueError(f"Email {user.email} is already registered")
    try:
        db_user = models.User(
            username=user.username,
            email=user.email.strip().lower(),
            hashed_password=hash_password(user.password),
            role=role,
            account_verified=verified,
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        return db_user
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("create", str(e))


def verify_user_account(db: Session, user_id: int):
    user = get_user_by_id(db, user_id)
    try:
        user.account_verified = True
        db.commit()
        db.refresh(user)
        return user
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("verify", str(e))


def ensure_operator(db: Session, email: str, password: str):
    existing = find_user_by_email(db, email)
    if existing is not None:
        return existing
    logger.info(f"Creating operator account {email}")
    operator = schemas.UserCreate(username=email.split("@")[0], email=email, password=password)
    return create_user_record(db, operator, role=models.Role.ADMIN, verified=True)


# Books


def create_book(db: Session, item: schemas.BookCreate):
    try:
        db_item = models.Book(**item.model_dump(), is_available=item.quantity > 0)
        db.add(db_item)
        db.commit()
        db.refresh(db_item)
        return db_item
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("create", str(e))


def get_book(db: Session, book_id: int):
    try:
        book = db.query(models.Book).filter(models.Book.id == book_id).first()
        if book is None:
            raise BookNotFoundError(book_id)
        return book
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def get_books(db: Session, skip: int = 0, limit: int = 100) -> List[models.Book]:
    try:
        return (
            db.query(models.Book).order_by(models.Book.id).offset(skip).limit(limit).all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def _refresh_availability(db: Session, book_id: int):
    # Reads the quantity written by the preceding statement
    db.execute(
        update(models.Book)
        .where(models.Book.id == book_id)
        .values(is_available=models.Book.quantity > 0)
        .execution_options(synchronize_session=False)
    )


def reserve_copy(db: Session, book_id: int) -> bool:
    """Take one copy off the shelf if any is left. Not committed."""
    try:
        result = db.execute(
            update(models.Book)
            .where(models.Book.id == book_id, models.Book.quantity > 0)
            .values(quantity=models.Book.quantity - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        _refresh_availability(db, book_id)
        return True
    except SQLAlchemyError as e:
        raise DatabaseError("reserve", str(e))


def release_copy(db: Session, book_id: int) -> bool:
    """Put one copy back on the shelf. Not committed."""
    try:
        result = db.execute(
            update(models.Book)
            .where(models.Book.id == book_id)
            .values(quantity=models.Book.quantity + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        _refresh_availability(db, book_id)
        return True
    except SQLAlchemyError as e:
        raise DatabaseError("release", str(e))


# Loans


def get_active_loan(db: Session, user_id: int, book_id: int) -> Optional[models.Loan]:
    try:
        return (
            db.query(models.Loan)
            .filter(
                models.Loan.user_id == user_id,
                models.Loan.book_id == book_id,
                models.Loan.returned == False,
            )
            .first()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def close_loan(db: Session, loan_id: int, returned_date: datetime, fine: float) -> bool:
    """Mark an active loan returned. False when it was already closed. Not committed."""
    try:
        result = db.execute(
            update(models.Loan)
            .where(models.Loan.id == loan_id, models.Loan.returned == False)
            .values(returned=True, returned_date=returned_date, fine=fine)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
    except SQLAlchemyError as e:
        raise DatabaseError("return", str(e))


def get_user_loans(db: Session, user_id: int) -> List[models.Loan]:
    try:
        return (
            db.query(models.Loan)
            .filter(models.Loan.user_id == user_id)
            .options(selectinload(models.Loan.book))
            .order_by(models.Loan.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def get_all_loans(db: Session, active_only: bool = False) -> List[models.Loan]:
    try:
        query = db.query(models.Loan).options(
            selectinload(models.Loan.user), selectinload(models.Loan.book)
        )
        if active_only:
            query = query.filter(models.Loan.returned == False)
        return query.order_by(models.Loan.id).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def get_loans_due_for_reminder(db: Session, cutoff: datetime) -> List[models.Loan]:
    try:
        return (
            db.query(models.Loan)
            .filter(
                models.Loan.due_date <= cutoff,
                models.Loan.returned == False,
                models.Loan.notified == False,
            )
            .options(selectinload(models.Loan.user), selectinload(models.Loan.book))
            .order_by(models.Loan.due_date)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def mark_loan_notified(db: Session, loan_id: int) -> bool:
    """Flip notified once, and only while the loan is still out."""
    try:
        result = db.execute(
            update(models.Loan)
            .where(
                models.Loan.id == loan_id,
                models.Loan.returned == False,
                models.Loan.notified == False,
            )
            .values(notified=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("notify", str(e))
