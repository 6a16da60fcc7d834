from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role:
    MEMBER = "member"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False, default=Role.MEMBER)
    account_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    @property
    def is_operator(self) -> bool:
        return self.role == Role.ADMIN


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_books_quantity_non_negative"),
        CheckConstraint("price >= 0", name="ck_books_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)


class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("fine >= 0", name="ck_loans_fine_non_negative"),
        CheckConstraint(
            "(returned AND returned_date IS NOT NULL) "
            "OR (NOT returned AND returned_date IS NULL)",
            name="ck_loans_returned_date",
        ),
        # One active loan per borrower and book
        Index(
            "uq_loans_active_user_book",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=text("NOT returned"),
            postgresql_where=text("NOT returned"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    price = Column(Float, nullable=False)
    borrowed_date = Column(DateTime, nullable=False, default=utcnow)
    due_date = Column(DateTime, nullable=False)
    returned = Column(Boolean, nullable=False, default=False)
    returned_date = Column(DateTime, nullable=True)
    fine = Column(Float, nullable=False, default=0)
    notified = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="loans")
    book = relationship("Book", back_populates="loans")


User.loans = relationship("Loan", back_populates="user", order_by=Loan.id)
Book.loans = relationship("Loan", back_populates="book", order_by=Loan.id)
