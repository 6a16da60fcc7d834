from datetime import datetime
import json
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional


class DateTimeEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def custom_json_dumps(obj: Any) -> str:
    return json.dumps(obj, cls=DateTimeEncoder)


class BookBase(BaseModel):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    description: str = ""
    price: float = Field(ge=0)


class BookCreate(BookBase):
    quantity: int = Field(ge=0)


class BookSchema(BookBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quantity: int
    is_available: bool


class BookSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    author: str
    price: float


class UserBase(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=254)


class UserCreate(UserBase):
    password: str = Field(min_length=6)


class UserSummary(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: int


class UserSchema(UserSummary):
    role: str
    account_verified: bool
    is_active: bool


class LoanSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    book_id: int
    price: float
    borrowed_date: datetime
    due_date: datetime
    returned: bool
    returned_date: Optional[datetime] = None
    fine: float
    notified: bool


class BorrowedBookSchema(LoanSchema):
    book: Optional[BookSummary] = None


class LoanWithBorrowerSchema(BorrowedBookSchema):
    user: Optional[UserSummary] = None


class BorrowerSchema(UserSummary):
    loans: list[BorrowedBookSchema] = []


class BorrowRequestSchema(BaseModel):
    email: str = Field(min_length=3, max_length=254)


class LendResponse(BaseModel):
    message: str
    loan: LoanSchema
    borrower: BorrowerSchema


class ReturnResponse(BaseModel):
    message: str
    loan: LoanSchema
    fine: float
    borrower: BorrowerSchema


class BorrowedBooksResponse(BaseModel):
    borrowed_books: list[BorrowedBookSchema]


class AllBorrowedBooksResponse(BaseModel):
    borrowed_books: list[LoanWithBorrowerSchema]


class DueDateReminder(BaseModel):
    """Everything the notifier needs to remind one borrower, detached from the session."""

    loan_id: int
    email: str
    username: str
    book_title: str
    due_date: datetime
