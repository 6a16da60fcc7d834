from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.orm import Session

from common.exceptions import ForbiddenError
from lending import crud, models
from lending.storage import get_db

security = HTTPBasic()


def get_current_user(
    credentials: HTTPBasicCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> models.User:
    user = crud.find_user_by_email(db, credentials.username)
    if (
        user is None
        or not user.is_active
        or not crud.verify_password(credentials.password, user.hashed_password)
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return user


def require_operator(user: models.User = Depends(get_current_user)) -> models.User:
    if not user.is_operator:
        raise ForbiddenError()
    return user
