from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lending.config import SQLALCHEMY_DATABASE_URL
from lending.models import Base


def build_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Sessions are used from the request thread pool and the notifier task
        connect_args = {"check_same_thread": False}
    return create_engine(url, connect_args=connect_args)


engine = build_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
