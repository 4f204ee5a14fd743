from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from classtrack.core.config import DATABASE_URL


def make_engine(url: str = DATABASE_URL):
    connect_args = {}
    if url.startswith("sqlite"):
        # sessions are opened from Starlette's threadpool
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args)


def make_session_factory(bind) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


engine = make_engine()

SessionLocal = make_session_factory(engine)
