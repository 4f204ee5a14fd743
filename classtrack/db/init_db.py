from classtrack.db.base import Base
from classtrack.db.session import engine


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)
