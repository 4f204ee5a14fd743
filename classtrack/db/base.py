from classtrack.db.base_class import Base

# import models so SQLAlchemy registers them
from classtrack.models import participation_record, participation_request, user  # noqa: F401

__all__ = ["Base"]
