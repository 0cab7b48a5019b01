from dm_engine.db import session as db_session
from dm_engine.db.base import Base
from dm_engine.db import models  # noqa: F401


def init_db() -> None:
    Base.metadata.create_all(bind=db_session.engine)
