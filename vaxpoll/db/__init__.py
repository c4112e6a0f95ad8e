from vaxpoll.db.base import Base
from vaxpoll.db.session import create_state_engine, make_session_factory

__all__ = ["Base", "create_state_engine", "make_session_factory"]
