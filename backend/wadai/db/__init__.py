from wadai.db.session import async_session_maker, get_db, init_db
from wadai.db.base import Base, utcnow

__all__ = ["Base", "async_session_maker", "get_db", "init_db", "utcnow"]
