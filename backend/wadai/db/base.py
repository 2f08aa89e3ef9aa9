from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    """Timezone-aware UTC now; used for column defaults and expiry math."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass
