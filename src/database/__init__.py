from src.database.base import Base, TenantScopedMixin, TimestampMixin, UUIDPrimaryKeyMixin
from src.database.engine import async_session, engine
from src.database.session import get_db, session_scope

__all__ = [
    "Base",
    "TenantScopedMixin",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "async_session",
    "engine",
    "get_db",
    "session_scope",
]
