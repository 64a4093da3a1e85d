"""Database models package."""
from models.database import Base, get_session, init_db, get_engine
from models.domain import Domain

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "get_engine",
    "Domain",
]
