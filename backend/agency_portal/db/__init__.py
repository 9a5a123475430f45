"""Database package"""

from agency_portal.db.session import AsyncSessionLocal, engine, get_db
from agency_portal.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
