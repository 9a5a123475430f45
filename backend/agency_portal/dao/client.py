"""Client Data Access Object (DAO)."""

from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.dao.base import BaseDAO
from agency_portal.models.client import Client


class ClientDAO(BaseDAO[Client]):
    """Data Access Object for Client model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Client, session)
