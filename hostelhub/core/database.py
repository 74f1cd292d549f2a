from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from hostelhub.core.config import settings
from typing import AsyncGenerator
import asyncio
import logging

from hostelhub.models.base import Base

import hostelhub.models

logger = logging.getLogger(__name__)

class DatabaseManager:
    def __init__(self, database_url: str):
        """Initializes the database engine and session maker upon creation."""
        self.engine = create_async_engine(database_url, echo=False)
        self.async_session_maker = async_sessionmaker(
            self.engine, expire_on_commit=False, class_=AsyncSession
        )

    async def close(self):
        """Closes the database engine connections."""
        if self.engine:
            await self.engine.dispose()

    async def get_db_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provides a database session."""
        async with self.async_session_maker() as session:
            yield session

# Ordinary path: connects with the role that is subject to row-level authorization.
db_manager = DatabaseManager(settings.DATABASE_URL)
# Elevated-privilege path: used when no user session is available.
service_db_manager = DatabaseManager(settings.service_database_url)

async def init_db():
    """Creates all database tables known to the metadata."""
    logger.info("Initializing database...")
    async with service_db_manager.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialization finished successfully.")

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_db())
