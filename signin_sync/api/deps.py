"""
API dependency functions for database sessions and the sync worker.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession

from signin_sync.database import AsyncSessionLocal
from signin_sync.tasks.worker import SyncWorker, sync_worker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency.

    Yields an async database session that automatically commits on success
    and rolls back on error.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_sync_worker() -> SyncWorker:
    """Process-wide sync worker."""
    return sync_worker
