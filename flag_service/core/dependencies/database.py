"""Database dependencies for FastAPI route handlers.

Route handlers take a request-scoped session through ``get_db_session``.
Background code (Taskiq tasks, the execution worker) opens its own
sessions with ``get_async_session`` or an ``async_sessionmaker``.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from flag_service.infra.database import get_async_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency for a database session closed after the request.

    Example:
        @router.get("/feature-flags/{flag_id}")
        async def get_flag(session: AsyncSession = Depends(get_db_session)):
            ...
    """
    async with get_async_session() as session:
        yield session
