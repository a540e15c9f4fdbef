"""
Async database engine and session management.

One AsyncSession per request: committed when the handler returns,
rolled back if an exception escapes.
"""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings

async_engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a transactional database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Transactional session for use outside of FastAPI (Celery tasks, scripts)."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def run_after_commit(session: AsyncSession, callback: Callable[[], None]) -> None:
    """
    Call callback once the session's current transaction commits.

    Dropped if the transaction rolls back first.
    """
    pending = [callback]

    def _on_commit(sync_session) -> None:
        while pending:
            pending.pop()()

    def _on_rollback(sync_session, previous_transaction) -> None:
        pending.clear()

    event.listen(session.sync_session, "after_commit", _on_commit, once=True)
    event.listen(session.sync_session, "after_soft_rollback", _on_rollback, once=True)
