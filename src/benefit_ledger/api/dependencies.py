"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_ledger.config import Settings, get_settings
from benefit_ledger.database import async_session_factory
from benefit_ledger.services.cache import BalanceCache, InMemoryBalanceCache
from benefit_ledger.services.policies import OverdraftPolicy


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Routes commit explicitly; anything left uncommitted is rolled back on close.
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


@lru_cache(maxsize=1)
def get_cache() -> BalanceCache:
    """Process-wide balance cache."""
    return InMemoryBalanceCache()


@lru_cache(maxsize=1)
def get_overdraft_policy() -> OverdraftPolicy:
    """Overdraft policy with the default rates."""
    return OverdraftPolicy()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Cache = Annotated[BalanceCache, Depends(get_cache)]
Overdraft = Annotated[OverdraftPolicy, Depends(get_overdraft_policy)]
AppSettings = Annotated[Settings, Depends(get_settings)]
