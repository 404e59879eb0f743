"""Run async maintenance operations against the database from a sync command"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.settings import settings
from jobcore.infra.database import Database

T = TypeVar("T")


def run_db(operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Open a session, run ``operation`` with it and dispose of the engine."""

    async def _run() -> T:
        database = Database(settings)
        try:
            async with database.SessionLocal() as session:
                return await operation(session)
        finally:
            await database.close()

    return asyncio.run(_run())
