import asyncio
import logging
from typing import Awaitable, Callable, Optional

import sqlalchemy

from formsapi.config import config
from formsapi.database import engine
from formsapi.models.health import HealthStatus

logger = logging.getLogger(__name__)


async def ping() -> None:
    async with engine.connect() as conn:
        await conn.execute(sqlalchemy.text("SELECT 1"))


async def check_health(
    check: Callable[[], Awaitable[None]] = ping, timeout: Optional[float] = None
) -> HealthStatus:
    """Race a database ping against a timeout; never raises, never hangs.

    Demo accounts live in the database too, so a degraded result means demo
    login is unavailable as well.
    """
    timeout = config.HEALTH_CHECK_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        await asyncio.wait_for(check(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Database health check timed out after {timeout}s")
        return HealthStatus(
            healthy=False,
            status="degraded",
            message="Database did not answer in time.",
            details=f"Timed out after {timeout} seconds",
        )
    except Exception as e:
        logger.exception("Database health check failed")
        return HealthStatus(
            healthy=False,
            status="degraded",
            message="Database is unreachable.",
            details=str(e),
        )
    return HealthStatus(healthy=True, status="ok", message="Database connection is healthy")
