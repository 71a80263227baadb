"""Async engine, session factory and transactional retry helpers."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import parse_qs, urlsplit

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from campaign_sync.config import settings
from campaign_sync.models.database import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


class TransactionRetriesExhausted(RuntimeError):
    """Raised when a transactional scope keeps failing with retryable errors."""


def _disable_prepared_statements(database_url: str) -> bool:
    parts = urlsplit(database_url)
    if "asyncpg" not in parts.scheme:
        return False
    host = (parts.hostname or "").lower()
    if "pooler" in host or "pgbouncer" in host:
        return True
    if parts.port == 6543:
        return True
    query = parse_qs(parts.query)
    pool_mode = (query.get("pool_mode") or [""])[0].lower()
    if pool_mode in {"transaction", "statement"}:
        return True
    return False


def create_session_factory(database_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    url = database_url or settings.database_url
    connect_args = {}
    if _disable_prepared_statements(url):
        connect_args["statement_cache_size"] = 0
    engine = create_async_engine(url, echo=False, connect_args=connect_args)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _sqlstate(exc: BaseException) -> Optional[str]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        code = getattr(current, "sqlstate", None) or getattr(current, "pgcode", None)
        if isinstance(code, str):
            return code
        current = getattr(current, "orig", None) or current.__cause__
    return None


def is_retryable(exc: BaseException) -> bool:
    """Whether a failed transactional scope may succeed if run again."""
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    if _sqlstate(exc) in RETRYABLE_SQLSTATES:
        return True
    if isinstance(exc, OperationalError) and "database is locked" in str(exc.orig).lower():
        return True
    return False


async def run_in_transaction(
    session_factory: Callable[[], AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    exponential: bool = False,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "transaction",
) -> T:
    """Run ``work`` inside one commit-or-rollback scope, retrying write conflicts.

    The scope is all-or-nothing: any exception rolls back every write made by
    ``work``. Only errors accepted by :func:`is_retryable` are retried; the
    delay is constant or ``backoff_seconds * 2**attempt`` when ``exponential``.
    """
    attempt = 0
    while True:
        try:
            async with session_factory() as db:
                async with db.begin():
                    return await work(db)
        except Exception as exc:
            if not is_retryable(exc):
                raise
            attempt += 1
            if attempt >= max_attempts:
                logger.error("%s: max retries (%s) reached on write conflict", label, max_attempts)
                raise TransactionRetriesExhausted(f"{label} failed after {attempt} attempts") from exc
            delay = backoff_seconds * (2**attempt) if exponential else backoff_seconds
            logger.warning("%s: retry attempt %s due to write conflict (sleep %.1fs)", label, attempt, delay)
            await sleep(delay)


async def check_database(session_factory: Callable[[], AsyncSession]) -> bool:
    try:
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return False


async def connect_with_retry(
    session_factory: Callable[[], AsyncSession],
    max_retries: int = 5,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    for attempt in range(max_retries + 1):
        if await check_database(session_factory):
            logger.info("Database connected successfully")
            return
        if attempt >= max_retries:
            break
        delay = 2**attempt
        logger.warning(
            "Database connection attempt %s/%s failed, retrying in %ss",
            attempt + 1,
            max_retries + 1,
            delay,
        )
        await sleep(delay)
    raise RuntimeError("Database connection failed after maximum retry attempts")


async def init_models(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Create any missing tables. Deployments use ``alembic upgrade head``."""
    engine = session_factory.kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
