from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from consulting_slots.core.config import settings


def to_async_url(database_url: str) -> str:
    """Map sync driver URLs onto their async drivers.

    asyncpg does not accept psycopg params like sslmode/channel_binding, so those
    are stripped; SSL is enabled via connect_args instead.
    """
    if database_url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + database_url[len("sqlite://"):]
    parsed = urlparse(database_url)
    if not parsed.scheme.startswith("postgresql"):
        return database_url
    scheme = "postgresql+asyncpg" if parsed.scheme == "postgresql" else parsed.scheme
    query = parse_qs(parsed.query, keep_blank_values=True)
    query.pop("sslmode", None)
    query.pop("channel_binding", None)
    new_query = urlencode(query, doseq=True)
    return urlunparse((scheme, parsed.netloc, parsed.path, parsed.params, new_query, parsed.fragment))


def _own_sqlite_transactions(engine: AsyncEngine) -> None:
    """Hand SQLite transaction control to SQLAlchemy.

    The driver's implicit BEGIN is turned off so reads join the transaction
    and SAVEPOINT works; BEGIN IMMEDIATE takes the write lock up front, so
    writers run one at a time.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = to_async_url(database_url)
    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases live and die with their single connection
        if ":memory:" in url or url.rstrip("/") == "sqlite+aiosqlite:":
            kwargs["poolclass"] = StaticPool
        sqlite_engine = create_async_engine(url, **kwargs)
        _own_sqlite_transactions(sqlite_engine)
        return sqlite_engine
    kwargs.update(
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )
    if url.startswith("postgresql+asyncpg") and "localhost" not in url and "127.0.0.1" not in url:
        kwargs["connect_args"] = {"ssl": True}
    return create_async_engine(url, **kwargs)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.env == "development")
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables if using create_all; prefer Alembic in production."""
    # Register tables on the shared metadata
    import consulting_slots.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
