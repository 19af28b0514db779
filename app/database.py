from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from app.config import settings


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create the async engine for the credential store.

    SQLite gets NullPool (no real pooling); other backends use the
    configured pool settings.
    """
    if "sqlite" in database_url:
        return create_async_engine(
            database_url,
            echo=False,
            poolclass=NullPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        database_url,
        echo=False,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)

# Base class for models
Base = declarative_base()


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create all tables (development and tests; production uses Alembic)."""
    # Register models on the metadata before create_all
    import app.models  # noqa: F401

    if bind.url.get_backend_name() == "sqlite" and bind.url.database:
        from pathlib import Path
        Path(bind.url.database).parent.mkdir(parents=True, exist_ok=True)

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
