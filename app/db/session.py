from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from app.core.config import settings
import os

# Security: Disable SQL query logging in production
# Only enable echo in development mode
is_dev_mode = os.getenv("ENV", "production").lower() in ["dev", "development", "local"]


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend."""
    if database_url.startswith("sqlite"):
        # SQLite serializes writers; wait on the file lock instead of failing fast
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": 30},
        )
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=20,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(str(settings.DATABASE_URL), echo=is_dev_mode)
AsyncSessionLocal = build_session_factory(engine)

async def get_db():
    async with AsyncSessionLocal() as session:
        yield session
