import asyncio
import logging
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from mediacompose.config import get_settings
from mediacompose.models.base import Base

logger = logging.getLogger(__name__)

settings = get_settings()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine, with pool limits only where the backend pools."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo, future=True)
    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        pool_size=5,
        max_overflow=0,
        pool_pre_ping=True,  # Check connection health before use
        pool_recycle=300,  # Recycle connections after 5 minutes
        pool_timeout=30,
    )


def build_session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url, echo=settings.database_echo)
async_session_maker = build_session_maker(engine)


class SchemaInitializer:
    """Create tables once per engine.

    Safe to call from several tasks: the first caller creates the schema under
    a lock, later callers return immediately. ``create_all`` checks for
    existing tables, so concurrent processes racing on a fresh database are
    best-effort rather than transactional.
    """

    def __init__(self, db_engine: AsyncEngine) -> None:
        self.engine = db_engine
        self._lock = asyncio.Lock()
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    async def ensure(self) -> None:
        if self._ready:
            return
        async with self._lock:
            if self._ready:
                return
            _ensure_sqlite_parent(self.engine)
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._ready = True
            logger.info(f"[DB] Schema ready (tables: {', '.join(Base.metadata.tables)})")


def _ensure_sqlite_parent(db_engine: AsyncEngine) -> None:
    url = db_engine.url
    if url.get_backend_name() != "sqlite":
        return
    database = url.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


schema_initializer = SchemaInitializer(engine)


async def init_db(initializer: SchemaInitializer | None = None) -> None:
    """Initialize database with retry logic for connection failures."""
    initializer = initializer or schema_initializer
    max_retries = 5
    retry_delay = 2  # seconds

    for attempt in range(max_retries):
        try:
            await initializer.ensure()
            return  # Success
        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(
                    f"DB connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                    f"Retrying in {retry_delay} seconds..."
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error(f"Failed to connect to database after {max_retries} attempts")
                raise

