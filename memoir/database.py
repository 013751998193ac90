from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from memoir.settings.config import settings

Base = declarative_base()


def make_engine(url: str, **kwargs) -> AsyncEngine:
    """
    Build an async engine. SQLite connections get foreign key enforcement
    switched on so the cascade order is checked the same way Postgres does.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("poolclass", NullPool)
    eng = create_async_engine(url, echo=False, future=True, **kwargs)

    if eng.dialect.name == "sqlite":
        @event.listens_for(eng.sync_engine, "connect")
        def _sqlite_fk_pragma(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    return eng


def make_session_maker(eng: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(eng, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = make_engine(settings.async_database_url)
async_session_maker = make_session_maker(engine)


async def get_db():
    async with async_session_maker() as session:
        yield session


async def init_db(eng: AsyncEngine | None = None, *, force: bool = False):
    # Only run create_all in dev, never in prod with Alembic
    if force or settings.RUN_DB_CREATE_ALL:
        from memoir import models  # noqa: F401  registers every table on Base

        async with (eng or engine).begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
