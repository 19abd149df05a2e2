from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.core.config import settings

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "db"}


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("postgresql+asyncpg"):
        hostname = urlparse(database_url).hostname
        requires_ssl = hostname is not None and hostname not in _LOCAL_HOSTS
        connect_args = {
            "statement_cache_size": 0,  # required for pgbouncer transaction pooling
            "ssl": "require" if requires_ssl else False,
        }
    return create_async_engine(database_url, echo=False, connect_args=connect_args)


engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

class Base(DeclarativeBase):
    pass
