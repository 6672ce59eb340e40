"""Async SQLAlchemy engine and session helpers."""

import ssl
from typing import Any, AsyncGenerator
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from podcore.config import settings


def normalize_db_url(url: str) -> str:
    """Select the asyncpg driver for bare ``postgres://`` / ``postgresql://`` URLs.

    An explicit driver (``postgresql+psycopg://``) is left alone.
    """
    try:
        u = make_url(url)
    except ArgumentError:
        for prefix in ("postgresql://", "postgres://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix):]
        return url
    if u.drivername in ("postgres", "postgresql"):
        u = u.set(drivername="postgresql+asyncpg")
    return u.render_as_string(hide_password=False)


def prepare_asyncpg_connection(url: str) -> tuple[str, dict[str, Any]]:
    """Move libpq-only query args (sslmode, channel_binding) into asyncpg kwargs."""
    split = urlsplit(normalize_db_url(url))
    kept = []
    sslmode = None
    for key, value in parse_qsl(split.query, keep_blank_values=True):
        if key == "sslmode":
            sslmode = value.lower()
        elif key != "channel_binding":
            kept.append((key, value))
    cleaned_url = urlunsplit(split._replace(query=urlencode(kept, doseq=True))).rstrip("?")

    connect_args: dict[str, Any] = {}
    if sslmode == "disable":
        connect_args["ssl"] = False
    elif sslmode == "require":
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        connect_args["ssl"] = context
    elif sslmode == "verify-ca":
        context = ssl.create_default_context()
        context.check_hostname = False
        connect_args["ssl"] = context
    elif sslmode not in (None, "allow", "prefer"):
        # verify-full and anything unrecognised
        connect_args["ssl"] = ssl.create_default_context()
    return cleaned_url, connect_args


DATABASE_URL, CONNECT_ARGS = prepare_asyncpg_connection(settings.database_url)

engine = create_async_engine(
    DATABASE_URL,
    echo=settings.sql_echo,
    pool_pre_ping=True,
    connect_args=CONNECT_ARGS,
)
# expire_on_commit=False: services return rows after their begin() block commits
SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with SessionLocal() as session:
        yield session


def import_models() -> None:
    """Register every table on ``SQLModel.metadata``."""
    from podcore.schemas import episodes, podcasts  # noqa: F401


async def init_db() -> None:
    """Create tables directly (dev only; deployed databases use Alembic)."""
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_engine() -> None:
    await engine.dispose()


def describe_database_url(url: str) -> str:
    """Sanitized ``driver://user@host:port/db`` for logs; never includes the password."""
    try:
        u = make_url(url)
    except ArgumentError:
        return "<unparseable database URL>"
    port = f":{u.port}" if u.port else ""
    return f"{u.drivername}://{u.username or '?'}@{u.host or '?'}{port}/{u.database or '?'}"
