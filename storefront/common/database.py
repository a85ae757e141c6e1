import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from .config import settings
from .db import Base

# Register every table on Base.metadata
from ..users import model as _users_model  # noqa: F401
from ..categories import model as _categories_model  # noqa: F401
from ..products import model as _products_model  # noqa: F401
from ..reviews import model as _reviews_model  # noqa: F401
from ..cart import model as _cart_model  # noqa: F401
from ..wishlist import model as _wishlist_model  # noqa: F401
from ..orders import model as _orders_model  # noqa: F401

_logger = logging.getLogger(__name__)

# Async SQLAlchemy engine and session factory
engine = create_async_engine(settings.DB_URL, future=True, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@sa.event.listens_for(engine.sync_engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE rules unless asked per connection
    if engine.dialect.name == "sqlite":
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

# Columns added to users after the first release
USER_PROFILE_COLUMNS = {
    "address": "VARCHAR(255)",
    "city": "VARCHAR(100)",
    "state": "VARCHAR(100)",
    "country": "VARCHAR(100)",
    "zip_code": "VARCHAR(20)",
    "avatar": "VARCHAR(255)",
    "date_of_birth": "DATE",
}


def _column_exists(sync_conn, table: str, column: str) -> bool:
    insp = sa.inspect(sync_conn)
    cols = [c["name"] for c in insp.get_columns(table)]
    return column in cols


def _migrate(sync_conn) -> None:
    for column, ddl in USER_PROFILE_COLUMNS.items():
        if not _column_exists(sync_conn, "users", column):
            _logger.info("Adding missing column users.%s", column)
            sync_conn.execute(sa.text(f"ALTER TABLE users ADD COLUMN {column} {ddl}"))


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        # Add profile columns if missing (simple migration)
        await conn.run_sync(_migrate)


async def reset_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


def month_bucket(session: AsyncSession, column):
    """``YYYY-MM`` of a datetime column, in the dialect's own date function."""
    dialect = session.bind.dialect.name
    if dialect == "sqlite":
        return sa.func.strftime("%Y-%m", column)
    if dialect in ("mysql", "mariadb"):
        return sa.func.date_format(column, "%Y-%m")
    return sa.func.to_char(column, "YYYY-MM")
