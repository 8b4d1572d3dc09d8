import logging
from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings

logger = logging.getLogger(__name__)


_is_sqlite = settings.DATABASE_URL.startswith("sqlite")
_is_memory = _is_sqlite and ":memory:" in settings.DATABASE_URL

# Status writes arrive from both REST and WebSocket handlers; a file-backed
# SQLite database must wait on a competing writer instead of failing.
SQLITE_BUSY_TIMEOUT_MS = 5_000

_engine_kwargs: dict = (
    {"connect_args": {"check_same_thread": False}}
    if _is_sqlite
    else {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}
)

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    finally:
        cursor.close()


if _is_sqlite and not _is_memory:
    event.listen(engine, "connect", _sqlite_pragmas)
    logger.info("SQLite WAL mode enabled (busy_timeout=%dms)", SQLITE_BUSY_TIMEOUT_MS)
