from collections.abc import Generator
from typing import Any

from sqlalchemy import Connection, Engine, create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from billing.core.config import settings


def _configure_sqlite_connection(dbapi_connection: Any, connection_record: Any) -> None:
    # pysqlite's own BEGIN handling is switched off; _begin_sqlite_transaction emits it.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite_transaction(conn: Connection) -> None:
    # Connections sharing one DBAPI connection (StaticPool) join its open transaction.
    if not conn.connection.dbapi_connection.in_transaction:  # type: ignore[union-attr]
        conn.exec_driver_sql("BEGIN")


def build_engine(dsn: str, **kwargs: Any) -> Engine:
    """Create an engine for ``dsn``.

    SQLite connections are shared across threads (the scheduler and request
    handlers use separate threads) and enforce foreign keys, which SQLite
    leaves off by default. SQLite transactions are begun explicitly, so a
    SAVEPOINT always nests inside the enclosing transaction instead of
    opening, and on RELEASE committing, one of its own.
    """
    if dsn.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        sqlite_engine = create_engine(dsn, **kwargs)
        event.listen(sqlite_engine, "connect", _configure_sqlite_connection)
        event.listen(sqlite_engine, "begin", _begin_sqlite_transaction)
        return sqlite_engine
    return create_engine(dsn, pool_pre_ping=True, **kwargs)


engine = build_engine(settings.APP_DATABASE_DSN)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base: Any = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; callers commit, the session is always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create every billing table that does not exist yet."""
    import billing.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
