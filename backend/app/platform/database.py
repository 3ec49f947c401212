import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .config import settings

# Prefer public DB URL when set (so a local shell can reach the hosted Postgres)
_database_url = os.environ.get("DATABASE_PUBLIC_URL") or settings.DATABASE_URL


def configure_sqlite_locking(engine: Engine) -> Engine:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    SQLite has no row locks; taking the write lock up front serializes
    concurrent ledger transactions the way FOR UPDATE does on Postgres.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


_engine_kw: dict = {}
if "sqlite" in _database_url:
    # Timeout to avoid "database is locked" while another writer holds the lock
    _engine_kw = {"connect_args": {"check_same_thread": False, "timeout": 30}}
else:
    _engine_kw = {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}

engine = create_engine(_database_url, **_engine_kw)
if "sqlite" in _database_url:
    configure_sqlite_locking(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass
