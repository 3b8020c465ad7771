from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gala.config import settings


def make_engine(url: str, *, echo: bool = False) -> Engine:
    if not url.startswith('sqlite'):
        return create_engine(url, echo=echo, pool_pre_ping=True, future=True)

    engine = create_engine(
        url,
        echo=echo,
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
        future=True,
    )

    # pysqlite opens transactions lazily, which breaks SAVEPOINT handling.
    @event.listens_for(engine, 'connect')
    def _sqlite_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    @event.listens_for(engine, 'begin')
    def _sqlite_begin(conn):
        conn.exec_driver_sql('BEGIN')

    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=Session)


engine = make_engine(settings.database_url_normalized, echo=settings.database_echo)
SessionLocal = make_session_factory(engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
