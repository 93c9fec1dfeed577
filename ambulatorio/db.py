from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

# DB SQLite su file nella root del progetto
DB_PATH = Path(__file__).resolve().parents[1] / "ambulatorio.sqlite"
DEFAULT_DATABASE_URL = f"sqlite:///{DB_PATH}"


def _build_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # FastAPI esegue gli endpoint sync in un threadpool
        connect_args["check_same_thread"] = False

    eng = create_engine(
        url,
        echo=False,              # metti True se vuoi vedere le query
        future=True,
        connect_args=connect_args,
    )

    if url.startswith("sqlite"):
        # pysqlite gestisce male BEGIN/SAVEPOINT: li emettiamo noi
        # (necessario per begin_nested nelle notifiche)
        @event.listens_for(eng, "connect")
        def _sqlite_connect(dbapi_connection, connection_record) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(eng, "begin")
        def _sqlite_begin(conn) -> None:
            conn.exec_driver_sql("BEGIN")

    return eng


engine = _build_engine(DEFAULT_DATABASE_URL)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False
)


class Base(DeclarativeBase):
    """Base ORM per tutti i modelli."""
    pass


def configure_engine(url: str) -> Engine:
    """
    Ricrea l'engine sul database indicato e ci ricollega SessionLocal.
    Chiamata una sola volta all'avvio (create_app, CLI, test).
    """
    global engine
    engine.dispose()
    engine = _build_engine(url)
    SessionLocal.configure(bind=engine)
    return engine


def init_db() -> None:
    """Crea le tabelle se non esistono."""
    # import necessario per registrare i modelli nel metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def db_session() -> Iterator[Session]:
    """
    Context manager per gestire correttamente la sessione:
    - commit se tutto ok
    - rollback su eccezioni
    - close sempre
    """
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
