# cashbox/models/base.py
from __future__ import annotations

from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from cashbox.config import settings as app_settings

Base = declarative_base()

SQLITE_PREFIX = "sqlite:///"


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def sqlite_file_url(url: str) -> str:
    """Relativen SQLite-Pfad absolut machen und den Ordner anlegen; In-Memory bleibt wie es ist."""
    if not url.startswith(SQLITE_PREFIX) or url == SQLITE_PREFIX + ":memory:":
        return url
    db_file = Path(url[len(SQLITE_PREFIX):])
    if not db_file.is_absolute():
        db_file = Path.cwd() / db_file
    db_file.parent.mkdir(parents=True, exist_ok=True)
    return f"{SQLITE_PREFIX}{db_file.as_posix()}"


def _sqlite_pragmas(dbapi_conn, _record) -> None:
    # SQLite prueft Fremdschluessel nur mit diesem Pragma, und zwar pro Verbindung
    cur = dbapi_conn.cursor()
    try:
        cur.execute("PRAGMA foreign_keys=ON")
        cur.execute("PRAGMA busy_timeout=5000")
    finally:
        cur.close()


def build_engine(url: str | None = None) -> Engine:
    url = url or app_settings.DATABASE_URL
    if not is_sqlite(url):
        # Postgres/MySQL: Zeilensperren (FOR UPDATE) kommen von der DB selbst
        return create_engine(url, future=True, pool_pre_ping=True)

    eng = create_engine(
        sqlite_file_url(url),
        connect_args={"check_same_thread": False},
        future=True,
        pool_pre_ping=True,
    )
    event.listen(eng, "connect", _sqlite_pragmas)
    return eng


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db() -> Iterator[Session]:
    """FastAPI-Dependency: eine Session pro Request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
