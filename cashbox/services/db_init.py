# cashbox/services/db_init.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from cashbox.logging_config import get_logger
from cashbox.models.base import Base, SessionLocal, engine
# Alle Modelle registrieren (Side-Effect-Import)
import cashbox.models.entities  # noqa: F401
from cashbox.models.entities import Employee

logger = get_logger("db")


def _ensure_sqlite_parent_dir(bind) -> None:
    """Erstellt den Ordner fuer die SQLite-Datei, falls noetig."""
    db_file: Optional[str] = bind.url.database
    if bind.url.get_backend_name() == "sqlite" and db_file and db_file != ":memory:":
        Path(db_file).parent.mkdir(parents=True, exist_ok=True)


def seed_employees_if_empty(db: Session) -> None:
    """Legt Demo-Mitarbeiter an, falls Tabelle leer ist."""
    if db.query(Employee).count() > 0:
        return
    for first, last in [("Ana", "Souza"), ("Bruno", "Lima"), ("Carla", "Mendes")]:
        db.add(Employee(first_name=first, last_name=last, active=True))
    db.commit()
    logger.info("Demo-Mitarbeiter angelegt")


def init_db(dev_seed: bool = True, bind=None) -> None:
    """
    Initialisiert die DB-Struktur und legt (optional) Demo-Mitarbeiter an.
    Wird beim App-Startup von main.py aufgerufen.
    """
    bind = bind or engine
    _ensure_sqlite_parent_dir(bind)
    Base.metadata.create_all(bind=bind)

    if dev_seed:
        with SessionLocal(bind=bind) as db:
            seed_employees_if_empty(db)
