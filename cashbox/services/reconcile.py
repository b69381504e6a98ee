"""Abgleich einer eingereichten Lancamento-Liste mit den gespeicherten Zeilen.

``merge`` (Standard): gespeicherte IDs, die nicht mehr mitkommen, werden
geloescht; Zeilen ohne ID werden neu angelegt; Zeilen mit bekannter ID
bleiben unveraendert stehen (auch wenn der Client Felder geaendert hat).

``replace``: alles loeschen und jede gueltige Zeile neu anlegen, IDs der
Einreichung werden ignoriert.

Die Salden rechnet der Aufrufer danach selbst neu (BalanceCascadeEngine).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from cashbox.logging_config import get_logger
from cashbox.models.entities import LedgerEntry
from cashbox.services import money
from cashbox.services.errors import NotFoundError, ValidationError
from cashbox.services.locks import EmployeeLocks, employee_locks
from cashbox.services.repository import CashBoxRepository

logger = get_logger("reconcile")

MODE_MERGE = "merge"
MODE_REPLACE = "replace"
MODES = {MODE_MERGE, MODE_REPLACE}

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y")


@dataclass(frozen=True)
class Row:
    id: Optional[int]
    date: Any = None
    description: str = ""
    document: str = ""
    cost_center: str = ""
    counterparty: str = ""
    inflow: Any = None
    outflow: Any = None

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> "Row":
        if not isinstance(raw, Mapping):
            raise ValidationError("Jede Zeile muss ein Objekt sein.")
        return cls(
            id=_parse_id(raw.get("id")),
            date=raw.get("date"),
            description=str(raw.get("description") or "").strip(),
            document=str(raw.get("document") or "").strip(),
            cost_center=str(raw.get("costCenter") or "").strip(),
            counterparty=str(raw.get("counterparty") or "").strip(),
            inflow=raw.get("inflow"),
            outflow=raw.get("outflow"),
        )


@dataclass
class ReconcileReport:
    created: List[LedgerEntry] = field(default_factory=list)
    deleted_count: int = 0
    skipped: List[str] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def _parse_id(raw: Any) -> Optional[int]:
    """Fehlende ID heisst neue Zeile; alles andere muss eine positive Ganzzahl sein."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"Ungueltige Zeilen-ID: {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Ungueltige Zeilen-ID: {raw!r}")
    if value <= 0:
        raise ValidationError(f"Ungueltige Zeilen-ID: {raw!r}")
    return value


def parse_date(raw: Any, *, today: Optional[date] = None) -> date:
    """Datum der Zeile; fehlt es oder ist es unlesbar, gilt heute."""
    fallback = today or date.today()
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not money.is_present(raw):
        return fallback
    s = str(raw).strip()
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return fallback


def validate_row(row: Row) -> tuple[Optional[Decimal], Optional[Decimal], Optional[str]]:
    """Liefert (Eingang, Ausgang, Grund); Grund ist gesetzt, wenn die Zeile entfaellt."""
    inflow = money.parse(row.inflow) if money.is_present(row.inflow) else None
    outflow = money.parse(row.outflow) if money.is_present(row.outflow) else None
    if inflow is None and outflow is None:
        label = row.description or row.document or "ohne Beschreibung"
        return None, None, f"Zeile '{label}': kein lesbarer Betrag"
    return inflow, outflow, None


class LedgerReconciler:
    def __init__(self, db: Session, locks: Optional[EmployeeLocks] = None):
        self.db = db
        self.repo = CashBoxRepository(db)
        self.locks = locks or employee_locks

    def reconcile(self, cash_box_id: int, submitted: Sequence[Row], mode: str = MODE_MERGE) -> ReconcileReport:
        mode = (mode or MODE_MERGE).lower()
        if mode not in MODES:
            raise ValidationError(f"Unbekannter Modus: {mode}")

        box = self.repo.get_box(cash_box_id)
        if box is None:
            raise NotFoundError("Caixa de viagem nicht gefunden.")
        employee_id = box.employee_id

        with self.locks.hold(employee_id):
            try:
                if mode == MODE_REPLACE:
                    report = self._replace(cash_box_id, submitted)
                else:
                    report = self._merge(cash_box_id, submitted)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            "Caixa %s (%s): %d angelegt, %d geloescht, %d uebersprungen",
            cash_box_id, mode, len(report.created), report.deleted_count, report.skipped_count,
        )
        return report

    def _replace(self, box_id: int, submitted: Sequence[Row]) -> ReconcileReport:
        report = ReconcileReport()
        report.deleted_count = self.repo.delete_entries(box_id)
        for row in submitted:
            self._create(box_id, row, report)
        return report

    def _merge(self, box_id: int, submitted: Sequence[Row]) -> ReconcileReport:
        report = ReconcileReport()
        existing = self.repo.entry_ids(box_id)
        with_id = [r for r in submitted if r.id is not None]
        without_id = [r for r in submitted if r.id is None]

        kept = {r.id for r in with_id}
        to_delete = existing - kept
        report.deleted_count = self.repo.delete_entries(box_id, sorted(to_delete))

        for row in with_id:
            if row.id not in existing:
                report.skipped.append(f"Zeile {row.id}: gehoert nicht (mehr) zu dieser Caixa")

        for row in without_id:
            self._create(box_id, row, report)
        return report

    def _create(self, box_id: int, row: Row, report: ReconcileReport) -> None:
        inflow, outflow, reason = validate_row(row)
        if reason:
            logger.debug("Caixa %s: %s", box_id, reason)
            report.skipped.append(reason)
            return
        entry = self.repo.add_entry(
            cash_box_id=box_id,
            date=parse_date(row.date),
            description=row.description,
            document=row.document,
            cost_center=row.cost_center,
            counterparty=row.counterparty,
            inflow=money.to_storage(inflow),
            outflow=money.to_storage(outflow),
        )
        report.created.append(entry)


def entry_to_dict(e: LedgerEntry) -> dict:
    return {
        "id": e.id,
        "cashBoxId": e.cash_box_id,
        "date": e.date.isoformat() if e.date else None,
        "description": e.description or "",
        "document": e.document or "",
        "costCenter": e.cost_center or "",
        "counterparty": e.counterparty or "",
        "inflow": e.inflow,
        "outflow": e.outflow,
    }
