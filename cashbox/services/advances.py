"""Vorschuesse (adiantamentos): anlegen, bearbeiten, an eine Caixa haengen.

Ein Vorschuss kann frei stehen (``cash_box_id`` leer) oder an genau einer
Caixa haengen. Nach attach/detach muss der Aufrufer die betroffenen
Mitarbeiter neu berechnen; ``LinkResult.affected_employee_ids`` nennt sie.
Dasselbe gilt fuer create/update eines Vorschusses, der an einer Caixa haengt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from cashbox.logging_config import get_logger
from cashbox.models.entities import Advance
from cashbox.services import money
from cashbox.services.errors import ConflictError, NotFoundError, ValidationError
from cashbox.services.locks import EmployeeLocks, employee_locks
from cashbox.services.reconcile import parse_date
from cashbox.services.repository import CashBoxRepository

logger = get_logger("advances")


@dataclass(frozen=True)
class LinkResult:
    advance: Advance
    affected_employee_ids: List[int]


def _amount(raw: Any) -> str:
    value = money.parse(raw) if money.is_present(raw) else None
    if value is None:
        raise ValidationError("Vorschuss braucht einen lesbaren Betrag.")
    return money.to_storage(value)


class AdvanceLinker:
    def __init__(self, db: Session, locks: Optional[EmployeeLocks] = None):
        self.db = db
        self.repo = CashBoxRepository(db)
        self.locks = locks or employee_locks

    def _get(self, advance_id: int) -> Advance:
        adv = self.repo.get_advance(advance_id)
        if adv is None:
            raise NotFoundError("Vorschuss nicht gefunden.")
        return adv

    def create(
        self,
        owner_id: Optional[str],
        employee_id: int,
        date_: Any,
        name: Optional[str],
        outflow: Any,
        cash_box_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Advance:
        amount = _amount(outflow)
        employee = self.repo.get_employee(employee_id)
        if employee is None:
            raise NotFoundError("Mitarbeiter nicht gefunden.")

        if cash_box_id is not None:
            box = self.repo.get_box(cash_box_id)
            if box is None:
                raise NotFoundError("Caixa de viagem nicht gefunden.")
            if box.employee_id != employee.id:
                raise ConflictError("Vorschuss und Caixa gehoeren zu verschiedenen Mitarbeitern.")

        # haengt er gleich an einer Caixa, aendert sich die Kette: Mitarbeiter sperren
        held = [employee.id] if cash_box_id is not None else []
        with self.locks.hold(*held):
            try:
                adv = self.repo.add_advance(
                    owner_id=owner_id,
                    employee_id=employee.id,
                    cash_box_id=cash_box_id,
                    date=parse_date(date_),
                    name=(name or "").strip() or employee.full_name,
                    note=note or None,
                    outflow=amount,
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Vorschuss %s fuer Mitarbeiter %s angelegt (%s)", adv.id, employee.id, amount)
        return adv

    def update(
        self,
        advance_id: int,
        *,
        date_: Any = None,
        name: Optional[str] = None,
        note: Optional[str] = None,
        outflow: Any = None,
    ) -> Advance:
        adv = self._get(advance_id)
        if outflow is not None:
            adv.outflow = _amount(outflow)
        if date_ is not None:
            adv.date = parse_date(date_, today=adv.date)
        if name is not None and name.strip():
            adv.name = name.strip()
        if note is not None:
            adv.note = note or None
        with self.locks.hold(adv.employee_id if adv.cash_box_id is not None else None):
            try:
                self.repo.save(adv)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        return adv

    def attach(self, advance_id: int, cash_box_id: int) -> LinkResult:
        adv = self._get(advance_id)
        box = self.repo.get_box(cash_box_id)
        if box is None:
            raise NotFoundError("Caixa de viagem nicht gefunden.")
        if adv.employee_id is not None and adv.employee_id != box.employee_id:
            raise ConflictError(
                "Vorschuesse koennen nur auf Caixas desselben Mitarbeiters angewendet werden."
            )

        previous = self.repo.get_box(adv.cash_box_id, include_hidden=True) if adv.cash_box_id else None
        affected = sorted({box.employee_id} | ({previous.employee_id} if previous else set()))
        with self.locks.hold(*affected):
            try:
                adv.cash_box_id = box.id
                self.repo.save(adv)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Vorschuss %s an Caixa %s gehaengt (vorher %s)", advance_id, box.id, previous.id if previous else None)
        return LinkResult(advance=adv, affected_employee_ids=affected)

    def detach(self, advance_id: int) -> LinkResult:
        adv = self._get(advance_id)
        previous = self.repo.get_box(adv.cash_box_id, include_hidden=True) if adv.cash_box_id else None
        affected = [previous.employee_id] if previous else []
        with self.locks.hold(*affected):
            try:
                adv.cash_box_id = None
                self.repo.save(adv)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Vorschuss %s von Caixa %s geloest", advance_id, previous.id if previous else None)
        return LinkResult(advance=adv, affected_employee_ids=affected)

    def delete(self, advance_id: int) -> None:
        """Blendet den Vorschuss aus; nur wenn er an keiner Caixa haengt."""
        adv = self._get(advance_id)
        if adv.cash_box_id is not None:
            raise ConflictError(
                "Vorschuss haengt an einer Caixa. Zuerst die Verknuepfung entfernen."
            )
        try:
            adv.hidden = True
            self.repo.save(adv)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Vorschuss %s ausgeblendet", advance_id)

    def list_advances(self, employee_id: Optional[int] = None, *, unattached_only: bool = False) -> List[Advance]:
        return self.repo.list_advances(employee_id, unattached_only=unattached_only)


def advance_to_dict(a: Advance) -> dict:
    return {
        "id": a.id,
        "ownerId": a.owner_id,
        "employeeId": a.employee_id,
        "cashBoxId": a.cash_box_id,
        "date": a.date.isoformat() if a.date else None,
        "name": a.name,
        "note": a.note,
        "outflow": a.outflow,
    }
