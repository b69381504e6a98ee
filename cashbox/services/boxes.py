from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from cashbox.logging_config import get_logger
from cashbox.models.entities import CashBox
from cashbox.services import money
from cashbox.services.cascade import BoxSnapshot, cascade
from cashbox.services.errors import ConflictError, NotFoundError, ValidationError
from cashbox.services.locks import EmployeeLocks, employee_locks
from cashbox.services.reconcile import parse_date
from cashbox.services.repository import CashBoxRepository

logger = get_logger("boxes")


@dataclass(frozen=True)
class NextBox:
    employee_id: int
    box_number: int
    opening_balance: Decimal
    last_box_id: Optional[int] = None


class CashBoxService:
    """Anlegen, Ausblenden und Auswerten von Caixas eines Mitarbeiters."""

    def __init__(self, db: Session, locks: Optional[EmployeeLocks] = None):
        self.db = db
        self.repo = CashBoxRepository(db)
        self.locks = locks or employee_locks

    def _employee(self, employee_id: int):
        employee = self.repo.get_employee(employee_id)
        if employee is None:
            raise NotFoundError("Mitarbeiter nicht gefunden.")
        return employee

    def _chain(self, employee_id: int):
        return cascade([BoxSnapshot.from_model(b) for b in self.repo.visible_boxes(employee_id)])

    def next_box(self, employee_id: int) -> NextBox:
        """Naechste Nummer (max + 1) und Endsaldo der letzten sichtbaren Caixa."""
        self._employee(employee_id)
        chain = self._chain(employee_id)
        if not chain:
            return NextBox(employee_id=employee_id, box_number=1, opening_balance=money.ZERO)
        last = chain[-1]
        number = max(b.box_number for b in chain) + 1
        return NextBox(
            employee_id=employee_id,
            box_number=number,
            opening_balance=money.round2(last.closing_balance),
            last_box_id=last.box_id,
        )

    def open_box(
        self,
        owner_id: Optional[str],
        employee_id: int,
        date_: Any,
        destination: str = "",
        company: Optional[str] = None,
        box_number: Optional[int] = None,
        opening_balance: Any = None,
    ) -> CashBox:
        opening = None
        if money.is_present(opening_balance):
            opening = money.parse(opening_balance)
            if opening is None:
                raise ValidationError("Anfangssaldo ist keine Zahl.")
        if box_number is not None and int(box_number) <= 0:
            raise ValidationError("Caixa-Nummer muss positiv sein.")

        with self.locks.hold(employee_id):
            try:
                nxt = self.next_box(employee_id)
                number = int(box_number) if box_number is not None else nxt.box_number
                if self.repo.box_number_taken(employee_id, number):
                    raise ConflictError(f"Caixa Nr. {number} existiert fuer diesen Mitarbeiter bereits.")
                box = self.repo.add_box(
                    owner_id=owner_id,
                    employee_id=employee_id,
                    box_number=number,
                    opening_balance=money.round2(opening if opening is not None else nxt.opening_balance),
                    date=parse_date(date_),
                    destination=(destination or "").strip(),
                    company=company or None,
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Caixa %s (Nr. %s) fuer Mitarbeiter %s angelegt", box.id, box.box_number, employee_id)
        return box

    def toggle_visibility(self, box_id: int) -> CashBox:
        box = self.repo.get_box(box_id, include_hidden=True)
        if box is None:
            raise NotFoundError("Caixa de viagem nicht gefunden.")
        with self.locks.hold(box.employee_id):
            try:
                # Nummer kann inzwischen an eine neue Caixa vergeben sein
                if box.hidden and self.repo.box_number_taken(box.employee_id, box.box_number):
                    raise ConflictError(
                        f"Caixa Nr. {box.box_number} ist inzwischen wieder vergeben; "
                        "Einblenden nicht moeglich."
                    )
                box.hidden = not box.hidden
                self.repo.save(box)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Caixa %s %s", box_id, "ausgeblendet" if box.hidden else "wieder sichtbar")
        return box

    def update_box(
        self,
        box_id: int,
        *,
        date_: Any = None,
        destination: Optional[str] = None,
        company: Optional[str] = None,
    ) -> CashBox:
        """Stammdaten aendern; Nummer, Mitarbeiter und Saldo bleiben wie sie sind."""
        box = self.repo.get_box(box_id, include_hidden=True)
        if box is None:
            raise NotFoundError("Caixa de viagem nicht gefunden.")
        try:
            if date_ is not None:
                box.date = parse_date(date_, today=box.date)
            if destination is not None:
                box.destination = destination.strip()
            if company is not None:
                box.company = company.strip() or None
            self.repo.save(box)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Caixa %s aktualisiert", box_id)
        return box

    def delete_box(self, box_id: int) -> None:
        """Loescht nur leere Caixas; mit Lancamentos oder Vorschuessen -> Konflikt."""
        box = self.repo.get_box(box_id, include_hidden=True)
        if box is None:
            raise NotFoundError("Caixa de viagem nicht gefunden.")
        if self.repo.count_children(box_id):
            raise ConflictError("Caixa hat noch Lancamentos oder Vorschuesse.")
        with self.locks.hold(box.employee_id):
            try:
                self.repo.delete_box(box)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Caixa %s geloescht", box_id)

    def list_boxes(self, employee_id: int) -> List[CashBox]:
        self._employee(employee_id)
        return self.repo.visible_boxes(employee_id)

    def summary(self, employee_id: int) -> dict:
        self._employee(employee_id)
        chain = self._chain(employee_id)
        return {
            "employeeId": employee_id,
            "boxCount": len(chain),
            "inflowSum": money.to_json(sum((b.inflow_sum for b in chain), money.ZERO)),
            "outflowSum": money.to_json(sum((b.outflow_sum for b in chain), money.ZERO)),
            "advanceSum": money.to_json(sum((b.advance_sum for b in chain), money.ZERO)),
            "finalBalance": money.to_json(chain[-1].closing_balance if chain else money.ZERO),
        }

    def stats(self, owner_id: Optional[str] = None, today: Optional[date] = None) -> dict:
        """
        Kennzahlen ueber alle sichtbaren Caixas (oder nur die eines Benutzers):
        Summen gesamt, Summen im laufenden Monat und die zehn haeufigsten Ziele.
        Vorschuesse zaehlen hier nicht mit, nur Lancamentos.
        """
        today = today or date.today()
        boxes = self.repo.visible_boxes(owner_id=owner_id)

        inflow = outflow = month_in = month_out = money.ZERO
        by_destination: Dict[str, dict] = {}
        for box in boxes:
            dest = (box.destination or "").strip() or "Sem destino"
            bucket = by_destination.setdefault(dest, {"count": 0, "inflow": money.ZERO, "outflow": money.ZERO})
            bucket["count"] += 1
            for e in box.entries:
                if e.hidden:
                    continue
                e_in = money.total([e.inflow])
                e_out = money.total([e.outflow])
                inflow += e_in
                outflow += e_out
                bucket["inflow"] += e_in
                bucket["outflow"] += e_out
                if e.date and (e.date.year, e.date.month) == (today.year, today.month):
                    month_in += e_in
                    month_out += e_out

        top = sorted(by_destination.items(), key=lambda kv: kv[1]["count"], reverse=True)[:10]
        return {
            "boxCount": len(boxes),
            "inflowSum": money.to_json(inflow),
            "outflowSum": money.to_json(outflow),
            "balance": money.to_json(inflow - outflow),
            "monthInflowSum": money.to_json(month_in),
            "monthOutflowSum": money.to_json(month_out),
            "monthBalance": money.to_json(month_in - month_out),
            "byDestination": [
                {
                    "destination": dest,
                    "count": b["count"],
                    "inflowSum": money.to_json(b["inflow"]),
                    "outflowSum": money.to_json(b["outflow"]),
                    "balance": money.to_json(b["inflow"] - b["outflow"]),
                }
                for dest, b in top
            ],
        }


def box_to_dict(b: CashBox) -> dict:
    return {
        "id": b.id,
        "employeeId": b.employee_id,
        "ownerId": b.owner_id,
        "boxNumber": b.box_number,
        "openingBalance": money.to_json(money.parse(b.opening_balance)),
        "date": b.date.isoformat() if b.date else None,
        "destination": b.destination or "",
        "company": b.company,
        "hidden": bool(b.hidden),
    }
