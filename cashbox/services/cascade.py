"""Neuberechnung der Saldos ueber die Caixa-Kette eines Mitarbeiters.

Die Kette wird nach ``box_number`` sortiert. Die erste Caixa behaelt ihren
gespeicherten Anfangssaldo; jede weitere bekommt den Endsaldo der vorherigen:

    Endsaldo = Anfangssaldo + Eingaenge + Vorschuesse - Ausgaenge

Vorschuesse zaehlen als Zugang zur Caixa (bewusste Produktentscheidung).
Der Endsaldo wird nur gemeldet, nie gespeichert.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from cashbox.logging_config import get_logger
from cashbox.models.entities import CashBox
from cashbox.services import money
from cashbox.services.locks import EmployeeLocks, employee_locks
from cashbox.services.repository import CashBoxRepository

logger = get_logger("cascade")


@dataclass(frozen=True)
class BoxSnapshot:
    """Was die Berechnung von einer Caixa braucht, ohne ORM."""

    box_id: int
    box_number: int
    employee_id: int
    opening_balance: Decimal
    inflows: tuple = ()
    outflows: tuple = ()
    advances: tuple = ()

    @classmethod
    def from_model(cls, box: CashBox) -> "BoxSnapshot":
        entries = [e for e in box.entries if not e.hidden]
        return cls(
            box_id=box.id,
            box_number=box.box_number or 0,
            employee_id=box.employee_id,
            opening_balance=money.parse(box.opening_balance) or money.ZERO,
            inflows=tuple(e.inflow for e in entries),
            outflows=tuple(e.outflow for e in entries),
            advances=tuple(a.outflow for a in box.advances if not a.hidden),
        )


@dataclass(frozen=True)
class BoxBalance:
    box_id: int
    box_number: int
    employee_id: int
    opening_balance: Decimal
    inflow_sum: Decimal
    outflow_sum: Decimal
    advance_sum: Decimal
    closing_balance: Decimal
    opening_changed: bool = False

    def to_dict(self) -> dict:
        return {
            "boxId": self.box_id,
            "boxNumber": self.box_number,
            "employeeId": self.employee_id,
            "openingBalance": money.to_json(self.opening_balance),
            "inflowSum": money.to_json(self.inflow_sum),
            "outflowSum": money.to_json(self.outflow_sum),
            "advanceSum": money.to_json(self.advance_sum),
            "closingBalance": money.to_json(self.closing_balance),
        }


@dataclass(frozen=True)
class EmployeeFailure:
    employee_id: int
    error: str


@dataclass
class RecomputeReport:
    boxes: List[BoxBalance] = field(default_factory=list)
    failures: List[EmployeeFailure] = field(default_factory=list)
    writes: int = 0

    @property
    def empty(self) -> bool:
        return not self.boxes and not self.failures

    def to_dict(self) -> dict:
        return {
            "report": [b.to_dict() for b in self.boxes],
            "failures": [{"employeeId": f.employee_id, "error": f.error} for f in self.failures],
        }


def group_by_employee(boxes: Iterable) -> Dict[int, list]:
    """
    Gruppiert nach Mitarbeiter und sortiert jede Gruppe stabil nach
    ``box_number`` (gleiche Nummern behalten ihre Eingangsreihenfolge).
    """
    groups: Dict[int, list] = defaultdict(list)
    for box in boxes:
        if box.employee_id is None:
            continue
        groups[box.employee_id].append(box)
    return {eid: sorted(chain, key=lambda b: b.box_number or 0) for eid, chain in groups.items()}


def cascade(chain: Sequence[BoxSnapshot]) -> List[BoxBalance]:
    """
    Laeuft einmal ueber eine bereits sortierte Kette und traegt den Saldo weiter.
    Betraege zaehlen auf Centavos gerundet (siehe ``money.total``), damit ist
    jeder Endsaldo centgenau und der naechste Anfangssaldo exakt gleich.
    """
    out: List[BoxBalance] = []
    running = money.ZERO
    for i, box in enumerate(chain):
        if i == 0:
            opening = box.opening_balance
            changed = False
        else:
            opening = money.round2(running)
            changed = opening != box.opening_balance

        inflow_sum = money.total(box.inflows)
        outflow_sum = money.total(box.outflows)
        advance_sum = money.total(box.advances)
        closing = opening + inflow_sum + advance_sum - outflow_sum

        out.append(BoxBalance(
            box_id=box.box_id,
            box_number=box.box_number,
            employee_id=box.employee_id,
            opening_balance=opening,
            inflow_sum=inflow_sum,
            outflow_sum=outflow_sum,
            advance_sum=advance_sum,
            closing_balance=closing,
            opening_changed=changed,
        ))
        running = closing
    return out


class BalanceCascadeEngine:
    def __init__(self, db: Session, locks: Optional[EmployeeLocks] = None):
        self.db = db
        self.repo = CashBoxRepository(db)
        self.locks = locks or employee_locks

    def recompute(self, employee_id: Optional[int] = None) -> RecomputeReport:
        """
        Mit ``employee_id``: nur dieser Mitarbeiter, Fehler werden weitergereicht.
        Ohne: alle Mitarbeiter mit sichtbaren Caixas; ein Fehler bei einem
        Mitarbeiter landet im Report und stoppt die anderen nicht.
        """
        report = RecomputeReport()
        if employee_id is not None:
            self._recompute_employee(int(employee_id), report)
            return report

        employee_ids = self.repo.employee_ids_with_boxes()
        self.db.rollback()  # Lesetransaktion beenden, jeder Mitarbeiter bekommt eine eigene
        for eid in employee_ids:
            try:
                self._recompute_employee(eid, report)
            except Exception as exc:
                logger.exception("Neuberechnung fuer Mitarbeiter %s fehlgeschlagen", eid)
                report.failures.append(EmployeeFailure(employee_id=eid, error=str(exc) or type(exc).__name__))
        logger.info(
            "Neuberechnung: %d Caixas, %d Mitarbeiter fehlgeschlagen, %d Schreibvorgaenge",
            len(report.boxes), len(report.failures), report.writes,
        )
        return report

    def _recompute_employee(self, employee_id: int, report: RecomputeReport) -> None:
        with self.locks.hold(employee_id):
            try:
                boxes = self.repo.visible_boxes(employee_id, for_update=True)
                chain = [BoxSnapshot.from_model(b) for b in boxes]
                chain = group_by_employee(chain).get(employee_id, [])
                results = cascade(chain)

                by_id = {b.id: b for b in boxes}
                writes = 0
                for res in results:
                    logger.debug("Caixa %s (#%s): %s", res.box_id, res.box_number, asdict(res))
                    if res.opening_changed:
                        self.repo.set_opening_balance(by_id[res.box_id], res.opening_balance)
                        writes += 1
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        report.boxes.extend(results)
        report.writes += writes
        logger.info("Mitarbeiter %s: %d Caixas neu berechnet, %d Anfangssaldos geschrieben", employee_id, len(results), writes)
