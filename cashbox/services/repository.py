from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from cashbox.models.entities import Advance, CashBox, Employee, LedgerEntry


class CashBoxRepository:
    """
    Zugriff auf Caixas, ihre Lancamentos und Vorschuesse.
    Ausgeblendete Datensaetze (hidden) tauchen in keiner Abfrage auf.
    Commit/Rollback macht der aufrufende Service.
    """

    def __init__(self, db: Session):
        self.db = db

    # ---------- Mitarbeiter ----------

    def get_employee(self, employee_id: int) -> Optional[Employee]:
        return self.db.get(Employee, employee_id)

    # ---------- Caixas ----------

    def get_box(self, box_id: int, *, include_hidden: bool = False) -> Optional[CashBox]:
        box = self.db.get(CashBox, box_id)
        if box is None or (box.hidden and not include_hidden):
            return None
        return box

    def visible_boxes(
        self,
        employee_id: Optional[int] = None,
        *,
        owner_id: Optional[str] = None,
        for_update: bool = False,
    ) -> List[CashBox]:
        q = (
            self.db.query(CashBox)
            .options(selectinload(CashBox.entries), selectinload(CashBox.advances))
            .filter(CashBox.hidden == False)  # noqa: E712
        )
        if employee_id is not None:
            q = q.filter(CashBox.employee_id == employee_id)
        if owner_id is not None:
            q = q.filter(CashBox.owner_id == owner_id)
        if for_update:
            q = q.with_for_update()
        return q.order_by(CashBox.employee_id.asc(), CashBox.box_number.asc(), CashBox.id.asc()).all()

    def employee_ids_with_boxes(self) -> List[int]:
        rows = (
            self.db.query(CashBox.employee_id)
            .filter(CashBox.hidden == False)  # noqa: E712
            .distinct()
            .order_by(CashBox.employee_id.asc())
            .all()
        )
        return [r[0] for r in rows]

    def box_number_taken(self, employee_id: int, box_number: int) -> bool:
        return (
            self.db.query(CashBox.id)
            .filter(
                CashBox.employee_id == employee_id,
                CashBox.box_number == box_number,
                CashBox.hidden == False,  # noqa: E712
            )
            .first()
            is not None
        )

    def add_box(self, **fields) -> CashBox:
        box = CashBox(**fields)
        self.db.add(box)
        self.db.flush()
        return box

    def set_opening_balance(self, box: CashBox, value: Decimal) -> None:
        box.opening_balance = value
        self.db.add(box)
        self.db.flush()

    def delete_box(self, box: CashBox) -> None:
        self.db.delete(box)
        self.db.flush()

    def count_children(self, box_id: int) -> int:
        entries = self.db.query(func.count(LedgerEntry.id)).filter(LedgerEntry.cash_box_id == box_id).scalar()
        advances = self.db.query(func.count(Advance.id)).filter(Advance.cash_box_id == box_id).scalar()
        return int(entries or 0) + int(advances or 0)

    # ---------- Lancamentos ----------

    def entries_for_box(self, box_id: int) -> List[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.cash_box_id == box_id, LedgerEntry.hidden == False)  # noqa: E712
            .order_by(LedgerEntry.date.asc(), LedgerEntry.id.asc())
            .all()
        )

    def entry_ids(self, box_id: int) -> set[int]:
        return {e.id for e in self.entries_for_box(box_id)}

    def delete_entries(self, box_id: int, ids: Iterable[int] | None = None) -> int:
        """Loescht hart; schon geloeschte IDs zaehlen einfach nicht mit."""
        q = self.db.query(LedgerEntry).filter(LedgerEntry.cash_box_id == box_id)
        if ids is not None:
            ids = list(ids)
            if not ids:
                return 0
            q = q.filter(LedgerEntry.id.in_(ids))
        n = q.delete(synchronize_session=False)
        self.db.expire_all()
        return int(n or 0)

    def add_entry(self, **fields) -> LedgerEntry:
        entry = LedgerEntry(**fields)
        self.db.add(entry)
        self.db.flush()
        return entry

    # ---------- Vorschuesse ----------

    def get_advance(self, advance_id: int, *, include_hidden: bool = False) -> Optional[Advance]:
        adv = self.db.get(Advance, advance_id)
        if adv is None or (adv.hidden and not include_hidden):
            return None
        return adv

    def list_advances(self, employee_id: Optional[int] = None, *, unattached_only: bool = False) -> List[Advance]:
        q = self.db.query(Advance).filter(Advance.hidden == False)  # noqa: E712
        if employee_id is not None:
            q = q.filter(Advance.employee_id == employee_id)
        if unattached_only:
            q = q.filter(Advance.cash_box_id.is_(None))
        return q.order_by(Advance.date.desc(), Advance.id.desc()).all()

    def add_advance(self, **fields) -> Advance:
        adv = Advance(**fields)
        self.db.add(adv)
        self.db.flush()
        return adv

    def save(self, obj) -> None:
        self.db.add(obj)
        self.db.flush()
