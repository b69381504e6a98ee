from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional


class EmployeeLocks:
    """
    Exklusive Sperre je Mitarbeiter fuer alles, was dessen Caixa-Kette liest
    und danach schreibt (Neuberechnung, Abgleich, Vorschuss verknuepfen).
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def _lock_for(self, employee_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(employee_id)
            if lock is None:
                lock = self._locks[employee_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *employee_ids: Optional[int]) -> Iterator[None]:
        # immer aufsteigend sperren, sonst Deadlock bei zwei Mitarbeitern
        ids = sorted({int(e) for e in employee_ids if e is not None})
        acquired = []
        try:
            for eid in ids:
                lock = self._lock_for(eid)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


employee_locks = EmployeeLocks()
