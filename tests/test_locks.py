"""Tests for the per-employee lock registry."""

from __future__ import annotations

import threading
import time

from cashbox.services.locks import EmployeeLocks


def test_same_employee_is_serialized():
    locks = EmployeeLocks()
    events = []

    def worker(tag):
        with locks.hold(1):
            events.append(f"{tag}-in")
            time.sleep(0.05)
            events.append(f"{tag}-out")

    threads = [threading.Thread(target=worker, args=(t,)) for t in ("a", "b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # no interleaving: every "in" is directly followed by its own "out"
    assert events[0][0] == events[1][0]
    assert events[2][0] == events[3][0]


def test_different_employees_do_not_block_each_other():
    locks = EmployeeLocks()
    with locks.hold(1):
        acquired = threading.Event()

        def other():
            with locks.hold(2):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(timeout=1)
        t.join()


def test_lock_is_released_on_error():
    locks = EmployeeLocks()
    try:
        with locks.hold(3, 1, None):
            raise ValueError("x")
    except ValueError:
        pass
    with locks.hold(1, 3):
        pass
