"""Tests for grouping, the pure cascade and the persisted recompute."""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest

from cashbox.models.entities import CashBox
from cashbox.services import cascade as cascade_module
from cashbox.services.cascade import BalanceCascadeEngine, BoxSnapshot, cascade, group_by_employee


def _snap(box_id, number, opening="0", inflows=(), outflows=(), advances=(), employee_id=1):
    return BoxSnapshot(
        box_id=box_id,
        box_number=number,
        employee_id=employee_id,
        opening_balance=Decimal(opening),
        inflows=tuple(inflows),
        outflows=tuple(outflows),
        advances=tuple(advances),
    )


# ---------------------------------------------------------------------------
# Pure steps
# ---------------------------------------------------------------------------


def test_group_by_employee_sorts_each_chain_by_box_number():
    boxes = [
        SimpleNamespace(employee_id=2, box_number=3, tag="b3"),
        SimpleNamespace(employee_id=1, box_number=2, tag="a2"),
        SimpleNamespace(employee_id=2, box_number=1, tag="b1"),
        SimpleNamespace(employee_id=1, box_number=1, tag="a1"),
        SimpleNamespace(employee_id=None, box_number=1, tag="orphan"),
    ]

    groups = group_by_employee(boxes)

    assert set(groups) == {1, 2}
    assert [b.tag for b in groups[1]] == ["a1", "a2"]
    assert [b.tag for b in groups[2]] == ["b1", "b3"]


def test_group_by_employee_is_stable_for_duplicate_numbers():
    boxes = [
        SimpleNamespace(employee_id=1, box_number=2, tag="first"),
        SimpleNamespace(employee_id=1, box_number=2, tag="second"),
    ]
    assert [b.tag for b in group_by_employee(boxes)[1]] == ["first", "second"]


def test_cascade_carries_closing_balance_forward():
    chain = [
        _snap(10, 1, opening="100", inflows=["50"]),
        _snap(11, 2, opening="0", outflows=["30"]),
    ]

    first, second = cascade(chain)

    assert first.closing_balance == Decimal("150")
    assert second.opening_balance == Decimal("150")
    assert second.closing_balance == Decimal("120")
    assert not first.opening_changed
    assert second.opening_changed


def test_cascade_counts_advances_as_incoming_value():
    (box,) = cascade([_snap(1, 1, opening="0", outflows=["10"], advances=["20"])])
    assert box.advance_sum == Decimal("20")
    assert box.closing_balance == Decimal("10")


def test_cascade_never_changes_first_opening_balance():
    (box,) = cascade([_snap(1, 5, opening="42.10", inflows=["1000"], advances=["5"])])
    assert box.opening_balance == Decimal("42.10")
    assert not box.opening_changed


def test_cascade_skips_unparseable_amounts_and_tolerates_both_sides():
    (box,) = cascade([_snap(1, 1, inflows=["abc", "10", None], outflows=["4", "x"], advances=[""])])
    assert box.inflow_sum == Decimal("10")
    assert box.outflow_sum == Decimal("4")
    assert box.advance_sum == Decimal("0")
    assert box.closing_balance == Decimal("6")


def test_cascade_of_empty_chain():
    assert cascade([]) == []


# ---------------------------------------------------------------------------
# Engine against the database
# ---------------------------------------------------------------------------


@pytest.fixture
def engine_factory(db, locks):
    return lambda: BalanceCascadeEngine(db, locks=locks)


def test_recompute_example_chain(db, engine_factory, employee_factory, box_factory, entry_factory):
    emp = employee_factory()
    box1 = box_factory(emp, 1, Decimal("100"))
    box2 = box_factory(emp, 2, Decimal("0"))
    entry_factory(box1, inflow="50")
    entry_factory(box2, outflow="30")

    report = engine_factory().recompute(emp.id)

    rows = {b.box_number: b.to_dict() for b in report.boxes}
    assert rows[1]["closingBalance"] == "150.00"
    assert rows[2]["openingBalance"] == "150.00"
    assert rows[2]["closingBalance"] == "120.00"
    db.expire_all()
    assert db.get(CashBox, box2.id).opening_balance == Decimal("150")
    assert db.get(CashBox, box1.id).opening_balance == Decimal("100")


def test_recompute_box_with_advance(db, engine_factory, employee_factory, box_factory, entry_factory, advance_factory):
    emp = employee_factory()
    box = box_factory(emp, 1, Decimal("0"))
    entry_factory(box, outflow="10")
    advance_factory(emp, outflow="20", box=box)

    (row,) = engine_factory().recompute(emp.id).boxes

    assert row.advance_sum == Decimal("20")
    assert row.closing_balance == Decimal("10")


def test_recompute_is_idempotent(db, engine_factory, employee_factory, box_factory, entry_factory, advance_factory):
    emp = employee_factory()
    boxes = [box_factory(emp, n, Decimal("7.5")) for n in (1, 2, 3)]
    entry_factory(boxes[0], inflow="10,333")
    entry_factory(boxes[1], outflow="2.5")
    advance_factory(emp, outflow="1,25", box=boxes[2])

    first = engine_factory().recompute(emp.id)
    second = engine_factory().recompute(emp.id)

    assert first.writes == 2
    assert second.writes == 0
    assert first.to_dict() == second.to_dict()


def test_recompute_ignores_hidden_rows(db, engine_factory, employee_factory, box_factory, entry_factory, advance_factory):
    emp = employee_factory()
    box1 = box_factory(emp, 1, Decimal("10"))
    box_factory(emp, 2, Decimal("999"), hidden=True)
    box3 = box_factory(emp, 3, Decimal("0"))
    entry_factory(box1, inflow="5", hidden=True)
    advance_factory(emp, outflow="3", box=box1, hidden=True)

    report = engine_factory().recompute(emp.id)

    assert [b.box_id for b in report.boxes] == [box1.id, box3.id]
    assert report.boxes[1].opening_balance == Decimal("10")


def test_recompute_satisfies_chain_invariant_for_all_employees(
    db, engine_factory, employee_factory, box_factory, entry_factory
):
    ana = employee_factory("Ana")
    bruno = employee_factory("Bruno")
    for emp, base in ((ana, "100"), (bruno, "5")):
        # created out of order on purpose
        b3 = box_factory(emp, 3)
        b1 = box_factory(emp, 1, Decimal(base))
        b2 = box_factory(emp, 2)
        entry_factory(b1, inflow="12.40")
        entry_factory(b2, outflow="3")
        entry_factory(b3, inflow="1", outflow="1")

    report = engine_factory().recompute()

    assert not report.failures
    for eid in (ana.id, bruno.id):
        chain = [b for b in report.boxes if b.employee_id == eid]
        assert [b.box_number for b in chain] == [1, 2, 3]
        for prev, cur in zip(chain, chain[1:]):
            assert cur.opening_balance == prev.closing_balance


def test_recompute_without_boxes_returns_empty_report(db, engine_factory, employee_factory):
    employee_factory()
    assert engine_factory().recompute().empty
    assert engine_factory().recompute(12345).boxes == []


def test_bulk_recompute_isolates_failing_employee(
    db, engine_factory, employee_factory, box_factory, monkeypatch
):
    ana = employee_factory("Ana")
    bruno = employee_factory("Bruno")
    box_factory(ana, 1, Decimal("1"))
    box_factory(ana, 2)
    box_factory(bruno, 1, Decimal("2"))
    box_factory(bruno, 2)

    real_cascade = cascade_module.cascade

    def flaky(chain):
        if chain and chain[0].employee_id == ana.id:
            raise RuntimeError("boom")
        return real_cascade(chain)

    monkeypatch.setattr(cascade_module, "cascade", flaky)

    report = engine_factory().recompute()

    assert [f.employee_id for f in report.failures] == [ana.id]
    assert {b.employee_id for b in report.boxes} == {bruno.id}


def test_single_employee_failure_propagates(db, engine_factory, employee_factory, box_factory, monkeypatch):
    emp = employee_factory()
    box_factory(emp, 1)

    def broken(chain):
        raise RuntimeError("boom")

    monkeypatch.setattr(cascade_module, "cascade", broken)

    with pytest.raises(RuntimeError):
        engine_factory().recompute(emp.id)


def test_sub_cent_amounts_keep_opening_equal_to_previous_closing(
    db, engine_factory, employee_factory, box_factory, entry_factory
):
    emp = employee_factory()
    box1 = box_factory(emp, 1, Decimal("0"))
    box2 = box_factory(emp, 2)
    box3 = box_factory(emp, 3)
    entry_factory(box1, inflow="0,005")
    entry_factory(box2, outflow="0,001")

    report = engine_factory().recompute(emp.id)

    first, second, third = report.boxes
    assert first.closing_balance == Decimal("0.01")
    assert second.opening_balance == first.closing_balance
    assert second.closing_balance == Decimal("0.01")
    assert third.opening_balance == second.closing_balance
    assert engine_factory().recompute(emp.id).writes == 0


def test_bulk_recompute_lists_only_employees_with_visible_boxes(
    db, engine_factory, employee_factory, box_factory
):
    ana = employee_factory("Ana")
    bruno = employee_factory("Bruno")
    employee_factory("Carla")
    box_factory(ana, 1)
    box_factory(bruno, 1, hidden=True)

    assert engine_factory().repo.employee_ids_with_boxes() == [ana.id]
    report = engine_factory().recompute()
    assert {b.employee_id for b in report.boxes} == {ana.id}
