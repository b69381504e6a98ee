"""Tests for creating, linking and hiding advances."""

from __future__ import annotations

import pytest

from cashbox.models.entities import Advance
from cashbox.services.advances import AdvanceLinker
from cashbox.services.errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def linker(db, locks):
    return AdvanceLinker(db, locks=locks)


def test_create_unattached_advance_defaults_name_to_employee(db, linker, employee_factory):
    emp = employee_factory("Carla", "Mendes")

    adv = linker.create("user-1", emp.id, "2024-04-01", None, "R$ 150,00")

    assert adv.cash_box_id is None
    assert adv.name == "Carla Mendes"
    assert adv.outflow == "150"


def test_create_requires_readable_amount(linker, employee_factory):
    emp = employee_factory()
    with pytest.raises(ValidationError):
        linker.create("user-1", emp.id, "2024-04-01", "x", "abc")


def test_create_for_unknown_employee(linker):
    with pytest.raises(NotFoundError):
        linker.create("user-1", 404, "2024-04-01", "x", "10")


def test_attach_and_detach(db, linker, employee_factory, box_factory, advance_factory):
    emp = employee_factory()
    box1 = box_factory(emp, 1)
    box2 = box_factory(emp, 2)
    adv = advance_factory(emp)

    result = linker.attach(adv.id, box1.id)
    assert result.advance.cash_box_id == box1.id
    assert result.affected_employee_ids == [emp.id]

    result = linker.attach(adv.id, box2.id)
    assert result.advance.cash_box_id == box2.id

    result = linker.detach(adv.id)
    assert result.advance.cash_box_id is None
    assert result.affected_employee_ids == [emp.id]

    # detaching twice is fine
    assert linker.detach(adv.id).affected_employee_ids == []


def test_attach_to_missing_box_keeps_previous_link(db, linker, employee_factory, box_factory, advance_factory):
    emp = employee_factory()
    box = box_factory(emp, 1)
    hidden = box_factory(emp, 2, hidden=True)
    adv = advance_factory(emp, box=box)

    with pytest.raises(NotFoundError):
        linker.attach(adv.id, 9999)
    with pytest.raises(NotFoundError):
        linker.attach(adv.id, hidden.id)

    db.expire_all()
    assert db.get(Advance, adv.id).cash_box_id == box.id


def test_attach_to_other_employees_box_conflicts(linker, employee_factory, box_factory, advance_factory):
    ana = employee_factory("Ana")
    bruno = employee_factory("Bruno")
    box = box_factory(bruno, 1)
    adv = advance_factory(ana)

    with pytest.raises(ConflictError):
        linker.attach(adv.id, box.id)


def test_unknown_advance(linker):
    with pytest.raises(NotFoundError):
        linker.attach(1, 1)
    with pytest.raises(NotFoundError):
        linker.detach(1)


def test_delete_requires_detached_advance(db, linker, employee_factory, box_factory, advance_factory):
    emp = employee_factory()
    box = box_factory(emp, 1)
    adv = advance_factory(emp, box=box)

    with pytest.raises(ConflictError):
        linker.delete(adv.id)

    linker.detach(adv.id)
    linker.delete(adv.id)

    db.expire_all()
    assert db.get(Advance, adv.id).hidden is True
    assert linker.list_advances(emp.id) == []
    with pytest.raises(NotFoundError):
        linker.delete(adv.id)


def test_update_changes_fields(linker, employee_factory, advance_factory):
    emp = employee_factory()
    adv = advance_factory(emp, outflow="20")

    updated = linker.update(adv.id, outflow="25,5", name="Diarias", note="Sao Paulo")

    assert updated.outflow == "25.5"
    assert updated.name == "Diarias"
    assert updated.note == "Sao Paulo"


def test_list_unattached_only(linker, employee_factory, box_factory, advance_factory):
    emp = employee_factory()
    box = box_factory(emp, 1)
    free = advance_factory(emp)
    advance_factory(emp, box=box)

    assert [a.id for a in linker.list_advances(emp.id, unattached_only=True)] == [free.id]
    assert len(linker.list_advances(emp.id)) == 2
