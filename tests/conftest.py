"""Shared pytest fixtures for the cash-box tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable, Iterator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cashbox.models.base import Base, get_db
from cashbox.models.entities import Advance, CashBox, Employee, LedgerEntry
from cashbox.services.access import SessionAccessPolicy, get_access_policy
from cashbox.services.locks import EmployeeLocks


class FixedUserPolicy(SessionAccessPolicy):
    """Access policy that ignores the session and returns a fixed identity."""

    def __init__(self, user_id: Optional[str] = "user-1", elevated: bool = False) -> None:
        self.user_id = user_id
        self.elevated = elevated

    def current_user_id(self, request):
        return self.user_id

    def is_elevated(self, request) -> bool:
        return self.elevated


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def locks() -> EmployeeLocks:
    return EmployeeLocks()


@pytest.fixture
def employee_factory(db: Session) -> Callable[..., Employee]:
    def _create(first_name: str = "Ana", last_name: str = "Souza") -> Employee:
        emp = Employee(first_name=first_name, last_name=last_name, active=True)
        db.add(emp)
        db.commit()
        return emp

    return _create


@pytest.fixture
def box_factory(db: Session) -> Callable[..., CashBox]:
    def _create(
        employee: Employee,
        box_number: int,
        opening_balance=Decimal("0"),
        *,
        hidden: bool = False,
        owner_id: str = "user-1",
    ) -> CashBox:
        box = CashBox(
            employee_id=employee.id,
            owner_id=owner_id,
            box_number=box_number,
            opening_balance=opening_balance,
            date=date(2024, 3, box_number if box_number <= 28 else 1),
            destination="Campinas",
            hidden=hidden,
        )
        db.add(box)
        db.commit()
        return box

    return _create


@pytest.fixture
def entry_factory(db: Session) -> Callable[..., LedgerEntry]:
    def _create(box: CashBox, inflow=None, outflow=None, description: str = "", hidden: bool = False) -> LedgerEntry:
        entry = LedgerEntry(
            cash_box_id=box.id,
            date=date(2024, 3, 10),
            description=description,
            inflow=inflow,
            outflow=outflow,
            hidden=hidden,
        )
        db.add(entry)
        db.commit()
        return entry

    return _create


@pytest.fixture
def advance_factory(db: Session) -> Callable[..., Advance]:
    def _create(employee: Employee, outflow="20", box: Optional[CashBox] = None, hidden: bool = False) -> Advance:
        adv = Advance(
            owner_id="user-1",
            employee_id=employee.id,
            cash_box_id=box.id if box is not None else None,
            date=date(2024, 3, 1),
            name=employee.full_name,
            outflow=outflow,
            hidden=hidden,
        )
        db.add(adv)
        db.commit()
        return adv

    return _create


@pytest.fixture
def policy() -> FixedUserPolicy:
    return FixedUserPolicy(user_id="user-1", elevated=False)


@pytest.fixture
def client(session_factory, policy) -> Iterator[TestClient]:
    from main import create_app

    app = create_app(init_database=False)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_access_policy] = lambda: policy
    with TestClient(app) as test_client:
        yield test_client
