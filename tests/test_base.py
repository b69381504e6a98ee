"""Tests for the engine builder and SQLite connection setup."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from cashbox.models.base import Base, build_engine, sqlite_file_url
from cashbox.models.entities import CashBox, Employee, LedgerEntry


def test_sqlite_file_url_is_made_absolute_and_folder_created(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    url = sqlite_file_url("sqlite:///./data/sub/cash.db")

    assert url == f"sqlite:///{(tmp_path / 'data' / 'sub' / 'cash.db').as_posix()}"
    assert (tmp_path / "data" / "sub").is_dir()


@pytest.mark.parametrize("url", ["sqlite:///:memory:", "postgresql://u:p@localhost/cash"])
def test_sqlite_file_url_leaves_other_urls_alone(url):
    assert sqlite_file_url(url) == url


@pytest.fixture
def file_session(tmp_path):
    eng = build_engine(f"sqlite:///{(tmp_path / 'cash.db').as_posix()}")
    Base.metadata.create_all(bind=eng)
    session = sessionmaker(bind=eng, future=True)()
    try:
        yield session
    finally:
        session.close()
        eng.dispose()


def test_sqlite_engine_enforces_foreign_keys(file_session):
    file_session.add(LedgerEntry(cash_box_id=4242, date=date(2024, 1, 1), inflow="1"))
    with pytest.raises(IntegrityError):
        file_session.commit()
    file_session.rollback()


def test_deleted_box_id_is_not_handed_out_again(file_session):
    emp = Employee(first_name="Ana")
    file_session.add(emp)
    file_session.commit()
    first = CashBox(employee_id=emp.id, box_number=1, date=date(2024, 1, 1))
    last = CashBox(employee_id=emp.id, box_number=2, date=date(2024, 1, 2))
    file_session.add_all([first, last])
    file_session.commit()
    last_id = last.id

    file_session.delete(last)
    file_session.commit()
    fresh = CashBox(employee_id=emp.id, box_number=2, date=date(2024, 1, 3))
    file_session.add(fresh)
    file_session.commit()

    assert fresh.id > last_id
