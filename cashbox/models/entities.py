from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
)
from sqlalchemy.orm import relationship

from .base import Base

# ---------- Mitarbeiter (nur was der Kern braucht) ----------

class Employee(Base):
    __tablename__ = "employees"
    id = Column(Integer, primary_key=True)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120))
    active = Column(Boolean, nullable=False, default=True)

    cash_boxes = relationship("CashBox", back_populates="employee")
    advances = relationship("Advance", back_populates="employee")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

# ---------- Caixa Viagem ----------

class CashBox(Base):
    __tablename__ = "cash_boxes"
    __table_args__ = {"sqlite_autoincrement": True}  # geloeschte IDs nie neu vergeben
    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    owner_id = Column(String(64))                  # Benutzer, der die Caixa angelegt hat
    box_number = Column(Integer, nullable=False)
    opening_balance = Column(Numeric(12, 2), nullable=False, default=0)
    date = Column(Date, nullable=False)
    destination = Column(String(200), default="")
    company = Column(String(200))
    hidden = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    employee = relationship("Employee", back_populates="cash_boxes")
    entries = relationship("LedgerEntry", back_populates="cash_box", order_by="LedgerEntry.id")
    advances = relationship("Advance", back_populates="cash_box", order_by="Advance.id")

class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True)
    cash_box_id = Column(Integer, ForeignKey("cash_boxes.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    description = Column(Text, default="")
    document = Column(String(100), default="")
    cost_center = Column(String(100), default="")
    counterparty = Column(String(200), default="")
    # Betraege als Text, wie erfasst (Altdaten koennen unlesbar sein)
    inflow = Column(String(50))
    outflow = Column(String(50))
    hidden = Column(Boolean, nullable=False, default=False)

    cash_box = relationship("CashBox", back_populates="entries")

class Advance(Base):
    __tablename__ = "advances"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64))                  # Benutzer, der den Vorschuss erfasst hat
    employee_id = Column(Integer, ForeignKey("employees.id"), index=True)
    cash_box_id = Column(Integer, ForeignKey("cash_boxes.id"), nullable=True, index=True)
    date = Column(Date, nullable=False)
    name = Column(String(200), nullable=False)
    note = Column(Text)
    outflow = Column(String(50), nullable=False)
    hidden = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    employee = relationship("Employee", back_populates="advances")
    cash_box = relationship("CashBox", back_populates="advances")

Index("ix_cash_boxes_employee_visible", CashBox.employee_id, CashBox.hidden)
