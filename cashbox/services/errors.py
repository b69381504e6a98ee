"""Fehlerklassen des Kerns.

Jede Klasse traegt den HTTP-Status, den die API daraus macht. Unlesbare
Betraege oder Zeilen sind *keine* Fehler, sie werden gezaehlt und gemeldet.
"""

from __future__ import annotations


class CashBoxError(Exception):
    """Basisklasse fuer fachliche Fehler."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CashBoxError):
    """Eingabe fehlt oder ist unbrauchbar; vor jedem DB-Zugriff geprueft."""


class AccessDenied(CashBoxError):
    status_code = 403


class NotFoundError(CashBoxError):
    """Caixa, Vorschuss oder Mitarbeiter existiert nicht oder ist ausgeblendet."""

    status_code = 404


class ConflictError(CashBoxError):
    """Der aktuelle Zustand erlaubt die Aktion nicht (z. B. verknuepfter Vorschuss)."""

    status_code = 409
