from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

Q2 = Decimal("0.01")
ZERO = Decimal("0")

_NOT_NUMERIC = re.compile(r"[^0-9.,]")


def parse(raw: Any) -> Optional[Decimal]:
    """
    Wandelt Eingaben wie "R$ 1.234,56", "10,5" oder 12.3 in ein Decimal.
    Wirft nie: alles, was sich nicht lesen laesst, ergibt None.

    Text: alles ausser Ziffern, Komma und Punkt wird entfernt. Kommt ein
    Komma vor (allein oder zusammen mit Punkten), ist das Komma das
    Dezimaltrennzeichen und Punkte gelten als Tausendertrennzeichen.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else None
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        d = Decimal(str(raw))
        return d if d.is_finite() else None

    s = _NOT_NUMERIC.sub("", str(raw))
    if not s:
        return None
    if "," in s:
        s = s.replace(".", "").replace(",", ".")
    if s.count(".") > 1 or not any(ch.isdigit() for ch in s):
        return None
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def is_present(raw: Any) -> bool:
    return raw is not None and str(raw).strip() != ""


def total(values: Iterable[Any]) -> Decimal:
    """
    Summe aller lesbaren Betraege, jeder vorher auf Centavos gerundet.
    Unlesbare werden uebersprungen.
    """
    acc = ZERO
    for v in values:
        d = parse(v)
        if d is not None:
            acc += round2(d)
    return acc


def round2(x: Decimal) -> Decimal:
    return x.quantize(Q2, rounding=ROUND_HALF_UP)


def to_storage(value: Optional[Decimal]) -> Optional[str]:
    """Normalisierte Textform fuer die Betragsspalten ("10.5" statt "10,50"), auf Centavos gerundet."""
    if value is None:
        return None
    value = round2(value)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return format(value.normalize(), "f")


def to_json(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(round2(value))
