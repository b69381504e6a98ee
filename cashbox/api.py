# cashbox/api.py
from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cashbox.config import settings as app_settings
from cashbox.logging_config import get_logger
from cashbox.models.base import get_db
from cashbox.services.access import SessionAccessPolicy, get_access_policy
from cashbox.services.advances import AdvanceLinker, advance_to_dict
from cashbox.services.boxes import CashBoxService, box_to_dict
from cashbox.services.cascade import BalanceCascadeEngine
from cashbox.services.errors import CashBoxError, NotFoundError, ValidationError
from cashbox.services.money import to_json
from cashbox.services.reconcile import LedgerReconciler, Row, entry_to_dict
from cashbox.services.repository import CashBoxRepository

logger = get_logger("api")
router = APIRouter(tags=["Caixa Viagem"])

# ------------------------------------------------------------------------------
# Hilfen
# ------------------------------------------------------------------------------
async def json_body(request: Request) -> dict:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        raise ValidationError("Body ist kein gueltiges JSON.")
    if not isinstance(payload, dict):
        raise ValidationError("Body muss ein JSON-Objekt sein.")
    return payload

def _opt_int(payload: dict, key: str) -> Optional[int]:
    v = payload.get(key)
    if v is None or v == "":
        return None
    if isinstance(v, bool):
        raise ValidationError(f"'{key}' muss eine Zahl sein.")
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValidationError(f"'{key}' muss eine Zahl sein.")

def _req_int(payload: dict, key: str) -> int:
    v = _opt_int(payload, key)
    if v is None:
        raise ValidationError(f"'{key}' ist erforderlich.")
    return v

def _ok(extra: Optional[dict] = None, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    body: dict[str, Any] = {"success": True}
    return JSONResponse(body if not extra else body | extra, status_code=status_code)

async def cashbox_error_handler(request: Request, exc: CashBoxError) -> JSONResponse:
    return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)

async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unerwarteter Fehler bei %s %s", request.method, request.url.path)
    return JSONResponse({"success": False, "error": "Interner Fehler, bitte erneut versuchen."}, status_code=500)

# ------------------------------------------------------------------------------
# Neuberechnung
# ------------------------------------------------------------------------------
@router.post("/cash-boxes/recompute")
def recompute_balances(
    request: Request,
    payload: dict = Depends(json_body),
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    employee_id = _opt_int(payload, "employeeId")
    report = BalanceCascadeEngine(db).recompute(employee_id)
    if report.empty:
        return _ok({"message": "Keine Caixa fuer die Neuberechnung gefunden.", "report": []})
    return _ok({"message": f"{len(report.boxes)} Caixas neu berechnet."} | report.to_dict())

# ------------------------------------------------------------------------------
# Lancamentos
# ------------------------------------------------------------------------------
@router.post("/cash-boxes/{box_id}/entries")
def submit_entries(
    box_id: int,
    request: Request,
    payload: dict = Depends(json_body),
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    rows_raw = payload.get("rows")
    if not isinstance(rows_raw, list):
        raise ValidationError("'rows' muss eine Liste sein.")
    rows = [Row.from_payload(r) for r in rows_raw]
    mode = payload.get("mode") or app_settings.default_reconcile_mode()

    box = CashBoxRepository(db).get_box(box_id)
    if box is None:
        raise NotFoundError("Caixa de viagem nicht gefunden.")
    policy.ensure_can_edit_box(request, box)

    report = LedgerReconciler(db).reconcile(box_id, rows, str(mode))
    return _ok({
        "created": [entry_to_dict(e) for e in report.created],
        "deletedCount": report.deleted_count,
        "skippedCount": report.skipped_count,
        "skipped": report.skipped,
    })

@router.get("/cash-boxes/{box_id}/entries")
def list_entries(
    box_id: int,
    request: Request,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    repo = CashBoxRepository(db)
    if repo.get_box(box_id) is None:
        raise NotFoundError("Caixa de viagem nicht gefunden.")
    return _ok({"entries": [entry_to_dict(e) for e in repo.entries_for_box(box_id)]})

# ------------------------------------------------------------------------------
# Caixas
# ------------------------------------------------------------------------------
@router.post("/cash-boxes")
def open_box(
    request: Request,
    payload: dict = Depends(json_body),
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    uid = policy.ensure_authenticated(request)
    box = CashBoxService(db).open_box(
        owner_id=uid,
        employee_id=_req_int(payload, "employeeId"),
        date_=payload.get("date"),
        destination=str(payload.get("destination") or ""),
        company=payload.get("company"),
        box_number=_opt_int(payload, "boxNumber"),
        opening_balance=payload.get("openingBalance"),
    )
    return _ok({"cashBox": box_to_dict(box)}, status_code=status.HTTP_201_CREATED)

@router.post("/cash-boxes/{box_id}/visibility")
def toggle_visibility(
    box_id: int,
    request: Request,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    svc = CashBoxService(db)
    box = svc.repo.get_box(box_id, include_hidden=True)
    if box is None:
        raise NotFoundError("Caixa de viagem nicht gefunden.")
    policy.ensure_can_edit_box(request, box)
    box = svc.toggle_visibility(box_id)
    return _ok({"cashBox": box_to_dict(box)})

@router.put("/cash-boxes/{box_id}")
def update_box(
    box_id: int,
    request: Request,
    payload: dict = Depends(json_body),
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    if not any(k in payload for k in ("date", "destination", "company")):
        raise ValidationError("Keine Felder zum Aktualisieren angegeben.")
    svc = CashBoxService(db)
    box = svc.repo.get_box(box_id, include_hidden=True)
    if box is None:
        raise NotFoundError("Caixa de viagem nicht gefunden.")
    policy.ensure_can_edit_box(request, box)
    destination = payload.get("destination")
    company = payload.get("company")
    box = svc.update_box(
        box_id,
        date_=payload.get("date"),
        destination=None if destination is None else str(destination),
        # leer gesendet -> Firma entfernen
        company=None if "company" not in payload else str(company or ""),
    )
    return _ok({"cashBox": box_to_dict(box)})

@router.get("/cash-boxes/stats")
def cash_box_stats(
    request: Request,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    uid = policy.ensure_authenticated(request)
    # Admin/Owner sehen alle Caixas, sonst nur die eigenen
    owner_id = None if policy.is_elevated(request) else uid
    return _ok({"stats": CashBoxService(db).stats(owner_id=owner_id)})

@router.delete("/cash-boxes/{box_id}")
def delete_box(
    box_id: int,
    request: Request,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    svc = CashBoxService(db)
    box = svc.repo.get_box(box_id, include_hidden=True)
    if box is None:
        raise NotFoundError("Caixa de viagem nicht gefunden.")
    policy.ensure_can_edit_box(request, box)
    svc.delete_box(box_id)
    return _ok({"message": "Caixa de viagem geloescht."})

@router.get("/employees/{employee_id}/next-box")
def next_box(
    employee_id: int,
    request: Request,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    nxt = CashBoxService(db).next_box(employee_id)
    return _ok({
        "employeeId": nxt.employee_id,
        "nextNumber": nxt.box_number,
        "openingBalance": to_json(nxt.opening_balance),
        "lastBoxId": nxt.last_box_id,
    })

@router.get("/employees/{employee_id}/cash-boxes")
def list_boxes(
    employee_id: int,
    request: Request,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    boxes = CashBoxService(db).list_boxes(employee_id)
    return _ok({"cashBoxes": [box_to_dict(b) for b in boxes]})

@router.get("/employees/{employee_id}/summary")
def employee_summary(
    employee_id: int,
    request: Request,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    return _ok({"summary": CashBoxService(db).summary(employee_id)})

# ------------------------------------------------------------------------------
# Vorschuesse
# ------------------------------------------------------------------------------
@router.get("/advances")
def list_advances(
    request: Request,
    employeeId: Optional[int] = None,
    unattached: bool = False,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    items = AdvanceLinker(db).list_advances(employeeId, unattached_only=unattached)
    return _ok({"advances": [advance_to_dict(a) for a in items]})

@router.post("/advances")
def create_advance(
    request: Request,
    payload: dict = Depends(json_body),
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    uid = policy.ensure_authenticated(request)
    if payload.get("date") in (None, "") or payload.get("outflow") is None:
        raise ValidationError("Datum, Mitarbeiter und Betrag sind erforderlich.")
    adv = AdvanceLinker(db).create(
        owner_id=uid,
        employee_id=_req_int(payload, "employeeId"),
        date_=payload.get("date"),
        name=payload.get("name"),
        outflow=payload.get("outflow"),
        cash_box_id=_opt_int(payload, "cashBoxId"),
        note=payload.get("note"),
    )
    if adv.cash_box_id is not None:
        BalanceCascadeEngine(db).recompute(adv.employee_id)
    return _ok({"advance": advance_to_dict(adv)}, status_code=status.HTTP_201_CREATED)

@router.put("/advances/{advance_id}")
def update_advance(
    advance_id: int,
    request: Request,
    payload: dict = Depends(json_body),
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    if not any(k in payload for k in ("date", "name", "note", "outflow")):
        raise ValidationError("Keine Felder zum Aktualisieren angegeben.")
    adv = AdvanceLinker(db).update(
        advance_id,
        date_=payload.get("date"),
        name=payload.get("name"),
        note=payload.get("note"),
        outflow=payload.get("outflow"),
    )
    # zugeordneter Vorschuss -> Saldenkette des Mitarbeiters nachziehen
    if adv.cash_box_id is not None and adv.employee_id is not None:
        BalanceCascadeEngine(db).recompute(adv.employee_id)
    return _ok({"advance": advance_to_dict(adv)})

@router.post("/advances/link")
def link_advance(
    request: Request,
    payload: dict = Depends(json_body),
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    advance_id = _req_int(payload, "advanceId")
    if "cashBoxId" not in payload:
        raise ValidationError("'cashBoxId' ist erforderlich (null zum Loesen).")
    cash_box_id = _opt_int(payload, "cashBoxId")

    linker = AdvanceLinker(db)
    if cash_box_id is None:
        result = linker.detach(advance_id)
    else:
        result = linker.attach(advance_id, cash_box_id)

    engine = BalanceCascadeEngine(db)
    for eid in result.affected_employee_ids:
        engine.recompute(eid)
    return _ok({"advance": advance_to_dict(result.advance)})

@router.delete("/advances/{advance_id}")
def delete_advance(
    advance_id: int,
    request: Request,
    db: Session = Depends(get_db),
    policy: SessionAccessPolicy = Depends(get_access_policy),
):
    policy.ensure_authenticated(request)
    AdvanceLinker(db).delete(advance_id)
    return _ok({"message": "Vorschuss ausgeblendet."})
