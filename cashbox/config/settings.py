# cashbox/config/settings.py
from __future__ import annotations

import json
import os
from pathlib import Path

APP_NAME: str = "Caixa Viagem"
SECRET_KEY: str = os.environ.get("CASHBOX_SECRET_KEY", "change-this-in-production-please-32bytes")

# DB-URL (sqlite Datei liegt unter ./db/)
DATABASE_URL: str = os.environ.get("CASHBOX_DATABASE_URL", "sqlite:///./db/cashbox.db")

LOG_LEVEL: str = os.environ.get("CASHBOX_LOG_LEVEL", "INFO")
LOG_FILE: str = ".logs/cashbox.log"

# Optionale JSON-Datei, die ueber DEFAULT_SETTINGS gelegt wird
SETTINGS_PATH: str = "cashbox/config/settings.json"

# Demo-Mitarbeiter beim Start anlegen
DEFAULT_DEV_SEED: bool = True

DEFAULT_SETTINGS = {
    "company": {"name": ""},
    "ledger": {"decimal_places": 2, "default_mode": "merge"},
}


def load_settings(path: str | Path | None = None) -> dict:
    """
    Liest die JSON-Einstellungen und fuellt fehlende Keys mit Defaults.
    Eine fehlende oder defekte Datei liefert die Defaults.
    """
    p = Path(path or SETTINGS_PATH)
    out = json.loads(json.dumps(DEFAULT_SETTINGS))
    if not p.exists():
        return out
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return out
    if not isinstance(data, dict):
        return out
    for section, defaults in DEFAULT_SETTINGS.items():
        value = data.get(section)
        if isinstance(value, dict):
            out[section] = defaults | value
    return out


def default_reconcile_mode() -> str:
    mode = str(load_settings()["ledger"].get("default_mode", "merge")).lower()
    return mode if mode in {"merge", "replace"} else "merge"
