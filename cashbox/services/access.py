# cashbox/services/access.py
from typing import Optional

from fastapi import Request

from cashbox.models.entities import CashBox
from cashbox.services.errors import AccessDenied

# Session Keys (gesetzt vom Login-Dienst, gleicher SECRET_KEY)
SESSION_USER_ID = "user_id"
SESSION_ROLE = "role"

# Rollen
ROLE_OWNER = "Owner"
ROLE_ADMIN = "Admin"
ELEVATED_ROLES = {ROLE_OWNER, ROLE_ADMIN}


class SessionAccessPolicy:
    """Liest Benutzer und Rolle aus der signierten Session."""

    def current_user_id(self, request: Request) -> Optional[str]:
        uid = request.session.get(SESSION_USER_ID)
        return str(uid) if uid else None

    def is_elevated(self, request: Request) -> bool:
        return request.session.get(SESSION_ROLE) in ELEVATED_ROLES

    def ensure_authenticated(self, request: Request) -> str:
        uid = self.current_user_id(request)
        if not uid:
            raise AccessDenied("Nicht angemeldet.")
        return uid

    def ensure_can_edit_box(self, request: Request, box: CashBox) -> None:
        uid = self.ensure_authenticated(request)
        if self.is_elevated(request):
            return
        if box.owner_id is None or str(box.owner_id) != uid:
            raise AccessDenied("Keine Berechtigung fuer diese Caixa de viagem.")


_policy = SessionAccessPolicy()


def get_access_policy() -> SessionAccessPolicy:
    return _policy
