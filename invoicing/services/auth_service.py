from __future__ import annotations
from typing import Any, Mapping, Optional

from invoicing.models.identity import ADMIN_IDENTITY, Identity


def _pick(user: Any, *names: str) -> Any:
    for n in names:
        if isinstance(user, Mapping):
            if user.get(n) is not None:
                return user[n]
        elif getattr(user, n, None) is not None:
            return getattr(user, n)
    return None


def resolve_identity(auth_user: Any = None, *, admin_session: bool = False) -> Optional[Identity]:
    """
    Résout l'identité de la session, une seule fois, à passer ensuite explicitement.
    Un utilisateur authentifié prime; sinon une session admin donne l'identité admin.
    """
    if auth_user is not None:
        uid = _pick(auth_user, "user_id", "uid", "id")
        if not uid:
            raise ValueError("authenticated user has no id")
        return Identity(
            user_id=str(uid),
            display_name=_pick(auth_user, "display_name", "displayName", "name"),
            email=_pick(auth_user, "email"),
            plan=_pick(auth_user, "plan") or "free",
        )
    if admin_session:
        return ADMIN_IDENTITY
    return None
