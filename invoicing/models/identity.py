from __future__ import annotations
from pydantic import BaseModel
from typing import Literal, Optional

Role = Literal["user", "admin"]
Plan = Literal["free", "pro", "business"]


class Identity(BaseModel):
    """Utilisateur courant, résolu une fois par session et passé explicitement."""
    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: Role = "user"
    plan: Plan = "free"

    class Config:
        frozen = True

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def bypasses_plan_limits(self) -> bool:
        return self.is_admin


ADMIN_IDENTITY = Identity(
    user_id="admin",
    display_name="Admin User",
    email="admin@admin",
    role="admin",
    plan="business",
)
