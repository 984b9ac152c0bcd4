from pydantic import BaseModel
from typing import Optional
from enum import Enum

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPERADMIN)

class Actor(BaseModel):
    """Authenticated caller, resolved from the identity provider's token"""
    user_id: str
    name: str = ""
    email: str = ""
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_superadmin(self) -> bool:
        return self.role == UserRole.SUPERADMIN

# Internal actor used by sweeps, webhooks and reconciliation
SYSTEM_ACTOR = Actor(user_id="system", name="system", role=UserRole.SUPERADMIN)

class TokenData(BaseModel):
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None

