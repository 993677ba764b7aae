from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .models import AccountRole


class LoginRequest(BaseModel):
    org_slug: str
    email: str
    password: str


class UserRead(BaseModel):
    id: str
    org_id: str
    email: str
    full_name: str
    role: AccountRole
    site_name: Optional[str] = None
    is_active: bool
    is_superuser: bool
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserRead
