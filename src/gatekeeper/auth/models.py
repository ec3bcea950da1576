from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from gatekeeper.common import User


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    role: str
    is_active: bool
    created_at: datetime | None = None
    last_login: datetime | None = None

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        """Build the public view of a user record."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role.label,
            is_active=user.is_active,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class ScopesResponse(BaseModel):
    role: str
    scopes: list[str]


class MessageResponse(BaseModel):
    message: str
