from __future__ import annotations

from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    id: str
    email: str | None = None
    first_name: str = ""
    last_name: str = ""
    usage_type: str = "personal"
    is_guest: bool = False

    @property
    def display_name(self) -> str:
        if self.first_name.strip():
            return f"{self.first_name} {self.last_name}".strip()
        if self.email:
            return self.email.split("@")[0]
        return "Traveler"


class SignUpData(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    usage_type: str = "personal"


class AuthResult(BaseModel):
    """A signed-in user plus the bearer token that identifies the login."""

    user: UserProfile
    token: str
