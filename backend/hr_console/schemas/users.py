"""Pydantic schemas for user provisioning and username suggestions."""
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

UserRole = Literal["Admin", "HR", "Head-of-Dept", "Line Manager", "Employee"]


class UsernameSuggestionRequest(BaseModel):
    """Suggest a username for `name`.

    When the form already shows a username, pass it with the name it was
    derived from; it is kept if the operator edited it by hand.
    """
    name: str = Field(min_length=1)
    current_username: str = ""
    previous_name: str = ""
    preferred_suffix: str | None = Field(default=None, pattern=r"^\d+$")


class UsernameSuggestionResponse(BaseModel):
    username: str
    base: str
    regenerated: bool


class UserCreate(BaseModel):
    """Create a user account on the HR API; username is generated when omitted."""
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=8)
    role: UserRole = "Employee"
    username: str | None = Field(default=None, pattern=r"^[a-z0-9]{2,20}$")
    title: str | None = None
    phone: str | None = None


class UserOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | int
    username: str
    email: str
    name: str
    role: str | None = None
