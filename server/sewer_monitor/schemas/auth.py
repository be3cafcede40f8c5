from pydantic import BaseModel, Field
from typing import Literal, Optional

from sewer_monitor.models.user import USER_ROLES

UserRole = Literal[USER_ROLES]


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    username: str
    full_name: Optional[str] = None
    role: str
    language: str = "pt"


class UserInfo(BaseModel):
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: str
    phone_number: Optional[str] = None
    whatsapp_notifications: bool
    language: str


class UserCreateRequest(BaseModel):
    username: str = Field(min_length=3, max_length=128)
    password: str = Field(min_length=6)
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = "viewer"
    phone_number: Optional[str] = Field(None, max_length=32)
    whatsapp_notifications: bool = False
    language: Literal["en", "pt"] = "pt"


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = Field(None, max_length=32)
    whatsapp_notifications: Optional[bool] = None
    language: Optional[Literal["en", "pt"]] = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)
