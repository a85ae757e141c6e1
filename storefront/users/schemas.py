from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..common.errors import ValidationFailed


class ProfileFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    zip_code: Optional[str] = Field(default=None, max_length=20)
    date_of_birth: Optional[date] = None


class RegisterRequest(ProfileFields):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=8)
    password_confirmation: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(ProfileFields):
    # email and role are not editable from the profile
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class PasswordUpdate(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8)
    new_password_confirmation: Optional[str] = None


class AdminUserCreate(RegisterRequest):
    role: Literal["admin", "user"]


class AdminUserUpdate(ProfileFields):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    role: Optional[Literal["admin", "user"]] = None


class AdminPasswordUpdate(BaseModel):
    new_password: str = Field(min_length=8)
    new_password_confirmation: Optional[str] = None


def ensure_confirmed(value: str, confirmation: Optional[str], field: str) -> None:
    if value != confirmation:
        raise ValidationFailed.single(field, f"The {field.replace('_', ' ')} confirmation does not match.")
