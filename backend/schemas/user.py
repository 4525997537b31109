import re
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

NAME_RE = re.compile(r"^[А-Яа-яЁёA-Za-z\s-]+$")
PHONE_RE = re.compile(r"^\+7\d{10}$")
GRADE_LETTER_RE = re.compile(r"^[А-ЯЁ]$")

# Schema for registration requests; every new account starts as a student
class RegisterRequest(BaseModel):
    email: EmailStr
    login: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=6)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

# Login by email or login name
class LoginRequest(BaseModel):
    identifier: str = Field(min_length=1)
    password: str = Field(min_length=6)

    @field_validator("identifier")
    @classmethod
    def check_identifier(cls, value: str) -> str:
        value = value.strip()
        if not re.match(r"^[^\s@]+@[^\s@]+\.[^\s@]+$", value) and not re.match(r"^[a-zA-Z0-9_]+$", value):
            raise ValueError("Invalid email or login")
        return value

# Returned by register and login
class AuthResponse(BaseModel):
    message: str
    userId: int
    role: str
    table_name: str
    profileCompleted: bool
    token: str

# Partial profile update; role_id switches the caller's role
class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    patronymic: Optional[str] = None
    login: Optional[str] = Field(default=None, min_length=3, max_length=64)
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    grade: Optional[int] = Field(default=None, ge=1, le=11)
    grade_letter: Optional[str] = None
    role_id: Optional[int] = None
    subject: Optional[List[str]] = None

    @field_validator("first_name", "last_name", "patronymic")
    @classmethod
    def check_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if len(value) < 2:
            raise ValueError("must be at least 2 characters")
        if not NAME_RE.match(value):
            raise ValueError("may contain only letters, spaces and hyphens")
        return value

    @field_validator("phone")
    @classmethod
    def check_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not PHONE_RE.match(value):
            raise ValueError("phone must look like +7XXXXXXXXXX")
        return value

    @field_validator("grade_letter")
    @classmethod
    def check_grade_letter(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not GRADE_LETTER_RE.match(value):
            raise ValueError("grade letter must be a single uppercase letter")
        return value

# Output schema for the caller's profile
class ProfileResponse(BaseModel):
    id: int
    email: str
    login: str
    role_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    patronymic: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    profileCompleted: bool
    grade: Optional[int] = None
    grade_letter: Optional[str] = None
    subject: Optional[List[str]] = None
    language: str

    model_config = ConfigDict(from_attributes=True)

# Entry in the moderator/admin user list
class UserListItem(BaseModel):
    id: int
    email: str
    login: str
    role_id: int
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    patronymic: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

# Schema for administrative role updates
class RoleUpdate(BaseModel):
    userId: int
    newRoleId: int

# newUserId and token are present only when the profile changed tables
class RoleChangeResponse(BaseModel):
    message: str
    newUserId: Optional[int] = None
    token: Optional[str] = None

class ChangePassword(BaseModel):
    oldPassword: str = Field(min_length=1)
    newPassword: str = Field(min_length=1)
    confirmPassword: str = Field(min_length=1)

class ChangeLanguage(BaseModel):
    language: str

class ForgotPassword(BaseModel):
    email: EmailStr

class ResetPassword(BaseModel):
    token: str = Field(min_length=1)
    newPassword: str

    @field_validator("newPassword")
    @classmethod
    def check_strength(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("password must be at least 6 characters")
        if not re.search(r"\d", value):
            raise ValueError("password must contain a digit")
        if not re.search(r"[A-Z]", value):
            raise ValueError("password must contain an uppercase letter")
        if not re.search(r"[a-z]", value):
            raise ValueError("password must contain a lowercase letter")
        return value

class Message(BaseModel):
    message: str
