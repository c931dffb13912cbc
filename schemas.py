"""
Database Schemas for the Parent Portal (MongoDB via Pydantic models)

Each collection model documents the shape of one collection; the collection
name is the lowercase of the class name. Request models below validate API
input before it reaches the service layer.
"""
import re
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

PHONE_RE = re.compile(r"^\d{10}$")
MIN_PASSWORD_LENGTH = 6


class Role(str, Enum):
    PARENT = "parent"
    TEACHER = "teacher"
    ADMIN = "admin"


# ----------------------- Collections -----------------------

class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="bcrypt hash, never returned by the API")
    phone: str
    role: Role = Role.PARENT
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Attendance(BaseModel):
    present: int = 0
    absent: int = 0
    total: int = 0  # always present + absent


class Student(BaseModel):
    name: str
    roll_number: str = Field(..., description="Unique across all students")
    class_name: str
    section: str
    parent_id: str = Field(..., description="Reference to the owning parent's user _id")
    attendance: Attendance = Attendance()
    created_at: Optional[datetime] = None


class Homework(BaseModel):
    title: str
    description: str
    class_name: str
    section: str
    subject: str
    due_date: datetime
    uploaded_by: str  # teacher/admin user _id
    attachment_url: Optional[str] = None
    created_at: Optional[datetime] = None


class Message(BaseModel):
    sender: str
    receiver: str
    content: str
    is_read: bool = False
    created_at: Optional[datetime] = None


# ----------------------- Field types -----------------------

def _check_phone(value: str) -> str:
    value = value.strip()
    if not PHONE_RE.match(value):
        raise ValueError("Phone must be 10 digits")
    return value


def _check_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return value


def _check_not_blank(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


Phone = Annotated[str, AfterValidator(_check_phone)]
Password = Annotated[str, AfterValidator(_check_password)]
Text = Annotated[str, AfterValidator(_check_not_blank)]
Email = Annotated[EmailStr, AfterValidator(str.lower)]


# ----------------------- Requests -----------------------

class RegisterRequest(BaseModel):
    name: Text
    email: Email
    password: Password
    phone: Phone


class LoginRequest(BaseModel):
    email: Email
    password: str


class PublicUser(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: Role


class AuthResponse(BaseModel):
    token: str
    user: PublicUser


class StudentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Text
    roll_number: Text
    class_name: Text = Field(..., alias="class")
    section: Text
    parent_id: str


class AttendanceUpdate(BaseModel):
    present: int = Field(..., ge=0)
    absent: int = Field(..., ge=0)


class HomeworkCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Text
    description: Text
    class_name: Text = Field(..., alias="class")
    section: Text
    subject: Text
    due_date: date
    attachment_url: Optional[str] = None


class MessageCreate(BaseModel):
    receiver_id: str
    content: Text


class ProfileUpdate(BaseModel):
    name: Optional[Text] = None
    email: Optional[Email] = None
    phone: Optional[Phone] = None


class PasswordUpdate(BaseModel):
    current_password: str
    new_password: Password
