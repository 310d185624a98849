from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Optional

from models import UserRole
from time_utils import as_utc


# User schemas
class UserBase(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    email: EmailStr


class UserCreate(UserBase):
    password: str = Field(..., min_length=8, max_length=100)
    role: UserRole = UserRole.client


class UserUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8, max_length=100)
    role: Optional[UserRole] = None


class User(UserBase):
    """Outward representation of a user. The password hash is never included."""
    id: int
    role: UserRole
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Auth schemas
class RegisterRequest(UserBase):
    password: str = Field(..., min_length=8, max_length=100)
    role: UserRole = UserRole.client


class LoginRequest(BaseModel):
    username: str
    password: str


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in_days: int
    user: User


# Task schemas
class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    scheduled_time: datetime

    @field_validator("scheduled_time")
    @classmethod
    def scheduled_time_in_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class TaskCreate(TaskBase):
    status: Optional[str] = Field(None, min_length=1, max_length=50)
    # Ignored for clients: the authenticated client always owns the task
    client_id: Optional[int] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    status: Optional[str] = Field(None, min_length=1, max_length=50)
    # Admin only
    client_id: Optional[int] = None

    @field_validator("scheduled_time")
    @classmethod
    def scheduled_time_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class Task(TaskBase):
    id: int
    status: str
    client_id: int
    client_username: Optional[str] = None
    runner_id: Optional[int] = None
    runner_username: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Task item schemas
class TaskItemBase(BaseModel):
    description: str = Field(..., min_length=1)
    is_completed: bool = False


class TaskItemCreate(TaskItemBase):
    task_id: int
    status: Optional[str] = Field(None, min_length=1, max_length=50)


class TaskItemUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1)
    is_completed: Optional[bool] = None
    status: Optional[str] = Field(None, min_length=1, max_length=50)
    task_id: Optional[int] = None


class TaskItem(TaskItemBase):
    id: int
    task_id: int
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Status log schemas
class StatusLogCreate(BaseModel):
    task_item_id: int
    # Defaults to the authenticated actor; runners may only name themselves
    runner_id: Optional[int] = None
    # When set, also becomes the parent task item's status
    status: Optional[str] = Field(None, min_length=1, max_length=50)
    comment: str = ""


class StatusLogUpdate(BaseModel):
    task_item_id: Optional[int] = None
    runner_id: Optional[int] = None
    status: Optional[str] = Field(None, min_length=1, max_length=50)
    comment: Optional[str] = None


class StatusLog(BaseModel):
    id: int
    task_item_id: int
    runner_id: Optional[int] = None
    runner_username: Optional[str] = None
    status: Optional[str] = None
    comment: str
    created_at: datetime

    class Config:
        from_attributes = True


class Message(BaseModel):
    message: str
