"""
Identity Backend - Database Models

SQLModel-based models for user accounts, sessions and session activity.
Uses PostgreSQL for production, SQLite for local development.

Security:
- Passwords stored as bcrypt hashes only
- Sessions are server-controlled for immediate revocation
- All timestamps are naive UTC
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, String, DateTime, JSON


def utcnow() -> datetime:
    """Current time as naive UTC (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _user_id() -> str:
    return uuid4().hex


class SessionStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    IDLE = "idle"


class ActivityAction(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    REFRESH = "refresh"
    ACTIVITY = "activity"
    TIMEOUT = "timeout"


class UserRecordBase(SQLModel):
    """
    Fields shared by every role's user table.

    Attributes:
        id: Unique identifier (hex UUID)
        email: Login identifier, normalized to lowercase (unique per table)
        password_hash: bcrypt hash (never store plaintext)
        status: Lifecycle status (see identity.users.roles.UserStatus)
        is_active: Raw activity flag, consulted for unknown statuses
        is_deleted: Soft-delete flag; deleted users are hidden from lookups
        profile_data: Role-specific extras defined by the role profile
    """
    id: str = Field(default_factory=_user_id, primary_key=True)
    email: str = Field(index=True, unique=True, max_length=255)
    password_hash: str = Field(max_length=255)

    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    display_name: str = Field(default="", max_length=200)
    phone_number: str = Field(default="", max_length=32)

    role: str = Field(max_length=32)
    sub_role: Optional[str] = Field(default=None, max_length=32)
    status: str = Field(index=True, max_length=32)
    is_active: bool = Field(default=False)
    is_verified: bool = Field(default=False)

    is_deleted: bool = Field(default=False)
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    email_verified_at: Optional[datetime] = None

    last_login: Optional[datetime] = None
    login_count: int = Field(default=0)
    failed_login_attempts: int = Field(default=0)

    profile_data: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class ClientUser(UserRecordBase, table=True):
    __tablename__ = "clients"


class EmployeeUser(UserRecordBase, table=True):
    __tablename__ = "employees"


class AdminUser(UserRecordBase, table=True):
    __tablename__ = "admins"


class Session(SQLModel, table=True):
    """
    Server-side record of one authenticated login.

    status is OFFLINE exactly when logout_at is set. duration (minutes) is
    written once, at logout. token_expires_at is derived from the access
    token lifetime at creation and drives the expiry reaper.
    """
    __tablename__ = "sessions"

    id: str = Field(
        sa_column=Column(String(64), primary_key=True),
        description="Opaque session identifier"
    )
    user_id: str = Field(index=True, description="Reference to user")
    user_role: str
    user_email: str
    user_name: str = ""

    login_at: datetime = Field(
        sa_column=Column(DateTime, nullable=False, index=True),
        description="Session creation timestamp"
    )
    logout_at: Optional[datetime] = None
    last_activity: datetime = Field(
        sa_column=Column(DateTime, nullable=False),
        description="Last activity timestamp"
    )
    status: str = Field(default=SessionStatus.ONLINE.value, index=True)

    device: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    location: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    security: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    access_token: str
    refresh_token: str
    token_expires_at: datetime = Field(
        sa_column=Column(DateTime, nullable=False, index=True),
        description="Access token expiry"
    )

    duration: Optional[int] = Field(default=None, description="Minutes, set at logout")
    activity_count: int = 0


class SessionActivity(SQLModel, table=True):
    """Append-only forensic trail of session events."""
    __tablename__ = "session_activities"

    id: str = Field(default_factory=_user_id, primary_key=True)
    session_id: str = Field(index=True)
    user_id: str = Field(index=True)
    action: str
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    timestamp: datetime = Field(default_factory=utcnow, index=True)
