"""
Identity Backend - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Separates API contracts from database models.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, validator


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: str = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")

    @validator("email")
    def normalize_email(cls, v):
        return v.strip().lower()


class LoginResponse(BaseModel):
    """Response body for successful login."""
    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Seconds until the access token expires")
    session_id: str = Field(..., description="Session bound to the token pair")
    user_id: str
    role: str


class LogoutRequest(BaseModel):
    """Request body for POST /auth/logout (optional)."""
    all_sessions: bool = Field(
        default=False,
        description="End every session of the user (logout everywhere)"
    )


class LogoutResponse(BaseModel):
    """Response body for logout."""
    message: str = Field(default="Session ended")
    sessions_invalidated: int = Field(default=1)


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""
    refresh_token: str = Field(..., description="Refresh token")


class RefreshResponse(BaseModel):
    """Response body for token refresh."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseModel):
    """Response body for GET /auth/me."""
    id: str
    email: str
    role: str
    sub_role: Optional[str] = None
    status: str
    is_active: bool
    is_verified: bool
    display_name: str = ""
    title: str
    last_login: Optional[datetime] = None
    created_at: datetime


class SessionInfo(BaseModel):
    """Session information for user display."""
    id: str
    status: str
    login_at: datetime
    last_activity: datetime
    logout_at: Optional[datetime] = None
    duration: Optional[int] = None
    activity_count: int
    device: Dict[str, Any] = Field(default_factory=dict)
    location: Dict[str, Any] = Field(default_factory=dict)
    is_current: bool = False

    class Config:
        from_attributes = True


class SessionListResponse(BaseModel):
    """Response body for GET /auth/sessions and /auth/sessions/history."""
    sessions: list[SessionInfo]
    total: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    error_code: Optional[str] = None
    request_id: Optional[str] = None
