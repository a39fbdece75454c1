"""
Identity Backend - Registration Request/Response Schemas
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from identity.registration.cleanup import RegistrationStep


class RegistrationStartRequest(BaseModel):
    """Request body for POST /registration/start."""
    role: str = Field(..., description="client, employee or admin")
    email: str
    password: str = Field(..., min_length=8)
    first_name: str = ""
    last_name: str = ""
    phone_number: str = ""
    sub_role: Optional[str] = Field(default=None, description="Required for employees")
    profile: Dict[str, Any] = Field(default_factory=dict)


class RegistrationResponse(BaseModel):
    user_id: str
    email: str
    role: str
    status: str
    is_active: bool
    title: str
    created_at: datetime


class ActivationRequest(BaseModel):
    """Request body for POST /registration/activate (admin only)."""
    role: str
    user_id: str
    mode: Literal["activate", "verify_email"] = "activate"


class CleanupRequest(BaseModel):
    """Request body for POST /registration/cleanup."""
    email: str
    role: str
    reason: str = "manual_cleanup"
    step: RegistrationStep = RegistrationStep.START_REGISTRATION


class BulkCleanupRequest(BaseModel):
    """Request body for POST /registration/cleanup/bulk."""
    stale_after_hours: Optional[float] = Field(default=None, gt=0)
