"""
Identity Backend - Roles, Statuses and Role Profiles

A role profile is the small capability set that distinguishes clients,
employees and administrators: the status a new registration starts in,
the role-specific profile extras, and how a display title is derived.
Everything else about an account is shared.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from identity.errors import InvalidRoleError


class UserRole(str, Enum):
    """Main account roles, one user store each."""
    CLIENT = "client"
    EMPLOYEE = "employee"
    ADMIN = "admin"


class EmployeeSubRole(str, Enum):
    SALON_OWNER = "salon_owner"
    MANAGER = "manager"
    STAFF = "staff"
    RECEPTIONIST = "receptionist"


class UserStatus(str, Enum):
    """Account lifecycle statuses."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    BLOCKED = "blocked"
    DELETED = "deleted"
    ONBOARDING = "onboarding"
    PROFILE_SETUP = "profile_setup"
    PAYMENT_PENDING = "payment_pending"
    TRIAL = "trial"
    EXPIRED = "expired"


# Registrations in these statuses are incomplete and may be purged.
PENDING_STATUSES = frozenset({
    UserStatus.PENDING.value,
    UserStatus.PENDING_VERIFICATION.value,
    UserStatus.ONBOARDING.value,
    UserStatus.PROFILE_SETUP.value,
})

_STATUS_INFO: Dict[str, Tuple[bool, str]] = {
    UserStatus.ACTIVE.value: (True, "Account active and working normally"),
    UserStatus.INACTIVE.value: (False, "Account inactive, needs reactivation"),
    UserStatus.SUSPENDED.value: (False, "Account temporarily suspended"),
    UserStatus.PENDING.value: (False, "Awaiting approval"),
    UserStatus.PENDING_VERIFICATION.value: (False, "Awaiting email verification"),
    UserStatus.VERIFIED.value: (True, "Email verified, account active"),
    UserStatus.BLOCKED.value: (False, "Account blocked for terms violation"),
    UserStatus.DELETED.value: (False, "Account deleted"),
    UserStatus.ONBOARDING.value: (True, "Onboarding in progress"),
    UserStatus.PROFILE_SETUP.value: (True, "Setting up profile"),
    UserStatus.PAYMENT_PENDING.value: (False, "Awaiting payment"),
    UserStatus.TRIAL.value: (True, "Trial period active"),
    UserStatus.EXPIRED.value: (False, "Account expired"),
}


def is_pending_status(status: Optional[str]) -> bool:
    return status in PENDING_STATUSES


def is_active_status(status: Optional[str], raw_is_active: Optional[bool] = None) -> bool:
    """
    Map an account status to "active for registration purposes".

    Known statuses use the fixed table; unknown statuses fall back to the
    record's own is_active flag.
    """
    info = _STATUS_INFO.get(status) if status is not None else None
    if info is not None:
        return info[0]
    return bool(raw_is_active)


def status_info(status: Optional[str]) -> Tuple[bool, str]:
    """Return (is_active, description) for display purposes."""
    return _STATUS_INFO.get(status, (False, "Unknown status"))


def parse_role(role: str) -> UserRole:
    """Parse a role name case-insensitively, raising InvalidRoleError."""
    normalized = (role or "").strip().lower()
    if normalized == "admin_system":
        normalized = UserRole.ADMIN.value
    try:
        return UserRole(normalized)
    except ValueError:
        raise InvalidRoleError(f"Invalid role: {role}") from None


@dataclass(frozen=True)
class RoleProfile:
    """Per-role capability set used by the generic account engine."""
    role: UserRole
    default_status: UserStatus
    default_profile: Callable[[], Dict[str, Any]]
    title: Callable[[Any], str]
    requires_sub_role: bool = False
    allowed_sub_roles: frozenset = field(default_factory=frozenset)

    def build_profile(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        profile = self.default_profile()
        profile.update(overrides or {})
        return profile


def _client_profile() -> Dict[str, Any]:
    return {
        "preferences": {"allergy_notes": "", "special_requirements": ""},
        "loyalty_points": 0,
        "total_appointments": 0,
        "accept_terms": False,
    }


def _employee_profile() -> Dict[str, Any]:
    return {
        "professional_title": "Beauty Professional",
        "bio": "",
        "experience_years": 0,
        "specialties": [],
        "rating": {"average": 0, "total_reviews": 0},
        "accepts_new_clients": True,
    }


def _admin_profile() -> Dict[str, Any]:
    return {
        "permissions": ["users:read", "users:write", "system:stats", "system:config"],
        "access_level": "limited",
        "managed_users": 0,
        "system_notifications": True,
    }


def _employee_title(record: Any) -> str:
    title = (record.profile_data or {}).get("professional_title")
    return title or "Beauty Professional"


ROLE_PROFILES: Dict[UserRole, RoleProfile] = {
    UserRole.CLIENT: RoleProfile(
        role=UserRole.CLIENT,
        default_status=UserStatus.PENDING_VERIFICATION,
        default_profile=_client_profile,
        title=lambda record: "Client",
    ),
    UserRole.EMPLOYEE: RoleProfile(
        role=UserRole.EMPLOYEE,
        default_status=UserStatus.PENDING_VERIFICATION,
        default_profile=_employee_profile,
        title=_employee_title,
        requires_sub_role=True,
        allowed_sub_roles=frozenset(s.value for s in EmployeeSubRole),
    ),
    UserRole.ADMIN: RoleProfile(
        role=UserRole.ADMIN,
        default_status=UserStatus.PENDING,
        default_profile=_admin_profile,
        title=lambda record: "System Administrator",
    ),
}
