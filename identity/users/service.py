"""
Identity Backend - Account Lifecycle

One engine for every role. Role differences (starting status, profile
extras, display title) come from the role profile; the lifecycle
mutations are shared. Each mutation invalidates the availability cache
entry for the account's email.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from identity.auth.models import UserRecordBase, utcnow
from identity.auth.password import BcryptHasher
from identity.errors import (
    AccountDisabledError,
    AuthenticationError,
    EmailNotVerifiedError,
    EmailUnavailableError,
    InvalidRoleError,
    UserNotFoundError,
)
from identity.logging import get_logger
from identity.registration.availability import AvailabilityCache, normalize_email
from identity.users.directory import UserDirectory
from identity.users.roles import (
    PENDING_STATUSES,
    ROLE_PROFILES,
    UserRole,
    UserStatus,
    parse_role,
)

logger = get_logger(__name__)


def _as_role(role) -> UserRole:
    return role if isinstance(role, UserRole) else parse_role(role)


class RegistrationData(BaseModel):
    """Fields accepted when starting a registration."""
    email: str
    password: str = Field(..., min_length=8)
    first_name: str = ""
    last_name: str = ""
    phone_number: str = ""
    sub_role: Optional[str] = None
    profile: Dict[str, Any] = Field(default_factory=dict)


class UserAccountService:
    """
    Registration, verification and login bookkeeping across all roles.

    Usage:
        accounts = UserAccountService(directory, cache, BcryptHasher())
        user = await accounts.register("client", RegistrationData(...))
        await accounts.activate_account("client", user.id)
    """

    def __init__(
        self,
        directory: UserDirectory,
        cache: AvailabilityCache,
        hasher: BcryptHasher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.directory = directory
        self.cache = cache
        self.hasher = hasher
        self._clock = clock

    async def register(self, role, data: RegistrationData) -> UserRecordBase:
        """
        Create a pending account for `role`.

        A pending registration of the same role for the same email is
        restarted (replaced). Any other existing account blocks the email.

        Raises:
            InvalidRoleError: Unknown role or missing/invalid sub-role
            InvalidEmailFormatError: Malformed email
            EmailUnavailableError: Email belongs to another account
        """
        role = _as_role(role)
        profile = ROLE_PROFILES[role]

        if profile.requires_sub_role and data.sub_role not in profile.allowed_sub_roles:
            raise InvalidRoleError(f"Invalid sub-role for {role.value}: {data.sub_role}")

        availability = await self.cache.check(data.email)
        if not availability.available:
            raise EmailUnavailableError(availability.reason, detail={"email": availability.email})

        email = availability.email
        store = self.directory.store_for(role)

        existing = await self.directory.find_any(email)
        if existing is not None:
            existing_role, record = existing
            if existing_role != role or record.status not in PENDING_STATUSES:
                raise EmailUnavailableError(
                    f"Email already registered as {existing_role.value}",
                    detail={"email": email, "role": existing_role.value},
                )
            await store.delete_one(email, PENDING_STATUSES)
            logger.info("pending_registration_restarted", email=email, role=role.value)

        display_name = f"{data.first_name} {data.last_name}".strip() or email
        record = store.model(
            email=email,
            password_hash=self.hasher.hash(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            display_name=display_name,
            phone_number=data.phone_number,
            role=role.value,
            sub_role=data.sub_role,
            status=profile.default_status.value,
            is_active=False,
            profile_data=profile.build_profile(data.profile),
        )

        try:
            record = await store.insert(record)
        except IntegrityError:
            raise EmailUnavailableError(
                "Email already registered", detail={"email": email}
            ) from None
        finally:
            self.cache.invalidate(email)

        logger.info("user_registered", user_id=record.id, role=role.value, status=record.status)
        return record

    async def get(self, role, user_id: str) -> UserRecordBase:
        record = await self.directory.store_for(role).find_by_id(user_id)
        if record is None:
            raise UserNotFoundError(f"User not found: {user_id}")
        return record

    async def _mutate(
        self, role, user_id: str, values: Dict[str, Any], event: str
    ) -> UserRecordBase:
        role = _as_role(role)
        record = await self.directory.store_for(role).update_by_id(user_id, values)
        if record is None:
            raise UserNotFoundError(f"User not found: {user_id}")
        self.cache.invalidate(record.email)
        logger.info(event, user_id=user_id, role=role.value, status=record.status)
        return record

    async def verify_email(self, role, user_id: str) -> UserRecordBase:
        return await self._mutate(
            role,
            user_id,
            {
                "is_verified": True,
                "email_verified_at": self._clock(),
                "status": UserStatus.VERIFIED.value,
                "is_active": True,
            },
            "user_email_verified",
        )

    async def activate_account(self, role, user_id: str) -> UserRecordBase:
        return await self._mutate(
            role,
            user_id,
            {"is_active": True, "is_verified": True, "status": UserStatus.ACTIVE.value},
            "user_activated",
        )

    async def soft_delete(
        self, role, user_id: str, deleted_by: Optional[str] = None
    ) -> UserRecordBase:
        """Hide the account from lookups without removing the row."""
        return await self._mutate(
            role,
            user_id,
            {
                "is_deleted": True,
                "deleted_at": self._clock(),
                "deleted_by": deleted_by,
                "is_active": False,
                "status": UserStatus.DELETED.value,
            },
            "user_soft_deleted",
        )

    async def restore(self, role, user_id: str) -> UserRecordBase:
        return await self._mutate(
            role,
            user_id,
            {
                "is_deleted": False,
                "deleted_at": None,
                "deleted_by": None,
                "is_active": True,
                "status": UserStatus.ACTIVE.value,
            },
            "user_restored",
        )

    async def authenticate(self, email: str, password: str) -> Tuple[UserRole, UserRecordBase]:
        """
        Verify credentials across all role stores.

        Raises:
            AuthenticationError: Unknown email or wrong password
            AccountDisabledError: Account is not active
            EmailNotVerifiedError: Client has not verified the email
        """
        email = normalize_email(email)
        found = await self.directory.find_any(email)
        if found is None:
            raise AuthenticationError("Invalid credentials")

        role, record = found
        store = self.directory.store_for(role)

        if not self.hasher.verify(password, record.password_hash):
            await store.update_by_id(
                record.id, {"failed_login_attempts": record.failed_login_attempts + 1}
            )
            logger.warning("login_failed", email=email, role=role.value)
            raise AuthenticationError("Invalid credentials")

        if not record.is_active:
            raise AccountDisabledError("Account disabled")
        if role == UserRole.CLIENT and not record.is_verified:
            raise EmailNotVerifiedError("Email not verified")

        if self.hasher.needs_rehash(record.password_hash):
            record = await store.update_by_id(
                record.id, {"password_hash": self.hasher.hash(password)}
            )
        return role, record

    async def record_login(self, role, record: UserRecordBase) -> UserRecordBase:
        return await self._mutate(
            role,
            record.id,
            {
                "last_login": self._clock(),
                "login_count": record.login_count + 1,
                "failed_login_attempts": 0,
            },
            "user_login_recorded",
        )

    def title_for(self, role, record: UserRecordBase) -> str:
        """Display title derived by the role profile."""
        return ROLE_PROFILES[_as_role(role)].title(record)
