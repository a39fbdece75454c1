"""
Identity Backend - User Directory

The three role stores behind one lookup surface.
"""

import asyncio
from typing import Dict, Optional, Tuple

from identity.auth.models import UserRecordBase
from identity.registration.availability import ExistenceSnapshot
from identity.users.roles import UserRole, is_active_status, parse_role
from identity.users.stores import UserStore

# An email present in several stores resolves to the first match.
LOOKUP_ORDER = (UserRole.CLIENT, UserRole.EMPLOYEE, UserRole.ADMIN)


class UserDirectory:
    """
    Role-keyed access to the user stores.

    Example:
        directory = UserDirectory({UserRole.CLIENT: clients, ...})
        snapshot = await directory.find_account("a@b.com")
    """

    def __init__(self, stores: Dict[UserRole, UserStore]):
        missing = [role.value for role in LOOKUP_ORDER if role not in stores]
        if missing:
            raise ValueError(f"Missing user stores for roles: {', '.join(missing)}")
        self.stores = stores

    def store_for(self, role) -> UserStore:
        """Store for a role name or UserRole; raises InvalidRoleError."""
        if not isinstance(role, UserRole):
            role = parse_role(role)
        return self.stores[role]

    async def find_any(self, email: str) -> Optional[Tuple[UserRole, UserRecordBase]]:
        """First (role, record) holding email, in LOOKUP_ORDER."""
        records = await asyncio.gather(
            *(self.stores[role].find_by_email(email) for role in LOOKUP_ORDER)
        )
        for role, record in zip(LOOKUP_ORDER, records):
            if record is not None:
                return role, record
        return None

    async def find_account(self, email: str, include_details: bool = False) -> ExistenceSnapshot:
        """Existence lookup consumed by the availability cache."""
        found = await self.find_any(email)
        if found is None:
            return ExistenceSnapshot(exists=False, is_active=False)

        role, record = found
        snapshot = ExistenceSnapshot(
            exists=True,
            is_active=is_active_status(record.status, record.is_active),
            user_type=role.value,
            status=record.status,
        )
        if include_details:
            snapshot.last_login = record.last_login
            snapshot.created_at = record.created_at
        return snapshot
