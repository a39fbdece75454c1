"""
Identity Backend - User Stores

One store per role table. The blocking SQLModel calls run in a worker
thread so the store can be awaited from request handlers and background
drivers alike.

Soft-deleted records are hidden from lookups unless include_deleted=True.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Type

from sqlalchemy import delete, func
from sqlmodel import Session as DBSession, select

from identity.auth.database import SessionFactory, run_in_session
from identity.auth.models import UserRecordBase, utcnow
from identity.users.roles import UserRole


class UserStore(Protocol):
    """Operations the core needs from a role's user collection."""

    role: UserRole

    async def find_by_email(
        self, email: str, include_deleted: bool = False
    ) -> Optional[UserRecordBase]: ...

    async def find_by_id(
        self, user_id: str, include_deleted: bool = False
    ) -> Optional[UserRecordBase]: ...

    async def insert(self, record: UserRecordBase) -> UserRecordBase: ...

    async def update_by_id(
        self, user_id: str, values: Dict[str, Any]
    ) -> Optional[UserRecordBase]: ...

    async def delete_one(
        self, email: str, statuses: Optional[Iterable[str]] = None
    ) -> int: ...

    async def delete_many(
        self, statuses: Iterable[str], created_before: Optional[datetime] = None
    ) -> int: ...

    async def count_documents(
        self, statuses: Optional[Iterable[str]] = None, include_deleted: bool = False
    ) -> int: ...


class SQLUserStore:
    """
    UserStore over one SQLModel user table.

    Usage:
        clients = SQLUserStore(UserRole.CLIENT, ClientUser, session_factory)
        record = await clients.find_by_email("a@b.com")
    """

    def __init__(
        self,
        role: UserRole,
        model: Type[UserRecordBase],
        session_factory: SessionFactory,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.role = role
        self.model = model
        self._session_factory = session_factory
        self._clock = clock

    def _visible(self, statement, include_deleted: bool):
        if include_deleted:
            return statement
        return statement.where(self.model.is_deleted == False)  # noqa: E712

    async def find_by_email(
        self, email: str, include_deleted: bool = False
    ) -> Optional[UserRecordBase]:
        model = self.model
        statement = self._visible(
            select(model).where(model.email == email.strip().lower()), include_deleted
        )
        return await run_in_session(
            self._session_factory, lambda db: db.exec(statement).first()
        )

    async def find_by_id(
        self, user_id: str, include_deleted: bool = False
    ) -> Optional[UserRecordBase]:
        model = self.model
        statement = self._visible(select(model).where(model.id == user_id), include_deleted)
        return await run_in_session(
            self._session_factory, lambda db: db.exec(statement).first()
        )

    async def insert(self, record: UserRecordBase) -> UserRecordBase:
        record.email = record.email.strip().lower()

        def _insert(db: DBSession) -> UserRecordBase:
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

        return await run_in_session(self._session_factory, _insert)

    async def update_by_id(
        self, user_id: str, values: Dict[str, Any]
    ) -> Optional[UserRecordBase]:
        """Apply field updates and bump updated_at. Returns None if absent."""
        now = self._clock()

        def _update(db: DBSession) -> Optional[UserRecordBase]:
            record = db.get(self.model, user_id)
            if record is None:
                return None
            for key, value in values.items():
                setattr(record, key, value)
            record.updated_at = now
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

        return await run_in_session(self._session_factory, _update)

    async def delete_one(self, email: str, statuses: Optional[Iterable[str]] = None) -> int:
        """
        Delete the record for email, optionally only while its status is in
        `statuses`. The condition is part of the DELETE statement itself.
        """
        model = self.model
        statement = delete(model).where(model.email == email.strip().lower())
        if statuses is not None:
            statement = statement.where(model.status.in_(list(statuses)))
        return await self._execute_delete(statement)

    async def delete_many(
        self, statuses: Iterable[str], created_before: Optional[datetime] = None
    ) -> int:
        model = self.model
        statement = delete(model).where(model.status.in_(list(statuses)))
        if created_before is not None:
            statement = statement.where(model.created_at < created_before)
        return await self._execute_delete(statement)

    async def _execute_delete(self, statement) -> int:
        def _delete(db: DBSession) -> int:
            result = db.execute(statement)
            db.commit()
            return result.rowcount or 0

        return await run_in_session(self._session_factory, _delete)

    async def count_documents(
        self, statuses: Optional[Iterable[str]] = None, include_deleted: bool = False
    ) -> int:
        model = self.model
        statement = self._visible(select(func.count()).select_from(model), include_deleted)
        if statuses is not None:
            statement = statement.where(model.status.in_(list(statuses)))
        return await run_in_session(
            self._session_factory, lambda db: db.exec(statement).one()
        )

