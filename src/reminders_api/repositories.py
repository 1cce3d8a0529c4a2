from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import List, Optional, Tuple
from uuid import uuid4

from .models import CollectionEntity, OrganizationEntity, ReminderEntity
from .schemas import CollectionCreate, OrganizationCreate, ReminderCreate

SORT_FIELDS = {"created_at", "updated_at"}


class OwnershipError(Exception):
    """Raised when a status change names an owner other than the reminder's."""

    def __init__(self, reminder_id: str) -> None:
        super().__init__(f"Reminder {reminder_id} belongs to another user")
        self.reminder_id = reminder_id


@dataclass(frozen=True)
class ListQuery:
    """
    Query parameters for listing reminders.
    """
    limit: int = 50
    offset: int = 0
    collection_id: Optional[str] = None
    completed: Optional[bool] = None
    created_by: Optional[str] = None
    search: Optional[str] = None
    sort: str = "-created_at"  # allowed: created_at, -created_at, updated_at, -updated_at


def normalize_sort(sort: Optional[str]) -> Tuple[str, bool]:
    """Return (field, descending) for a sort expression, defaulting to -created_at."""
    key = sort.strip().lower() if sort else "-created_at"
    reverse = key.startswith("-")
    field = key[1:] if reverse else key
    if field not in SORT_FIELDS:
        return "created_at", True
    return field, reverse


def new_id() -> str:
    return uuid4().hex


# PUBLIC_INTERFACE
class Repository(ABC):
    """Abstract repository contract for organization/collection/reminder storage backends."""

    @abstractmethod
    def create_organization(self, data: OrganizationCreate) -> OrganizationEntity:
        """Create and return a new organization."""

    @abstractmethod
    def get_organization(self, org_id: str) -> Optional[OrganizationEntity]:
        """Return an organization by id, or None if not found."""

    @abstractmethod
    def create_collection(self, org_id: str, data: CollectionCreate) -> Optional[CollectionEntity]:
        """Create a collection under an organization. Return None if the organization does not exist."""

    @abstractmethod
    def list_collections(self, org_id: str) -> List[CollectionEntity]:
        """Return the organization's collections, oldest first."""

    @abstractmethod
    def create_reminder(self, data: ReminderCreate) -> Optional[ReminderEntity]:
        """Create a reminder. Return None if its collection does not exist."""

    @abstractmethod
    def get_reminder(self, reminder_id: str) -> Optional[ReminderEntity]:
        """Return a reminder by id, or None if not found."""

    @abstractmethod
    def delete_reminder(self, reminder_id: str) -> bool:
        """Delete a reminder by id. Return True if deleted, False if not found."""

    @abstractmethod
    def list_reminders(self, query: Optional[ListQuery] = None) -> Tuple[List[ReminderEntity], int]:
        """
        Return a slice of reminders and total count matching filters.
        - Supports limit/offset
        - Filter by collection, completion status and owner
        - Substring search across title and description (case-insensitive)
        - Sorting by created_at/updated_at (asc/desc)
        """

    @abstractmethod
    def update_status(self, reminder_id: str, created_by: str, is_completed: bool) -> Optional[ReminderEntity]:
        """
        Set the completion flag of a reminder.

        Returns the updated reminder, or None if not found.

        Raises:
            OwnershipError: if created_by does not match the stored owner.
        """


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._organizations: dict[str, OrganizationEntity] = {}
        self._collections: dict[str, CollectionEntity] = {}
        self._reminders: dict[str, ReminderEntity] = {}

    def _now(self) -> datetime:
        return datetime.now()

    def create_organization(self, data: OrganizationCreate) -> OrganizationEntity:
        entity: OrganizationEntity = {"id": new_id(), "name": data.name, "created_at": self._now()}
        with self._lock:
            self._organizations[entity["id"]] = entity
        return entity.copy()

    def get_organization(self, org_id: str) -> Optional[OrganizationEntity]:
        with self._lock:
            item = self._organizations.get(org_id)
            return None if item is None else item.copy()

    def create_collection(self, org_id: str, data: CollectionCreate) -> Optional[CollectionEntity]:
        with self._lock:
            if org_id not in self._organizations:
                return None
            entity: CollectionEntity = {
                "id": new_id(),
                "organization_id": org_id,
                "name": data.name,
                "created_at": self._now(),
            }
            self._collections[entity["id"]] = entity
            return entity.copy()

    def list_collections(self, org_id: str) -> List[CollectionEntity]:
        with self._lock:
            # dicts keep insertion order, which is creation order
            return [c.copy() for c in self._collections.values() if c["organization_id"] == org_id]

    def create_reminder(self, data: ReminderCreate) -> Optional[ReminderEntity]:
        now = self._now()
        with self._lock:
            if data.collection_id not in self._collections:
                return None
            entity: ReminderEntity = {
                "id": new_id(),
                "collection_id": data.collection_id,
                "title": data.title,
                "description": data.description,
                "due_date": data.due_date,
                "is_completed": data.is_completed,
                "created_by": data.created_by,
                "created_at": now,
                "updated_at": now,
            }
            self._reminders[entity["id"]] = entity
            return entity.copy()

    def get_reminder(self, reminder_id: str) -> Optional[ReminderEntity]:
        with self._lock:
            item = self._reminders.get(reminder_id)
            return None if item is None else item.copy()

    def delete_reminder(self, reminder_id: str) -> bool:
        with self._lock:
            return self._reminders.pop(reminder_id, None) is not None

    def list_reminders(self, query: Optional[ListQuery] = None) -> Tuple[List[ReminderEntity], int]:
        q = query or ListQuery()
        with self._lock:
            items: List[ReminderEntity] = list(self._reminders.values())

            if q.collection_id is not None:
                items = [r for r in items if r["collection_id"] == q.collection_id]
            if q.completed is not None:
                items = [r for r in items if r["is_completed"] == q.completed]
            if q.created_by is not None:
                items = [r for r in items if r["created_by"] == q.created_by]

            if q.search:
                s = q.search.lower()

                def matches(r: ReminderEntity) -> bool:
                    return s in r["title"].lower() or s in (r["description"] or "").lower()

                items = [r for r in items if matches(r)]

            total = len(items)

            field, reverse = normalize_sort(q.sort)
            items_sorted = sorted(items, key=lambda r: r[field], reverse=reverse)  # type: ignore[literal-required]

            start = max(q.offset, 0)
            end = start + max(q.limit, 0)
            return [r.copy() for r in items_sorted[start:end]], total

    def update_status(self, reminder_id: str, created_by: str, is_completed: bool) -> Optional[ReminderEntity]:
        with self._lock:
            existing = self._reminders.get(reminder_id)
            if existing is None:
                return None
            if existing["created_by"] != created_by:
                raise OwnershipError(reminder_id)

            updated = existing.copy()
            updated["is_completed"] = is_completed
            updated["updated_at"] = self._now()
            self._reminders[reminder_id] = updated
            return updated.copy()


# PUBLIC_INTERFACE
def get_repository_for(backend: str, sqlite_db_path: str) -> Repository:
    """
    Factory to return the configured repository.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository at sqlite_db_path
    """
    if backend == "sqlite":
        from .db import SQLiteRepository

        return SQLiteRepository(sqlite_db_path)
    return InMemoryRepository()
