from __future__ import annotations

from datetime import datetime
from typing import Optional, TypedDict


# PUBLIC_INTERFACE
class OrganizationEntity(TypedDict):
    """
    Storage-level representation of an organization.

    Fields:
    - id: Opaque string identifier
    - name: Display name, also used as the page title
    - created_at: Creation timestamp
    """

    id: str
    name: str
    created_at: datetime


# PUBLIC_INTERFACE
class CollectionEntity(TypedDict):
    """A named group of reminders owned by one organization."""

    id: str
    organization_id: str
    name: str
    created_at: datetime


# PUBLIC_INTERFACE
class ReminderEntity(TypedDict):
    """
    A lightweight domain model representing a reminder for non-ORM storage
    backends.

    Fields:
    - id: Opaque string identifier
    - collection_id: Collection the reminder is filed under
    - title: Short title (1..200 chars, trimmed on input via schemas)
    - description: Optional detailed description
    - due_date: Optional due datetime (normalized to datetime in schemas)
    - is_completed: Boolean completion flag
    - created_by: Owner id; status changes must present the same value
    - created_at: Creation timestamp
    - updated_at: Last update timestamp
    """

    id: str
    collection_id: str
    title: str
    description: Optional[str]
    due_date: Optional[datetime]
    is_completed: bool
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime
