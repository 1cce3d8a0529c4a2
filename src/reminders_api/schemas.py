from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Shared type for incoming due_date which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize due_date input into a datetime (naive allowed).
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - If value is a datetime, return as-is.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 0, 0, 0)

    if isinstance(value, str):
        s = value.strip()
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return datetime(d.year, d.month, d.day, 0, 0, 0)
            except ValueError as e:
                raise ValueError(
                    "Invalid due_date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    raise ValueError("Invalid type for due_date; expected date, datetime, or ISO8601 string.")


def _clean_name(v: Optional[str], field: str) -> str:
    if v is None:
        raise ValueError(f"{field} is required")
    s = v.strip()
    if not (1 <= len(s) <= 200):
        raise ValueError(f"{field} length must be between 1 and 200 characters")
    return s


# PUBLIC_INTERFACE
class OrganizationCreate(BaseModel):
    """Schema for creating an organization."""

    model_config = ConfigDict(json_schema_extra={"example": {"name": "Household"}})

    name: str = Field(..., description="Organization display name", min_length=1, max_length=200)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v, "name")


# PUBLIC_INTERFACE
class OrganizationOut(BaseModel):
    """Organization as returned by the API."""

    id: str = Field(..., description="Unique identifier of the organization")
    name: str = Field(..., description="Organization display name")
    created_at: datetime = Field(..., description="Creation timestamp")


# PUBLIC_INTERFACE
class CollectionCreate(BaseModel):
    """Schema for creating a collection inside an organization."""

    model_config = ConfigDict(json_schema_extra={"example": {"name": "Groceries"}})

    name: str = Field(..., description="Collection name", min_length=1, max_length=200)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v, "name")


# PUBLIC_INTERFACE
class ReminderCreate(BaseModel):
    """
    Schema for creating a new reminder.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "collection_id": "5b1f0c3e9d2a4f6b8c7d0e1f2a3b4c5d",
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "due_date": "2025-02-01",
                "is_completed": False,
                "created_by": "user_123",
            }
        }
    )

    collection_id: str = Field(..., description="Collection the reminder belongs to", min_length=1)
    title: str = Field(..., description="Short title for the reminder", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time of the reminder. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )
    is_completed: bool = Field(default=False, description="Completion status flag")
    created_by: Optional[str] = Field(default=None, description="Owner id of the reminder")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        return _clean_name(v, "title")

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        """
        Normalize due_date from str/date/datetime to datetime.
        """
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class ReminderStatusUpdate(BaseModel):
    """
    Body of a completion status change. The owner id must match the stored
    reminder's owner.
    """

    model_config = ConfigDict(
        json_schema_extra={"example": {"created_by": "user_123", "is_completed": True}}
    )

    created_by: str = Field(..., description="Owner id of the reminder", min_length=1)
    is_completed: bool = Field(..., description="Target completion status")


# PUBLIC_INTERFACE
class ReminderStatusRequest(ReminderStatusUpdate):
    """A status change addressed to one reminder, as issued by clients."""

    id: str = Field(..., description="Reminder id", min_length=1)


# PUBLIC_INTERFACE
class ReminderOut(BaseModel):
    """
    Schema returned by the API for a reminder.

    Instances are frozen: cached snapshots replace entries with
    ``model_copy(update=...)`` rather than editing them.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "9f8e7d6c5b4a39281706f5e4d3c2b1a0",
                "collection_id": "5b1f0c3e9d2a4f6b8c7d0e1f2a3b4c5d",
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "due_date": "2025-02-01T00:00:00",
                "is_completed": False,
                "created_by": "user_123",
                "created_at": "2025-01-25T10:15:30.123456",
                "updated_at": "2025-01-26T09:00:00.000001",
            }
        },
    )

    id: str = Field(..., description="Unique identifier of the reminder")
    collection_id: str = Field(..., description="Collection the reminder belongs to")
    title: str = Field(..., description="Short title for the reminder")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    due_date: Optional[datetime] = Field(
        default=None, description="Due date/time of the reminder as an ISO8601 datetime"
    )
    is_completed: bool = Field(..., description="Completion status flag")
    created_by: Optional[str] = Field(default=None, description="Owner id of the reminder")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


# PUBLIC_INTERFACE
class CollectionOut(BaseModel):
    """A collection together with its reminders, oldest first."""

    id: str = Field(..., description="Unique identifier of the collection")
    organization_id: str = Field(..., description="Owning organization")
    name: str = Field(..., description="Collection name")
    created_at: datetime = Field(..., description="Creation timestamp")
    reminders: List[ReminderOut] = Field(default_factory=list, description="Reminders in this collection")


# PUBLIC_INTERFACE
class OrganizationInfoOut(BaseModel):
    """Everything the organization page renders: the organization and its collections."""

    organization: OrganizationOut
    collections: List[CollectionOut] = Field(default_factory=list)


# PUBLIC_INTERFACE
class PageMetadataOut(BaseModel):
    """Document metadata for the organization page."""

    title: str = Field(..., description="Page title (the organization name)")
