from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..deps import get_repository
from ..repositories import ListQuery, OwnershipError, Repository, SORT_FIELDS
from ..schemas import ReminderCreate, ReminderOut, ReminderStatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/reminders",
    tags=["reminders"],
)


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    items: List[ReminderOut] = Field(..., description="List of reminders")
    total: int = Field(..., description="Total number of items matching the query")
    limit: int = Field(..., description="Limit applied to the query")
    offset: int = Field(..., description="Offset applied to the query")


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=ReminderOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Reminder",
    description="Create a new reminder inside a collection and return the created resource.",
    responses={
        201: {"description": "Reminder created successfully"},
        404: {"description": "Collection not found"},
    },
)
def create_reminder(payload: ReminderCreate, repo: Repository = Depends(get_repository)) -> ReminderOut:
    """
    Create a new reminder.
    """
    created = repo.create_reminder(payload)
    if created is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Collection not found")
    logger.info("Created reminder %s in collection %s", created["id"], created["collection_id"])
    return ReminderOut(**created)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginationEnvelope,
    summary="List Reminders",
    description=(
        "List reminders with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- limit: max number of items to return (0..1000)\n"
        "- offset: number of items to skip (>=0)\n"
        "- collection_id: only reminders filed under this collection\n"
        "- completed: filter by completion status\n"
        "- created_by: filter by owner id\n"
        "- q: search query for title/description (substring match)\n"
        "- sort: one of created_at, -created_at, updated_at, -updated_at\n"
        "- order: asc or desc (if provided, it overrides the direction in sort)\n\n"
        "Returns a pagination envelope with items and total count."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
    },
)
def list_reminders(
    limit: int = Query(50, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    collection_id: Optional[str] = Query(None, description="Filter by collection"),
    completed: Optional[bool] = Query(None, description="Filter by completion status"),
    created_by: Optional[str] = Query(None, description="Filter by owner id"),
    q: Optional[str] = Query(None, description="Search text for title/description"),
    sort: Optional[str] = Query(
        "-created_at",
        description="Sort by field: created_at, -created_at, updated_at, -updated_at",
    ),
    order: Optional[str] = Query(None, description="Override sort direction: 'asc' or 'desc'"),
    repo: Repository = Depends(get_repository),
) -> PaginationEnvelope:
    """
    List reminders with pagination and filters.
    """
    normalized_sort = (sort or "-created_at").strip().lower()
    field = normalized_sort.lstrip("-")
    if order:
        ord_norm = order.strip().lower()
        if ord_norm not in {"asc", "desc"}:
            raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")
        if field not in SORT_FIELDS:
            field = "created_at"
        normalized_sort = f"-{field}" if ord_norm == "desc" else field
    elif field not in SORT_FIELDS:
        normalized_sort = "-created_at"

    query = ListQuery(
        limit=limit,
        offset=offset,
        collection_id=collection_id,
        completed=completed,
        created_by=created_by,
        search=q.strip() if q else None,
        sort=normalized_sort,
    )
    items, total = repo.list_reminders(query)
    return PaginationEnvelope(items=[ReminderOut(**it) for it in items], total=total, limit=limit, offset=offset)


# PUBLIC_INTERFACE
@router.get(
    "/{reminder_id}",
    response_model=ReminderOut,
    summary="Get Reminder",
    description="Get a single reminder by ID.",
    responses={
        200: {"description": "Reminder found"},
        404: {"description": "Reminder not found"},
    },
)
def get_reminder(reminder_id: str, repo: Repository = Depends(get_repository)) -> ReminderOut:
    """
    Retrieve a single reminder by its ID.
    """
    item = repo.get_reminder(reminder_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")
    return ReminderOut(**item)


# PUBLIC_INTERFACE
@router.patch(
    "/{reminder_id}/status",
    response_model=ReminderOut,
    summary="Update Reminder Status",
    description=(
        "Set the completion status of a reminder. The created_by field must match the "
        "reminder's owner."
    ),
    responses={
        200: {"description": "Status updated"},
        403: {"description": "Reminder belongs to another user"},
        404: {"description": "Reminder not found"},
    },
)
def update_reminder_status(
    reminder_id: str, payload: ReminderStatusUpdate, repo: Repository = Depends(get_repository)
) -> ReminderOut:
    """
    Persist a completion toggle. This is the server side of the optimistic
    toggle flow in ``reminders_api.optimistic``.
    """
    try:
        updated = repo.update_status(reminder_id, payload.created_by, payload.is_completed)
    except OwnershipError as exc:
        logger.info("Rejected status change for reminder %s: owner mismatch", reminder_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Reminder belongs to another user") from exc
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")
    logger.info("Reminder %s is_completed=%s", reminder_id, updated["is_completed"])
    return ReminderOut(**updated)


# PUBLIC_INTERFACE
@router.delete(
    "/{reminder_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Reminder",
    description="Delete a reminder by ID.",
    responses={
        204: {"description": "Reminder deleted"},
        404: {"description": "Reminder not found"},
    },
)
def delete_reminder(reminder_id: str, repo: Repository = Depends(get_repository)) -> None:
    """
    Delete a reminder. Returns 204 on success, 404 if not found.
    """
    if not repo.delete_reminder(reminder_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")
    logger.info("Deleted reminder %s", reminder_id)
    return None
