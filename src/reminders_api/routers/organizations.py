from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ..deps import get_repository
from ..models import CollectionEntity
from ..repositories import ListQuery, Repository
from ..schemas import (
    CollectionCreate,
    CollectionOut,
    OrganizationCreate,
    OrganizationInfoOut,
    OrganizationOut,
    PageMetadataOut,
    ReminderOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/organizations",
    tags=["organizations"],
)

# Upper bound of reminders rendered per collection on the organization page
COLLECTION_PAGE_LIMIT = 1000


def _collection_out(repo: Repository, collection: CollectionEntity) -> CollectionOut:
    reminders, total = repo.list_reminders(
        ListQuery(limit=COLLECTION_PAGE_LIMIT, collection_id=collection["id"], sort="created_at")
    )
    if total > COLLECTION_PAGE_LIMIT:
        logger.warning(
            "Collection %s has %d reminders; organization page shows the oldest %d",
            collection["id"],
            total,
            COLLECTION_PAGE_LIMIT,
        )
    return CollectionOut(**collection, reminders=[ReminderOut(**r) for r in reminders])


# PUBLIC_INTERFACE
def get_organization_info(repo: Repository, org_id: str) -> Optional[OrganizationInfoOut]:
    """
    Load an organization with its collections and their reminders.

    Returns None when the organization does not exist.
    """
    organization = repo.get_organization(org_id)
    if organization is None:
        return None
    collections = [_collection_out(repo, c) for c in repo.list_collections(org_id)]
    return OrganizationInfoOut(organization=OrganizationOut(**organization), collections=collections)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=OrganizationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Organization",
)
def create_organization(payload: OrganizationCreate, repo: Repository = Depends(get_repository)) -> OrganizationOut:
    """Create a new organization."""
    created = repo.create_organization(payload)
    logger.info("Created organization %s", created["id"])
    return OrganizationOut(**created)


# PUBLIC_INTERFACE
@router.get(
    "/{org_id}",
    response_model=OrganizationInfoOut,
    summary="Organization Page",
    description=(
        "Return the organization with its collections, each listing its reminders oldest first. "
        f"At most {COLLECTION_PAGE_LIMIT} reminders are listed per collection."
    ),
    responses={
        200: {"description": "Organization found"},
        404: {"description": "Organization not found"},
    },
)
def read_organization(org_id: str, repo: Repository = Depends(get_repository)) -> OrganizationInfoOut:
    """
    Organization page data. Clients send the user back to the organization
    index on 404.
    """
    info = get_organization_info(repo, org_id)
    if info is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return info


# PUBLIC_INTERFACE
@router.get(
    "/{org_id}/metadata",
    response_model=Optional[PageMetadataOut],
    summary="Organization Page Metadata",
    description="Title metadata for the organization page, or null when the organization does not exist.",
)
def read_organization_metadata(org_id: str, repo: Repository = Depends(get_repository)) -> Optional[PageMetadataOut]:
    organization = repo.get_organization(org_id)
    if organization is None:
        return None
    return PageMetadataOut(title=organization["name"])


# PUBLIC_INTERFACE
@router.post(
    "/{org_id}/collections",
    response_model=CollectionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Collection",
    responses={
        201: {"description": "Collection created"},
        404: {"description": "Organization not found"},
    },
)
def create_collection(
    org_id: str, payload: CollectionCreate, repo: Repository = Depends(get_repository)
) -> CollectionOut:
    """Create an empty collection in an organization."""
    created = repo.create_collection(org_id, payload)
    if created is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    logger.info("Created collection %s in organization %s", created["id"], org_id)
    return CollectionOut(**created)
