from fastapi import APIRouter, Depends, Query
from typing import Optional, List

from catalog import schemas
from catalog.routers.deps import get_requester_id, get_service
from catalog.service import CatalogService

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/resolve", response_model=schemas.UserResponse)
def resolve_user(
    auth_identity: schemas.AuthIdentity,
    service: CatalogService = Depends(get_service)
):
    """
    Map an authenticated identity to its catalog user, creating it on first sight.

    - **id**: Stable identity id (required)
    - **user_name** / **username** / **full_name**: Used, in this order, to
      derive the username; collisions get a numeric suffix
    """
    return service.resolve_user(auth_identity)


@router.get("/username-available", response_model=schemas.UsernameAvailability)
def username_available(
    username: str = Query(..., description="Username to check"),
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Check whether a username is well-formed and free. The caller's own
    username is reported as available to them.
    """
    return schemas.UsernameAvailability(
        username=username,
        available=service.is_username_available(username, requester_id),
    )


@router.get("/search", response_model=List[schemas.UserSummary])
def search_users(
    q: str = Query(..., description="Partial username"),
    service: CatalogService = Depends(get_service)
):
    """
    Users whose username contains the query, alphabetically (max 20).
    """
    return service.search_users(q)


@router.get("/top-contributors", response_model=List[schemas.Contributor])
def top_contributors(
    limit: int = Query(10, ge=1, le=50),
    service: CatalogService = Depends(get_service)
):
    """
    Users with the most public documents.

    - **limit**: Maximum number of users to return
    """
    return service.top_contributors(limit)


@router.patch("/me", response_model=schemas.UserResponse)
def update_profile(
    changes: schemas.ProfileUpdate,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Update the caller's profile. Omitted fields are left unchanged.

    - **username**: New username (3-30 characters, letters, digits, _ and -)
    - **display_name** / **email** / **avatar_url**: Blank clears the value
    """
    return service.update_profile(requester_id, changes)


@router.get("/{user_id}/stats", response_model=schemas.UserStats)
def user_stats(
    user_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Document counts and summed views, downloads and stars of a user.
    Private documents are only counted for the user themselves.
    """
    return service.user_stats(user_id, requester_id)


@router.delete("/me", response_model=schemas.MessageResponse)
def delete_account(
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Delete the caller's account with all of their documents, tags and stars.
    """
    service.delete_account(requester_id)
    return schemas.MessageResponse(message="Account deleted successfully")
