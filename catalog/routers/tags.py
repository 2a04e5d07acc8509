from fastapi import APIRouter, Depends, Query
from typing import Optional, List

from catalog import schemas
from catalog.routers.deps import get_requester_id, get_service
from catalog.service import CatalogService

router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("", response_model=List[schemas.TagWithCount])
def list_tags(service: CatalogService = Depends(get_service)):
    """
    List all tags with the number of documents using them, alphabetically.
    """
    return service.list_tags()


@router.get("/popular", response_model=List[schemas.TagWithCount])
def popular_tags(
    limit: int = Query(20, ge=1, le=100),
    service: CatalogService = Depends(get_service)
):
    """
    Most used tags first; ties are broken by name.

    - **limit**: Maximum number of tags to return
    """
    return service.popular_tags(limit)


@router.get("/search", response_model=List[schemas.TagResponse])
def search_tags(
    q: str = Query(..., description="Partial tag name"),
    service: CatalogService = Depends(get_service)
):
    """
    Tags whose normalized name contains the query.
    """
    return service.search_tags(q)


@router.get("/suggestions", response_model=List[str])
def tag_suggestions(
    q: str = Query("", description="Partial tag name"),
    service: CatalogService = Depends(get_service)
):
    """
    Tag name suggestions from the predefined vocabulary and existing tags.
    """
    return service.tag_suggestions(q)


@router.post("/recommendations", response_model=List[str])
def recommend_tags(
    fields: schemas.DocumentFields,
    service: CatalogService = Depends(get_service)
):
    """
    Recommend predefined tags based on a draft document's text.
    """
    return service.recommend_tags(fields)


@router.get("/mine", response_model=List[schemas.TagResponse])
def my_tags(
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Tags created by the caller.
    """
    return service.my_tags(requester_id)


@router.post("", response_model=schemas.TagResponse)
def find_or_create_tag(
    tag: schemas.TagCreate,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Get a tag by name, creating it when it does not exist yet.

    - **name**: Raw tag name; stored normalized
    - **color**: Optional display color
    """
    return service.find_or_create_tag(tag.name, requester_id, tag.color)


@router.post("/bulk", response_model=schemas.BulkTagResult)
def bulk_find_or_create_tags(
    payload: schemas.TagBulkCreate,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Find or create several tags. Names that fail are reported in `failed`;
    the rest are still created.
    """
    return service.bulk_find_or_create_tags(payload.names, requester_id)


@router.delete("/{tag_id}", response_model=schemas.MessageResponse)
def delete_tag(
    tag_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Delete a tag that no document uses. Creator only.
    """
    service.delete_tag(tag_id, requester_id)
    return schemas.MessageResponse(message="Tag deleted successfully")


@router.patch("/{tag_id}", response_model=schemas.TagResponse)
def update_tag(
    tag_id: str,
    changes: schemas.TagUpdate,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Rename or recolor a tag. Creator only.

    - **name**: New raw name; stored normalized
    - **color**: New display color; blank clears it
    """
    return service.update_tag(tag_id, requester_id, changes)


@router.get("/{tag_id}/documents", response_model=List[schemas.DocumentResponse])
def tag_documents(
    tag_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Documents carrying the tag that the caller can see.
    """
    return service.tag_documents(tag_id, requester_id)
