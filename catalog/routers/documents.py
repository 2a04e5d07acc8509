from fastapi import APIRouter, Body, Depends, Query, Response
from typing import Optional, List

from catalog import schemas
from catalog.errors import NotFound
from catalog.routers.deps import get_requester_id, get_service
from catalog.service import CatalogService

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("", response_model=schemas.DocumentResponse, status_code=201)
def create_document(
    fields: schemas.DocumentFields,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Create a document owned by the caller.

    - **title**: Document title (required, max 200 characters)
    - **description**: Document description (optional, max 500 characters)
    - **content**: Markdown content (required, max 1,000,000 bytes)
    - **is_public**: Visible to everyone when true (defaults to private)
    - **tags**: Tag names, normalized and de-duplicated (max 10)
    """
    return service.create_document(requester_id, fields)


@router.get("/mine", response_model=List[schemas.DocumentResponse])
def list_my_documents(
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    List the caller's own documents, public and private, newest first.
    """
    return service.list_my_documents(requester_id)


@router.get("/starred", response_model=List[schemas.DocumentResponse])
def list_starred_documents(
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    List documents the caller has starred, most recently starred first.
    """
    return service.starred_documents(requester_id)


@router.get("/trending", response_model=List[schemas.DocumentResponse])
def trending_documents(
    limit: int = Query(10, ge=1, le=50),
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Most viewed public documents.

    - **limit**: Maximum number of documents to return
    """
    return service.trending_documents(limit=limit, requester_id=requester_id)


@router.post("/stars", response_model=schemas.BatchStarStats)
def batch_star_stats(
    document_ids: List[str] = Body(..., embed=True),
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Star count and starred flag for several documents at once.

    - **document_ids**: Documents to report on; every id appears in the result
    """
    return schemas.BatchStarStats(stats=service.star_stats(document_ids, requester_id))


@router.get("/{document_id}", response_model=schemas.DocumentResponse)
def get_document(
    document_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Get a document and count the view.

    Private documents of other users are reported as not found.
    """
    document = service.get_document(document_id, requester_id)
    if not document:
        raise NotFound("Document")
    return document


@router.put("/{document_id}", response_model=schemas.DocumentResponse)
def update_document(
    document_id: str,
    fields: schemas.DocumentFields,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Replace a document's fields and its whole tag set. Owner only.
    """
    return service.update_document(document_id, requester_id, fields)


@router.delete("/{document_id}", response_model=schemas.MessageResponse)
def delete_document(
    document_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Delete a document together with its tag associations and stars. Owner only.
    """
    service.delete_document(document_id, requester_id)
    return schemas.MessageResponse(message="Document deleted successfully")


@router.post("/{document_id}/visibility", response_model=schemas.VisibilityResponse)
def toggle_visibility(
    document_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Flip a document between public and private. Owner only.
    """
    return service.toggle_visibility(document_id, requester_id)


@router.get("/{document_id}/download")
def download_document(
    document_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Download a document's content as a markdown file and count the download.
    """
    download = service.download_document(document_id, requester_id)
    return Response(
        content=download.content,
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{download.filename}"'},
    )


@router.post("/{document_id}/star", response_model=schemas.StarToggleResponse)
def toggle_star(
    document_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Star the document, or unstar it if the caller already starred it.

    Returns the new state and a fresh star count.
    """
    return service.toggle_star(document_id, requester_id)


@router.get("/{document_id}/stars", response_model=schemas.StarStats)
def star_stats(
    document_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Star count of a document and whether the caller starred it.
    """
    return schemas.StarStats(
        count=service.star_count(document_id, requester_id),
        is_starred=service.is_starred(document_id, requester_id),
    )


@router.get("/{document_id}/stargazers", response_model=List[schemas.UserSummary])
def stargazers(
    document_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Users who starred a document, oldest star first.
    """
    return service.stargazers(document_id, requester_id)


@router.get("/{document_id}/related", response_model=List[schemas.DocumentResponse])
def related_documents(
    document_id: str,
    limit: int = Query(5, ge=1, le=20),
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Public documents sharing any of this document's first three tags.

    - **limit**: Maximum number of documents to return
    """
    return service.related_documents(document_id, requester_id, limit=limit)


@router.get("/{document_id}/stats", response_model=schemas.DocumentStats)
def document_stats(
    document_id: str,
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    View, download and star counters of a document plus its number of tags.
    """
    return service.document_stats(document_id, requester_id)
