from fastapi import APIRouter, Depends, Query
from typing import Optional

from catalog import schemas
from catalog.routers.deps import get_requester_id, get_service
from catalog.service import CatalogService

router = APIRouter(prefix="/search", tags=["search"])


@router.get("", response_model=schemas.SearchResponse)
def search_documents(
    query: Optional[str] = Query(None, description="Search in title, description and tag names"),
    tags: Optional[str] = Query(None, description="Comma-separated tags (e.g., 'react,typescript')"),
    match_all: bool = Query(False, description="If True, document must have all tags"),
    author: Optional[str] = Query(None, description="Author username"),
    min_stars: Optional[int] = Query(None, description="Minimum star count"),
    page: int = Query(1),
    per_page: int = Query(20),
    sort_by: str = Query("created_at", description="created_at, stars, views or downloads"),
    mine: bool = Query(False, description="Search the caller's own documents instead of public ones"),
    rank: bool = Query(False, description="Order by relevance to the query"),
    requester_id: Optional[str] = Depends(get_requester_id),
    service: CatalogService = Depends(get_service)
):
    """
    Search documents with multiple filters.

    - **query**: Search term for title, description and tag names
    - **tags**: Comma-separated tags to filter by (at most 5 are used)
    - **match_all**: If True, document must have all specified tags
    - **author**: Only documents of this username
    - **min_stars**: Only documents with at least this many stars
    - **page** / **per_page**: Pagination; out-of-range values are clamped
    - **sort_by**: Sort key, descending; unknown keys fall back to created_at
    - **mine**: Search the caller's own documents, including private ones
    - **rank**: Order by relevance score, ties by the sort key

    Examples:
    - Search by tags: `/search?tags=react,typescript`
    - Search by text: `/search?query=hooks&rank=true`
    - Advanced search: `/search?query=api&tags=python&sort_by=stars`
    """
    tag_list = []
    if tags:
        tag_list = [tag.strip() for tag in tags.split(',') if tag.strip()]

    params = schemas.SearchParams(
        query=query,
        tags=tag_list,
        match_all=match_all,
        author=author,
        min_stars=min_stars,
        page=page,
        per_page=per_page,
        sort_by=sort_by,
        mine=mine,
        rank=rank,
    )
    return service.search(params, requester_id)
