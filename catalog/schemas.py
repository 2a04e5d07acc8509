from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AuthIdentity(BaseModel):
    """Authenticated identity handed over by the identity provider."""
    id: str = Field(..., min_length=1)
    user_name: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


class UserResponse(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserSummary(BaseModel):
    id: str
    username: str

    class Config:
        from_attributes = True


class UserStats(BaseModel):
    total_docs: int = 0
    public_docs: int = 0
    private_docs: int = 0
    total_stars: int = 0
    total_views: int = 0
    total_downloads: int = 0


class ProfileUpdate(BaseModel):
    """Profile changes; fields left out are kept as they are."""
    username: Optional[str] = None
    display_name: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=320)
    avatar_url: Optional[str] = Field(None, max_length=1000)


class Contributor(UserSummary):
    doc_count: int


class TagBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TagCreate(TagBase):
    color: Optional[str] = Field(None, max_length=20)


class TagResponse(TagBase):
    id: str
    color: Optional[str] = None
    creator_id: str

    class Config:
        from_attributes = True


class TagUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=20)


class TagWithCount(TagResponse):
    doc_count: int = 0


class TagFailure(BaseModel):
    name: str
    reason: str


class BulkTagResult(BaseModel):
    """Outcome of a bulk find-or-create: tags obtained plus names that failed."""
    tags: List[TagResponse] = []
    failed: List[TagFailure] = []


class DocumentFields(BaseModel):
    """
    Writable document fields. Limits are enforced by the catalog service so
    that every caller gets the same ValidationError.
    """
    title: str
    description: Optional[str] = None
    content: str
    is_public: bool = False
    tags: List[str] = Field(default_factory=list, description="Tag names, normalized on write")


class DocumentResponse(BaseModel):
    id: str
    owner_id: str
    author_username: Optional[str] = None
    title: str
    description: Optional[str]
    content: str
    is_public: bool
    views: int
    downloads: int
    stars: int
    is_starred: bool = False
    tags: List[str] = []
    created_at: datetime
    updated_at: datetime
    score: Optional[int] = None


class DocumentDownload(BaseModel):
    content: str
    filename: str


class VisibilityResponse(BaseModel):
    document_id: str
    is_public: bool


class StarToggleResponse(BaseModel):
    document_id: str
    starred: bool
    star_count: int


class DocumentStats(BaseModel):
    views: int
    downloads: int
    stars: int
    tag_count: int


class StarStats(BaseModel):
    count: int = 0
    is_starred: bool = False


class BatchStarStats(BaseModel):
    stats: Dict[str, StarStats]


class SearchParams(BaseModel):
    """
    Raw search request. Values are sanitized by the search service, never
    rejected.
    """
    query: Optional[str] = None
    tags: List[str] = []
    match_all: bool = False
    author: Optional[str] = None
    min_stars: Optional[int] = None
    page: int = 1
    per_page: int = 20
    sort_by: str = "created_at"
    mine: bool = False
    rank: bool = False


class SearchResponse(BaseModel):
    items: List[DocumentResponse]
    total: int
    page: int
    per_page: int
    total_pages: int


class TagBulkCreate(BaseModel):
    names: List[str] = Field(..., description="Raw tag names")


class UsernameAvailability(BaseModel):
    username: str
    available: bool


class MessageResponse(BaseModel):
    message: str
