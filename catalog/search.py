import logging
import math
import re
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, defer, selectinload

from catalog import documents, models, schemas, stars
from catalog.config import get_settings
from catalog.db import backend_errors
from catalog.errors import NotFound
from catalog.validation import is_valid_tag_name, normalize_tag_list

logger = logging.getLogger(__name__)

SORT_KEYS = ("created_at", "stars", "views", "downloads")

# Per-term ranking weights
TITLE_WEIGHT = 10
TAG_WEIGHT = 5
DESCRIPTION_WEIGHT = 3
CONTENT_WEIGHT = 1

MAX_TERMS = 10

# Largest value a 64-bit SQL integer parameter can carry
MAX_SQL_INT = 2**63 - 1
_ALNUM = re.compile(r"[a-z0-9]")


def sanitize_params(params: schemas.SearchParams) -> schemas.SearchParams:
    """
    Clamps a search request into range. Never raises: unknown sort keys fall
    back to created_at, out-of-range pages and page sizes are clamped.

    Args:
        params: Raw search parameters

    Returns:
        Sanitized copy
    """
    settings = get_settings()

    query = (params.query or "").strip()[: settings.search_query_max_length].strip() or None
    tags = [name for name in normalize_tag_list(params.tags) if is_valid_tag_name(name)]
    author = (params.author or "").strip().lower() or None
    per_page = min(settings.max_per_page, max(1, params.per_page or settings.default_per_page))
    # The offset (page - 1) * per_page must still bind as a SQL integer
    page = min(max(1, params.page or 1), MAX_SQL_INT // per_page)
    min_stars = min(max(0, params.min_stars), MAX_SQL_INT) if params.min_stars is not None else None

    return schemas.SearchParams(
        query=query,
        tags=tags[: settings.search_max_tags],
        match_all=params.match_all,
        author=author,
        min_stars=min_stars,
        page=page,
        per_page=per_page,
        sort_by=params.sort_by if params.sort_by in SORT_KEYS else "created_at",
        mine=params.mine,
        rank=params.rank,
    )


def extract_terms(query: Optional[str]) -> List[str]:
    """
    Splits a query into ranking terms: lowercase, at least two characters,
    containing a letter or digit, at most ten.
    """
    if not query:
        return []
    terms = [term for term in query.strip().lower().split() if len(term) >= 2 and _ALNUM.search(term)]
    return terms[:MAX_TERMS]


def score_document(document: models.Document, terms: List[str], content_head: Optional[str] = None) -> int:
    """
    Weighted substring hits of each term in title, tags, description and
    the head of the content.

    ``content_head`` is the already truncated content when the caller loaded
    it separately; otherwise it is cut from ``document.content``.
    """
    prefix = get_settings().rank_content_prefix
    title = document.title.lower()
    description = (document.description or "").lower()
    if content_head is None:
        content_head = document.content
    content = content_head[:prefix].lower()
    tag_names = document.tag_names

    score = 0
    for term in terms:
        if term in title:
            score += TITLE_WEIGHT
        if any(term in name for name in tag_names):
            score += TAG_WEIGHT
        if term in description:
            score += DESCRIPTION_WEIGHT
        if term in content:
            score += CONTENT_WEIGHT
    return score


def _like(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped.lower()}%"


def _filtered_query(params: schemas.SearchParams, requester_id: Optional[str]):
    Document = models.Document
    query = select(Document)

    # Own documents (any visibility) only when explicitly scoped; public otherwise
    if params.mine and requester_id:
        query = query.where(Document.owner_id == requester_id)
    else:
        query = query.where(Document.is_public.is_(True))

    # Text search in title/description/tag names
    if params.query:
        search_term = _like(params.query)
        query = query.where(
            or_(
                Document.title.ilike(search_term, escape="\\"),
                Document.description.ilike(search_term, escape="\\"),
                Document.tags.any(models.Tag.name.ilike(search_term, escape="\\")),
            )
        )

    # Tag filter
    if params.tags:
        if params.match_all:
            for name in params.tags:
                query = query.where(Document.tags.any(models.Tag.name == name))
        else:
            query = query.where(Document.tags.any(models.Tag.name.in_(params.tags)))

    if params.author:
        query = query.where(Document.owner.has(models.User.username == params.author))

    if params.min_stars is not None:
        query = query.where(Document.stars >= params.min_stars)

    return query


def _ordering(sort_by: str):
    column = getattr(models.Document, sort_by)
    return column.desc(), models.Document.id.asc()


def search(
    db: Session,
    params: schemas.SearchParams,
    requester_id: Optional[str] = None,
) -> schemas.SearchResponse:
    """
    Paginated, filtered, sorted search over documents.

    Only public documents match unless ``params.mine`` is set and a requester
    is given, in which case the requester's own documents match instead.
    With ``params.rank`` and a query, results are ordered by relevance score
    and then by the requested sort key. Ranking scores at most
    ``rank_max_candidates`` matches, taken in sort-key order, and ``total``
    is capped to the same number so that every reported page is reachable.

    Args:
        db: Database session
        params: Search parameters (sanitized here)
        requester_id: Caller, used for scoping and star flags

    Returns:
        SearchResponse
    """
    settings = get_settings()
    params = sanitize_params(params)
    base = _filtered_query(params, requester_id)
    offset = (params.page - 1) * params.per_page
    terms = extract_terms(params.query) if params.rank else []
    Document = models.Document

    with backend_errors(db):
        total = db.scalar(select(func.count()).select_from(base.subquery())) or 0
        ordered = base.options(
            selectinload(Document.tags), selectinload(Document.owner)
        ).order_by(*_ordering(params.sort_by))

        if terms:
            total = min(total, settings.rank_max_candidates)
            # Only the content head is needed for scoring
            content_head = func.substr(Document.content, 1, settings.rank_content_prefix)
            rows = db.execute(
                ordered.add_columns(content_head)
                .options(defer(Document.content))
                .limit(settings.rank_max_candidates)
            ).all()
            scored = [(score_document(doc, terms, head or ""), doc) for doc, head in rows]
            # sort is stable, so equal scores keep the sort-key order
            scored.sort(key=lambda pair: pair[0], reverse=True)
            page_items = scored[offset: offset + params.per_page]
        else:
            page_items = [(None, doc) for doc in db.scalars(ordered.offset(offset).limit(params.per_page))]

        star_stats = stars.batch_stats(db, [doc.id for _, doc in page_items], requester_id)
        items = [
            documents.to_response(doc, is_starred=star_stats[doc.id].is_starred, score=score)
            for score, doc in page_items
        ]

    return schemas.SearchResponse(
        items=items,
        total=total,
        page=params.page,
        per_page=params.per_page,
        total_pages=math.ceil(total / params.per_page),
    )


def related(
    db: Session,
    document_id: str,
    requester_id: Optional[str] = None,
    limit: int = 5,
) -> List[schemas.DocumentResponse]:
    """
    Public documents sharing any of the document's first three tags, most
    starred first.

    Raises:
        NotFound if the document is missing or not visible to the requester
    """
    document = documents.get(db, document_id, requester_id)
    if document is None:
        raise NotFound("Document")

    tag_names = document.tag_names[:3]
    if not tag_names:
        return []

    Document = models.Document
    with backend_errors(db):
        found = list(
            db.scalars(
                select(Document)
                .options(selectinload(Document.tags), selectinload(Document.owner))
                .where(
                    Document.is_public.is_(True),
                    Document.id != document_id,
                    Document.tags.any(models.Tag.name.in_(tag_names)),
                )
                .order_by(Document.stars.desc(), Document.id.asc())
                .limit(limit)
            )
        )

    star_stats = stars.batch_stats(db, [doc.id for doc in found], requester_id)
    return [documents.to_response(doc, is_starred=star_stats[doc.id].is_starred) for doc in found]


def trending(db: Session, limit: int = 10, requester_id: Optional[str] = None) -> List[schemas.DocumentResponse]:
    """
    Most viewed public documents.
    """
    page = search(db, schemas.SearchParams(sort_by="views", per_page=limit), requester_id)
    return page.items
