import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog import models, schemas
from catalog.db import backend_errors, transaction
from catalog.errors import Conflict, NotFound, PermissionDenied, ValidationError
from catalog.validation import is_valid_tag_name, normalize_tag_list, normalize_tag_name

logger = logging.getLogger(__name__)

# Predefined developer vocabulary used for suggestions and recommendations
PREDEFINED_TAGS = [
    # Languages
    'typescript', 'javascript', 'python', 'golang', 'rust', 'java', 'csharp', 'ruby', 'php',
    # Frameworks
    'react', 'vue', 'angular', 'nextjs', 'svelte', 'express', 'fastapi', 'django', 'rails', 'laravel',
    # Infrastructure
    'docker', 'kubernetes', 'aws', 'gcp', 'azure', 'terraform', 'ansible',
    # Databases
    'postgresql', 'mysql', 'mongodb', 'redis', 'elasticsearch',
    # Tools
    'git', 'vscode', 'intellij', 'postman', 'figma', 'slack',
    # APIs
    'rest', 'graphql', 'websocket', 'grpc', 'oauth', 'jwt',
    # Platforms
    'web', 'mobile', 'desktop', 'cli', 'api', 'microservices',
]


def _valid_name(name: str) -> str:
    normalized = normalize_tag_name(name)
    if not is_valid_tag_name(normalized):
        raise ValidationError(f"Invalid tag name: {name!r}", field="name")
    return normalized


def get_by_name(db: Session, name: str) -> Optional[models.Tag]:
    with backend_errors(db):
        return db.scalar(select(models.Tag).where(models.Tag.name == normalize_tag_name(name)))


def get_by_id(db: Session, tag_id: str) -> Optional[models.Tag]:
    with backend_errors(db):
        return db.get(models.Tag, tag_id)


def find_or_create_in_transaction(
    db: Session,
    name: str,
    creator_id: str,
    color: Optional[str] = None,
) -> models.Tag:
    """
    Gets existing tag or creates new one, inside the caller's transaction.

    Creation runs in a SAVEPOINT so that losing a race on the unique name
    constraint falls back to the row the other writer created instead of
    aborting the surrounding transaction.

    Args:
        db: Database session
        name: Raw tag name
        creator_id: User credited with creating the tag
        color: Optional display color

    Returns:
        Tag model instance

    Raises:
        ValidationError if the normalized name is invalid
    """
    normalized = _valid_name(name)
    tag = db.scalar(select(models.Tag).where(models.Tag.name == normalized))
    if tag:
        return tag

    tag = models.Tag(name=normalized, creator_id=creator_id, color=color)
    savepoint = db.begin_nested()
    try:
        db.add(tag)
        db.flush()
    except IntegrityError:
        savepoint.rollback()
        existing = db.scalar(select(models.Tag).where(models.Tag.name == normalized))
        if existing is None:
            raise
        return existing
    savepoint.commit()
    logger.info(f"Created tag {normalized}", extra={"tag_name": normalized, "user_id": creator_id})
    return tag


def find_or_create(db: Session, name: str, creator_id: str, color: Optional[str] = None) -> models.Tag:
    """
    Gets existing tag or creates new one.

    Creator attribution is informational; any user may assign the tag
    afterwards.

    Raises:
        ValidationError if the normalized name is invalid
    """
    with transaction(db, "find_or_create_tag"):
        tag = find_or_create_in_transaction(db, name, creator_id, color)
    return tag


def bulk_find_or_create(db: Session, names: Iterable[str], creator_id: str) -> schemas.BulkTagResult:
    """
    Finds or creates every tag in ``names``.

    Input is de-duplicated on its normalized form first. A name that fails is
    logged and reported in ``failed``; the remaining names are still
    processed and committed.

    Args:
        db: Database session
        names: Raw tag names
        creator_id: User credited with creating new tags

    Returns:
        BulkTagResult with the tags obtained and the names that failed
    """
    result = schemas.BulkTagResult()
    for name in normalize_tag_list(names):
        try:
            tag = find_or_create(db, name, creator_id)
        except (ValidationError, Conflict) as e:
            logger.warning(f"Failed to create tag {name!r}: {e.message}", extra={"tag_name": name})
            result.failed.append(schemas.TagFailure(name=name, reason=e.message))
            continue
        result.tags.append(schemas.TagResponse.model_validate(tag))
    return result


def delete(db: Session, tag_id: str, requester_id: str) -> bool:
    """
    Deletes a tag that no document references.

    Raises:
        NotFound if the tag does not exist
        PermissionDenied if the requester did not create the tag
        Conflict if any document still uses the tag
    """
    with transaction(db, "delete_tag"):
        tag = db.get(models.Tag, tag_id)
        if not tag:
            raise NotFound("Tag")
        if tag.creator_id != requester_id:
            raise PermissionDenied("Only the tag creator can delete this tag")

        usage = db.scalar(
            select(func.count()).select_from(models.document_tags).where(models.document_tags.c.tag_id == tag_id)
        )
        if usage:
            raise Conflict("Cannot delete tag that is being used by documents")

        db.delete(tag)

    logger.info("Deleted tag", extra={"tag_id": tag_id, "user_id": requester_id})
    return True


def update(
    db: Session,
    tag_id: str,
    requester_id: str,
    name: Optional[str] = None,
    color: Optional[str] = None,
) -> models.Tag:
    """
    Renames or recolors a tag. Only the creator may change it. The new name
    is normalized like any other tag name; a blank color clears it.

    Raises:
        ValidationError if the new name is invalid
        NotFound if the tag does not exist
        PermissionDenied if the requester did not create the tag
        Conflict if another tag already has the new name
    """
    normalized = _valid_name(name) if name is not None else None

    with transaction(db, "update_tag"):
        tag = db.get(models.Tag, tag_id)
        if not tag:
            raise NotFound("Tag")
        if tag.creator_id != requester_id:
            raise PermissionDenied("Only the tag creator can update this tag")

        if normalized is not None and normalized != tag.name:
            if db.scalar(select(models.Tag.id).where(models.Tag.name == normalized)):
                raise Conflict(f"Tag {normalized!r} already exists")
            tag.name = normalized
        if color is not None:
            tag.color = color.strip() or None
        db.flush()

    logger.info("Updated tag", extra={"tag_id": tag_id, "user_id": requester_id})
    return tag


def tag_document_ids(db: Session, tag_id: str) -> List[str]:
    """
    Ids of every document carrying the tag, whatever its visibility.
    """
    with backend_errors(db):
        return list(
            db.scalars(
                select(models.document_tags.c.document_id)
                .where(models.document_tags.c.tag_id == tag_id)
                .order_by(models.document_tags.c.created_at, models.document_tags.c.document_id)
            )
        )


def search(db: Session, query: str, limit: int = 50) -> List[models.Tag]:
    """
    Tags whose name contains the normalized query, alphabetically.
    """
    needle = normalize_tag_name(query)
    if not needle:
        return []
    with backend_errors(db):
        return list(
            db.scalars(
                select(models.Tag)
                .where(models.Tag.name.contains(needle, autoescape=True))
                .order_by(models.Tag.name)
                .limit(limit)
            )
        )


def _usage_query():
    usage = func.count(models.document_tags.c.document_id).label("doc_count")
    return (
        select(models.Tag, usage)
        .outerjoin(models.document_tags, models.document_tags.c.tag_id == models.Tag.id)
        .group_by(models.Tag.id)
    ), usage


def _with_counts(rows) -> List[Tuple[models.Tag, int]]:
    return [(tag, int(count)) for tag, count in rows]


def list_with_counts(db: Session) -> List[Tuple[models.Tag, int]]:
    """
    All tags with the number of documents using them, alphabetically.
    """
    query, _ = _usage_query()
    with backend_errors(db):
        return _with_counts(db.execute(query.order_by(models.Tag.name)))


def popular(db: Session, limit: int = 20) -> List[Tuple[models.Tag, int]]:
    """
    Most used tags first; ties broken by name ascending.
    """
    query, usage = _usage_query()
    with backend_errors(db):
        return _with_counts(db.execute(query.order_by(usage.desc(), models.Tag.name.asc()).limit(limit)))


def tags_for_document(db: Session, document_id: str) -> List[models.Tag]:
    with backend_errors(db):
        return list(
            db.scalars(
                select(models.Tag)
                .join(models.document_tags, models.document_tags.c.tag_id == models.Tag.id)
                .where(models.document_tags.c.document_id == document_id)
                .order_by(models.Tag.name)
            )
        )


def tags_by_creator(db: Session, user_id: str) -> List[models.Tag]:
    with backend_errors(db):
        return list(db.scalars(select(models.Tag).where(models.Tag.creator_id == user_id).order_by(models.Tag.name)))


def suggest(db: Session, query: str, limit: int = 10) -> List[str]:
    """
    Tag name suggestions for a partial name.

    Matching predefined names come first, then existing tags; an empty
    query returns the head of the predefined list.
    """
    needle = normalize_tag_name(query)
    if not needle:
        return PREDEFINED_TAGS[:limit]

    predefined = [name for name in PREDEFINED_TAGS if needle in name][:5]
    existing = [tag.name for tag in search(db, needle, limit=5)]

    merged = []
    for name in predefined + existing:
        if name not in merged:
            merged.append(name)
    return merged[:limit]


def recommend(title: str, description: Optional[str], content: str, limit: int = 5) -> List[str]:
    """
    Recommends predefined tags that appear in a document's text.
    """
    text = f"{title} {description or ''} {content}".lower()
    recommendations = [name for name in PREDEFINED_TAGS if name in text]

    if any(word in text for word in ("react", "jsx", "tsx")):
        recommendations += ["react", "javascript", "typescript"]
    if any(word in text for word in ("api", "endpoint", "http")):
        recommendations += ["api", "rest"]
    if any(word in text for word in ("database", "sql", "query")):
        recommendations += ["postgresql", "mysql"]

    return list(dict.fromkeys(recommendations))[:limit]
