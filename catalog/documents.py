import logging
from typing import List, Optional

from sqlalchemy import delete as sql_delete
from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from catalog import models, schemas
from catalog.db import backend_errors, begin_write, transaction
from catalog.errors import NotFound, PermissionDenied
from catalog.tags import find_or_create_in_transaction
from catalog.validation import normalize_tag_list

logger = logging.getLogger(__name__)


def is_visible(document: models.Document, requester_id: Optional[str]) -> bool:
    """
    Public documents are visible to everyone, private ones to their owner only.
    """
    return document.is_public or (requester_id is not None and document.owner_id == requester_id)


def to_response(
    document: models.Document,
    is_starred: bool = False,
    score: Optional[int] = None,
) -> schemas.DocumentResponse:
    return schemas.DocumentResponse(
        id=document.id,
        owner_id=document.owner_id,
        author_username=document.owner.username if document.owner else None,
        title=document.title,
        description=document.description,
        content=document.content,
        is_public=document.is_public,
        views=document.views,
        downloads=document.downloads,
        stars=document.stars,
        is_starred=is_starred,
        tags=document.tag_names,
        created_at=document.created_at,
        updated_at=document.updated_at,
        score=score,
    )


def _load(db: Session, document_id: str) -> Optional[models.Document]:
    return db.scalar(
        select(models.Document)
        .options(selectinload(models.Document.tags), selectinload(models.Document.owner))
        .where(models.Document.id == document_id)
    )


def _owned(db: Session, document_id: str, requester_id: str) -> models.Document:
    """
    Loads a document the requester wants to mutate.

    A document the requester cannot see raises NotFound, exactly like a
    missing one; a visible document owned by someone else raises
    PermissionDenied.
    """
    document = _load(db, document_id)
    if document is None or not is_visible(document, requester_id):
        raise NotFound("Document")
    if document.owner_id != requester_id:
        raise PermissionDenied("Only the owner can modify this document")
    return document


def resync_tags(db: Session, document: models.Document, tag_names: List[str], creator_id: str) -> List[models.Tag]:
    """
    Replaces the document's whole tag set.

    All existing associations are deleted, then every de-duplicated name is
    found or created and associated again in input order. Runs inside the
    caller's transaction, so a failure part-way leaves the previous tag set
    untouched.

    Args:
        db: Database session
        document: Document being written
        tag_names: Full replacement list of tag names
        creator_id: User credited with any tags created here

    Returns:
        Tags now associated with the document
    """
    db.execute(sql_delete(models.document_tags).where(models.document_tags.c.document_id == document.id))

    tags = []
    for name in normalize_tag_list(tag_names):
        tag = find_or_create_in_transaction(db, name, creator_id)
        db.execute(insert(models.document_tags).values(document_id=document.id, tag_id=tag.id))
        tags.append(tag)

    db.expire(document, ["tags"])
    return tags


def create(db: Session, owner_id: str, fields: schemas.DocumentFields) -> models.Document:
    """
    Creates a new document with its tags.

    Args:
        db: Database session
        owner_id: Owning user
        fields: Validated document fields

    Returns:
        Document model instance
    """
    with transaction(db, "create_document"):
        document = models.Document(
            owner_id=owner_id,
            title=fields.title,
            description=fields.description,
            content=fields.content,
            is_public=fields.is_public,
            views=0,
            downloads=0,
            stars=0,
        )
        db.add(document)
        db.flush()  # Get document.id without committing
        resync_tags(db, document, fields.tags, owner_id)

    logger.info("Created document", extra={"document_id": document.id, "user_id": owner_id})
    return _load(db, document.id)


def update_document(
    db: Session,
    document_id: str,
    requester_id: str,
    fields: schemas.DocumentFields,
) -> models.Document:
    """
    Replaces a document's mutable fields and its entire tag set.

    Args:
        db: Database session
        document_id: Document ID
        requester_id: Caller; must own the document
        fields: Validated document fields

    Returns:
        Updated Document model

    Raises:
        NotFound if the document does not exist or is not visible
        PermissionDenied if the requester is not the owner
    """
    with transaction(db, "update_document"):
        document = _owned(db, document_id, requester_id)
        document.title = fields.title
        document.description = fields.description
        document.content = fields.content
        document.is_public = fields.is_public
        db.flush()
        resync_tags(db, document, fields.tags, requester_id)

    logger.info("Updated document", extra={"document_id": document_id, "user_id": requester_id})
    return _load(db, document_id)


def get(db: Session, document_id: str, requester_id: Optional[str] = None) -> Optional[models.Document]:
    """
    Gets a document by ID.

    Returns None both when the document does not exist and when it is
    private to someone else.
    """
    with backend_errors(db):
        document = _load(db, document_id)
    if document is None or not is_visible(document, requester_id):
        return None
    return document


def delete(db: Session, document_id: str, requester_id: str) -> bool:
    """
    Deletes a document; tag associations and stars go with it.
    """
    with transaction(db, "delete_document"):
        document = _owned(db, document_id, requester_id)
        # Tag associations are removed through the loaded relationship.
        db.execute(sql_delete(models.DocumentStar).where(models.DocumentStar.document_id == document_id))
        db.delete(document)

    logger.info("Deleted document", extra={"document_id": document_id, "user_id": requester_id})
    return True


def toggle_visibility(db: Session, document_id: str, requester_id: str) -> bool:
    """
    Flips the public flag.

    Returns:
        The new value of is_public
    """
    with transaction(db, "toggle_visibility"):
        document = _owned(db, document_id, requester_id)
        document.is_public = not document.is_public
        new_visibility = document.is_public

    logger.info(
        f"Document is now {'public' if new_visibility else 'private'}",
        extra={"document_id": document_id, "user_id": requester_id},
    )
    return new_visibility


def _bump(db: Session, document_id: str, column: str) -> None:
    counter = getattr(models.Document, column)
    try:
        begin_write(db)
        db.execute(
            update(models.Document)
            .where(models.Document.id == document_id)
            .values({column: counter + 1})
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        # Counter bumps must never fail the read or download they accompany.
        db.rollback()
        logger.warning(f"Failed to increment {column}: {e}", extra={"document_id": document_id})


def increment_views(db: Session, document_id: str) -> None:
    _bump(db, document_id, "views")


def increment_downloads(db: Session, document_id: str) -> None:
    _bump(db, document_id, "downloads")


def list_by_owner(db: Session, owner_id: str) -> List[models.Document]:
    """
    All documents of one owner, public and private, newest first.
    """
    with backend_errors(db):
        return list(
            db.scalars(
                select(models.Document)
                .options(selectinload(models.Document.tags), selectinload(models.Document.owner))
                .where(models.Document.owner_id == owner_id)
                .order_by(models.Document.created_at.desc(), models.Document.id)
            )
        )


def get_many(db: Session, document_ids: List[str]) -> List[models.Document]:
    """
    Loads documents by id, keeping the order of ``document_ids``.
    """
    if not document_ids:
        return []
    with backend_errors(db):
        found = {
            doc.id: doc
            for doc in db.scalars(
                select(models.Document)
                .options(selectinload(models.Document.tags), selectinload(models.Document.owner))
                .where(models.Document.id.in_(document_ids))
            )
        }
    return [found[doc_id] for doc_id in document_ids if doc_id in found]
