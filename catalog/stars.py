"""
Star ledger.

A DocumentStar row is the fact "this user stars this document". The
documents.stars column is a cache of the row count and is only ever changed
by SQL-side increments issued in the same transaction as the row
insert/delete, with the document row locked for the duration.
"""
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from catalog import models, schemas
from catalog.db import backend_errors, transaction
from catalog.errors import NotFound

logger = logging.getLogger(__name__)


def _visible(document: models.Document, user_id: Optional[str]) -> bool:
    return document.is_public or (user_id is not None and document.owner_id == user_id)


def toggle(db: Session, document_id: str, user_id: str) -> Tuple[bool, int]:
    """
    Stars the document for the user, or unstars it if already starred.

    Args:
        db: Database session
        document_id: Document ID
        user_id: Starring user

    Returns:
        (now_starred, star_count) where star_count is a fresh count of star
        rows taken after the change

    Raises:
        NotFound if the document does not exist or is not visible to the user
    """
    with transaction(db, "toggle_star"):
        # Serializes concurrent toggles on the same document. SQLite ignores
        # FOR UPDATE; there the IMMEDIATE write transaction serializes them.
        document = db.scalar(
            select(models.Document).where(models.Document.id == document_id).with_for_update()
        )
        if document is None or not _visible(document, user_id):
            raise NotFound("Document")

        star_filter = (
            models.DocumentStar.document_id == document_id,
            models.DocumentStar.user_id == user_id,
        )
        already_starred = db.scalar(select(func.count()).select_from(models.DocumentStar).where(*star_filter)) > 0

        if already_starred:
            db.execute(delete(models.DocumentStar).where(*star_filter))
            delta = -1
        else:
            db.add(models.DocumentStar(document_id=document_id, user_id=user_id))
            db.flush()
            delta = 1

        db.execute(
            update(models.Document)
            .where(models.Document.id == document_id)
            .values(stars=models.Document.stars + delta)
            .execution_options(synchronize_session=False)
        )
        count = _count_rows(db, document_id)

    db.expire(document, ["stars"])
    now_starred = not already_starred
    logger.info(
        f"{'Starred' if now_starred else 'Unstarred'} document",
        extra={"document_id": document_id, "user_id": user_id},
    )
    return now_starred, count


def _count_rows(db: Session, document_id: str) -> int:
    return db.scalar(
        select(func.count()).select_from(models.DocumentStar).where(models.DocumentStar.document_id == document_id)
    )


def is_starred(db: Session, document_id: str, user_id: Optional[str]) -> bool:
    if not user_id:
        return False
    with backend_errors(db):
        return db.get(models.DocumentStar, (document_id, user_id)) is not None


def star_count(db: Session, document_id: str) -> int:
    """
    Number of star rows for a document.
    """
    with backend_errors(db):
        return _count_rows(db, document_id)


def starred_by(db: Session, document_id: str) -> List[models.User]:
    """
    Users who currently star the document, oldest star first.
    """
    with backend_errors(db):
        return list(
            db.scalars(
                select(models.User)
                .join(models.DocumentStar, models.DocumentStar.user_id == models.User.id)
                .where(models.DocumentStar.document_id == document_id)
                .order_by(models.DocumentStar.created_at, models.User.username)
            )
        )


def starred_document_ids(db: Session, user_id: str) -> List[str]:
    with backend_errors(db):
        return list(
            db.scalars(
                select(models.DocumentStar.document_id)
                .where(models.DocumentStar.user_id == user_id)
                .order_by(models.DocumentStar.created_at.desc())
            )
        )


def batch_stats(db: Session, document_ids: List[str], user_id: Optional[str] = None) -> Dict[str, schemas.StarStats]:
    """
    Star count and starred-by-user flag for several documents at once.

    Args:
        db: Database session
        document_ids: Documents to report on
        user_id: Viewer whose star flag is reported (optional)

    Returns:
        Mapping of document id to StarStats; every requested id is present
    """
    stats = {doc_id: schemas.StarStats() for doc_id in document_ids}
    if not document_ids:
        return stats

    with backend_errors(db):
        rows = db.execute(
            select(models.DocumentStar.document_id, models.DocumentStar.user_id).where(
                models.DocumentStar.document_id.in_(list(stats))
            )
        ).all()

    for doc_id, starrer in rows:
        entry = stats[doc_id]
        entry.count += 1
        if user_id and starrer == user_id:
            entry.is_starred = True
    return stats
