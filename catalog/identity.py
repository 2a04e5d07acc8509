import logging
from typing import List, Optional, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog import models, schemas
from catalog.config import get_settings
from catalog.db import backend_errors, transaction
from catalog.errors import Conflict, NotFound, ValidationError
from catalog.validation import is_valid_username, sanitize_username

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: str) -> Optional[models.User]:
    with backend_errors(db):
        return db.get(models.User, user_id)


def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    with backend_errors(db):
        return db.scalar(select(models.User).where(models.User.username == (username or "").lower()))


def is_username_available(db: Session, username: str, exclude_user_id: Optional[str] = None) -> bool:
    """
    True when the username is well-formed and not taken by anyone other than
    ``exclude_user_id``.
    """
    if not is_valid_username(username):
        return False
    owner = get_user_by_username(db, username)
    return owner is None or (exclude_user_id is not None and owner.id == exclude_user_id)


def search_users(db: Session, query: str, limit: int = 20) -> List[models.User]:
    """
    Users whose username contains the query, alphabetically.
    """
    needle = (query or "").strip().lower()
    if not needle:
        return []
    with backend_errors(db):
        return list(
            db.scalars(
                select(models.User)
                .where(models.User.username.contains(needle, autoescape=True))
                .order_by(models.User.username)
                .limit(limit)
            )
        )


def top_contributors(db: Session, limit: int = 10) -> List[Tuple[models.User, int]]:
    """
    Users with the most public documents, ties broken by username. Users
    without public documents are left out.
    """
    doc_count = func.count(models.Document.id).label("doc_count")
    with backend_errors(db):
        rows = db.execute(
            select(models.User, doc_count)
            .join(models.Document, models.Document.owner_id == models.User.id)
            .where(models.Document.is_public.is_(True))
            .group_by(models.User.id)
            .order_by(doc_count.desc(), models.User.username)
            .limit(limit)
        ).all()
    return [(user, int(count)) for user, count in rows]


def candidate_username(identity: schemas.AuthIdentity) -> str:
    """
    Derives the base username for a new identity.

    Profile metadata is tried in order (user_name, username, full_name); the
    first one that sanitizes to a valid username wins, otherwise the first
    eight characters of the identity id are used.

    Args:
        identity: Authenticated identity

    Returns:
        Valid base username
    """
    for raw in (identity.user_name, identity.username, identity.full_name):
        if raw:
            candidate = sanitize_username(raw)
            if is_valid_username(candidate):
                return candidate
    fallback = sanitize_username(f"user_{identity.id[:8]}")
    if is_valid_username(fallback):
        return fallback
    return "user"


def _with_suffix(base: str, counter: int) -> str:
    suffix = f"_{counter}"
    max_length = get_settings().username_max_length
    return base[: max_length - len(suffix)].rstrip("-_") + suffix


def resolve(db: Session, identity: schemas.AuthIdentity) -> models.User:
    """
    Maps an authenticated identity to its catalog user, creating it on first
    sight.

    Numeric suffixes (_1, _2, ...) are appended to the base username until a
    free one is found. A concurrent resolve of the same identity is detected
    through the primary key and the stored row is returned.

    Args:
        db: Database session
        identity: Authenticated identity

    Returns:
        User model instance

    Raises:
        Conflict if no free username is found within the suffix limit
        BackendUnavailable if the store fails
    """
    existing = get_user(db, identity.id)
    if existing:
        return existing

    base = candidate_username(identity)
    max_suffix = get_settings().username_max_suffix

    with transaction(db, "resolve_user"):
        for counter in range(0, max_suffix + 1):
            username = base if counter == 0 else _with_suffix(base, counter)
            if db.scalar(select(models.User.id).where(models.User.username == username)):
                continue

            user = models.User(
                id=identity.id,
                username=username,
                display_name=identity.full_name,
                email=identity.email,
                avatar_url=identity.avatar_url,
            )
            savepoint = db.begin_nested()
            try:
                db.add(user)
                db.flush()
            except IntegrityError:
                savepoint.rollback()
                concurrent = db.get(models.User, identity.id)
                if concurrent:
                    logger.info("Identity resolved concurrently", extra={"user_id": identity.id})
                    return concurrent
                continue
            else:
                savepoint.commit()
            logger.info(f"Created user {username}", extra={"user_id": identity.id})
            return user

    raise Conflict(f"No available username for base {base!r}")


def user_stats(db: Session, user_id: str, include_private: bool = True) -> schemas.UserStats:
    """
    Document counts and summed counters for one user.

    With ``include_private`` False only public documents are counted, so the
    private figures come out as zero.
    """
    Document = models.Document
    conditions = [Document.owner_id == user_id]
    if not include_private:
        conditions.append(Document.is_public.is_(True))

    with backend_errors(db):
        row = db.execute(
            select(
                func.count(Document.id),
                func.coalesce(func.sum(case((Document.is_public.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(Document.stars), 0),
                func.coalesce(func.sum(Document.views), 0),
                func.coalesce(func.sum(Document.downloads), 0),
            ).where(*conditions)
        ).one()

    total, public, stars, views, downloads = (int(value or 0) for value in row)
    return schemas.UserStats(
        total_docs=total,
        public_docs=public,
        private_docs=total - public,
        total_stars=stars,
        total_views=views,
        total_downloads=downloads,
    )


def update_profile(db: Session, user_id: str, changes: schemas.ProfileUpdate) -> models.User:
    """
    Applies profile changes to a user. Fields set to None are left alone;
    blank display name, email or avatar URL clear the stored value.

    Args:
        db: Database session
        user_id: User to update
        changes: Requested changes

    Returns:
        Updated User model instance

    Raises:
        ValidationError if the new username is malformed
        NotFound if the user does not exist
        Conflict if the new username belongs to another user
    """
    username = None
    if changes.username is not None:
        username = changes.username.strip().lower()
        if not is_valid_username(username):
            settings = get_settings()
            raise ValidationError(
                f"Username must be {settings.username_min_length}-{settings.username_max_length} characters "
                "long and contain only letters, numbers, underscores, and hyphens",
                field="username",
            )

    with transaction(db, "update_profile"):
        user = db.get(models.User, user_id)
        if not user:
            raise NotFound("User")

        if username is not None and username != user.username:
            if not is_username_available(db, username, exclude_user_id=user_id):
                raise Conflict("Username is already taken")
            user.username = username

        for field in ("display_name", "email", "avatar_url"):
            value = getattr(changes, field)
            if value is not None:
                setattr(user, field, value.strip() or None)
        db.flush()

    logger.info("Updated profile", extra={"user_id": user_id})
    return user


def delete_account(db: Session, user_id: str) -> bool:
    """
    Deletes a user together with their documents, tags and stars.

    Star counters of other users' documents that this user had starred are
    decremented in the same transaction.

    Raises:
        NotFound if the user does not exist
    """
    with transaction(db, "delete_account"):
        user = db.get(models.User, user_id)
        if not user:
            raise NotFound("User")

        starred_ids = db.scalars(
            select(models.DocumentStar.document_id).where(models.DocumentStar.user_id == user_id)
        ).all()
        if starred_ids:
            db.execute(
                update(models.Document)
                .where(models.Document.id.in_(starred_ids))
                .values(stars=models.Document.stars - 1)
            )
        db.delete(user)

    logger.info("Deleted account", extra={"user_id": user_id})
    return True
