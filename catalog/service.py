"""
Catalog service: the single entry point callers use.

Validates and sanitizes requests, checks the caller identity, then delegates
to the identity resolver, tag registry, star ledger, document store and
search service. Committed mutations are announced to an optional event
publisher.
"""
import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from catalog import documents, identity, models, schemas, search, stars, tags
from catalog.errors import NotFound, Unauthenticated
from catalog.validation import sanitize_filename, validate_document_fields

logger = logging.getLogger(__name__)

EventPublisher = Callable[[str, dict], None]


class CatalogService:
    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher

    # Internal helpers

    def _emit(self, event: str, payload: dict) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher(event, payload)
        except Exception as e:
            logger.warning(f"Failed to publish {event}: {e}", extra={"event": event})

    def _require_user(self, requester_id: Optional[str]) -> models.User:
        """
        Resolves the caller of a mutation.

        Raises:
            Unauthenticated if no requester id is given or it names no user
        """
        if not requester_id or not str(requester_id).strip():
            raise Unauthenticated("Authentication required")
        user = identity.get_user(self.db, requester_id)
        if user is None:
            raise Unauthenticated("Unknown user")
        return user

    def _visible_document(self, document_id: str, requester_id: Optional[str]) -> models.Document:
        document = documents.get(self.db, document_id, requester_id)
        if document is None:
            raise NotFound("Document")
        return document

    # Users

    def resolve_user(self, auth_identity: schemas.AuthIdentity) -> schemas.UserResponse:
        user = identity.resolve(self.db, auth_identity)
        return schemas.UserResponse.model_validate(user)

    def is_username_available(self, username: str, requester_id: Optional[str] = None) -> bool:
        """
        True when the username is well-formed and free. The requester's own
        current username counts as available to them.
        """
        return identity.is_username_available(self.db, username, exclude_user_id=requester_id)

    def user_stats(self, user_id: str, requester_id: Optional[str] = None) -> schemas.UserStats:
        """
        Stats of a user. Private documents only count when the user asks
        about themselves.
        """
        if identity.get_user(self.db, user_id) is None:
            raise NotFound("User")
        return identity.user_stats(self.db, user_id, include_private=requester_id == user_id)

    def update_profile(self, requester_id: Optional[str], changes: schemas.ProfileUpdate) -> schemas.UserResponse:
        user = self._require_user(requester_id)
        updated = identity.update_profile(self.db, user.id, changes)
        self._emit("user.updated", {"user_id": user.id})
        return schemas.UserResponse.model_validate(updated)

    def search_users(self, query: str) -> List[schemas.UserSummary]:
        return [schemas.UserSummary.model_validate(user) for user in identity.search_users(self.db, query)]

    def top_contributors(self, limit: int = 10) -> List[schemas.Contributor]:
        return [
            schemas.Contributor(id=user.id, username=user.username, doc_count=count)
            for user, count in identity.top_contributors(self.db, limit)
        ]

    def delete_account(self, requester_id: Optional[str]) -> bool:
        user = self._require_user(requester_id)
        identity.delete_account(self.db, user.id)
        self._emit("user.deleted", {"user_id": user.id})
        return True

    # Documents

    def create_document(self, requester_id: Optional[str], fields: schemas.DocumentFields) -> schemas.DocumentResponse:
        """
        Validates and creates a document owned by the requester.

        Raises:
            Unauthenticated, ValidationError
        """
        user = self._require_user(requester_id)
        cleaned = validate_document_fields(fields)
        document = documents.create(self.db, user.id, cleaned)
        self._emit("document.created", {"document_id": document.id, "user_id": user.id})
        return documents.to_response(document)

    def update_document(
        self,
        document_id: str,
        requester_id: Optional[str],
        fields: schemas.DocumentFields,
    ) -> schemas.DocumentResponse:
        """
        Replaces a document's fields and tag set.

        Raises:
            Unauthenticated, ValidationError, NotFound, PermissionDenied
        """
        user = self._require_user(requester_id)
        cleaned = validate_document_fields(fields)
        document = documents.update_document(self.db, document_id, user.id, cleaned)
        self._emit("document.updated", {"document_id": document_id, "user_id": user.id})
        return documents.to_response(document, is_starred=stars.is_starred(self.db, document_id, user.id))

    def get_document(
        self,
        document_id: str,
        requester_id: Optional[str] = None,
        track_view: bool = True,
    ) -> Optional[schemas.DocumentResponse]:
        """
        Returns the document, or None when it is missing or private to
        someone else. Counts a view unless ``track_view`` is False.
        """
        document = documents.get(self.db, document_id, requester_id)
        if document is None:
            return None
        response = documents.to_response(document, is_starred=stars.is_starred(self.db, document_id, requester_id))
        if track_view:
            documents.increment_views(self.db, document_id)
        return response

    def download_document(self, document_id: str, requester_id: Optional[str] = None) -> schemas.DocumentDownload:
        document = self._visible_document(document_id, requester_id)
        download = schemas.DocumentDownload(
            content=document.content,
            filename=f"{sanitize_filename(document.title)}.md",
        )
        documents.increment_downloads(self.db, document_id)
        return download

    def delete_document(self, document_id: str, requester_id: Optional[str]) -> bool:
        user = self._require_user(requester_id)
        documents.delete(self.db, document_id, user.id)
        self._emit("document.deleted", {"document_id": document_id, "user_id": user.id})
        return True

    def toggle_visibility(self, document_id: str, requester_id: Optional[str]) -> schemas.VisibilityResponse:
        user = self._require_user(requester_id)
        is_public = documents.toggle_visibility(self.db, document_id, user.id)
        self._emit(
            "document.visibility_changed",
            {"document_id": document_id, "user_id": user.id, "is_public": is_public},
        )
        return schemas.VisibilityResponse(document_id=document_id, is_public=is_public)

    def document_stats(self, document_id: str, requester_id: Optional[str] = None) -> schemas.DocumentStats:
        document = self._visible_document(document_id, requester_id)
        return schemas.DocumentStats(
            views=document.views,
            downloads=document.downloads,
            stars=document.stars,
            tag_count=len(document.tags),
        )

    def list_my_documents(self, requester_id: Optional[str]) -> List[schemas.DocumentResponse]:
        user = self._require_user(requester_id)
        owned = documents.list_by_owner(self.db, user.id)
        star_stats = stars.batch_stats(self.db, [doc.id for doc in owned], user.id)
        return [documents.to_response(doc, is_starred=star_stats[doc.id].is_starred) for doc in owned]

    # Stars

    def toggle_star(self, document_id: str, requester_id: Optional[str]) -> schemas.StarToggleResponse:
        user = self._require_user(requester_id)
        starred, count = stars.toggle(self.db, document_id, user.id)
        self._emit(
            "document.starred" if starred else "document.unstarred",
            {"document_id": document_id, "user_id": user.id, "star_count": count},
        )
        return schemas.StarToggleResponse(document_id=document_id, starred=starred, star_count=count)

    def is_starred(self, document_id: str, requester_id: Optional[str]) -> bool:
        self._visible_document(document_id, requester_id)
        return stars.is_starred(self.db, document_id, requester_id)

    def star_count(self, document_id: str, requester_id: Optional[str] = None) -> int:
        self._visible_document(document_id, requester_id)
        return stars.star_count(self.db, document_id)

    def stargazers(self, document_id: str, requester_id: Optional[str] = None) -> List[schemas.UserSummary]:
        self._visible_document(document_id, requester_id)
        return [schemas.UserSummary.model_validate(user) for user in stars.starred_by(self.db, document_id)]

    def star_stats(self, document_ids: List[str], requester_id: Optional[str] = None) -> Dict[str, schemas.StarStats]:
        """
        Star stats for list views. Ids the requester cannot see are reported
        with zero stars, like ids that do not exist.
        """
        visible = {doc.id for doc in documents.get_many(self.db, document_ids) if documents.is_visible(doc, requester_id)}
        stats = stars.batch_stats(self.db, [doc_id for doc_id in document_ids if doc_id in visible], requester_id)
        return {doc_id: stats.get(doc_id, schemas.StarStats()) for doc_id in document_ids}

    def starred_documents(self, requester_id: Optional[str]) -> List[schemas.DocumentResponse]:
        user = self._require_user(requester_id)
        ids = stars.starred_document_ids(self.db, user.id)
        return [
            documents.to_response(doc, is_starred=True)
            for doc in documents.get_many(self.db, ids)
            if documents.is_visible(doc, user.id)
        ]

    # Search

    def search(self, params: schemas.SearchParams, requester_id: Optional[str] = None) -> schemas.SearchResponse:
        return search.search(self.db, params, requester_id)

    def related_documents(
        self,
        document_id: str,
        requester_id: Optional[str] = None,
        limit: int = 5,
    ) -> List[schemas.DocumentResponse]:
        return search.related(self.db, document_id, requester_id, limit=limit)

    def trending_documents(self, limit: int = 10, requester_id: Optional[str] = None) -> List[schemas.DocumentResponse]:
        return search.trending(self.db, limit=limit, requester_id=requester_id)

    # Tags

    def find_or_create_tag(
        self,
        name: str,
        requester_id: Optional[str],
        color: Optional[str] = None,
    ) -> schemas.TagResponse:
        user = self._require_user(requester_id)
        return schemas.TagResponse.model_validate(tags.find_or_create(self.db, name, user.id, color))

    def bulk_find_or_create_tags(self, names: List[str], requester_id: Optional[str]) -> schemas.BulkTagResult:
        user = self._require_user(requester_id)
        return tags.bulk_find_or_create(self.db, names, user.id)

    def delete_tag(self, tag_id: str, requester_id: Optional[str]) -> bool:
        user = self._require_user(requester_id)
        tags.delete(self.db, tag_id, user.id)
        self._emit("tag.deleted", {"tag_id": tag_id, "user_id": user.id})
        return True

    def update_tag(self, tag_id: str, requester_id: Optional[str], changes: schemas.TagUpdate) -> schemas.TagResponse:
        user = self._require_user(requester_id)
        tag = tags.update(self.db, tag_id, user.id, name=changes.name, color=changes.color)
        self._emit("tag.updated", {"tag_id": tag_id, "user_id": user.id, "tag_name": tag.name})
        return schemas.TagResponse.model_validate(tag)

    def tag_documents(self, tag_id: str, requester_id: Optional[str] = None) -> List[schemas.DocumentResponse]:
        """
        Documents carrying the tag that the requester can see.

        Raises:
            NotFound if the tag does not exist
        """
        if tags.get_by_id(self.db, tag_id) is None:
            raise NotFound("Tag")
        visible = [
            doc for doc in documents.get_many(self.db, tags.tag_document_ids(self.db, tag_id))
            if documents.is_visible(doc, requester_id)
        ]
        star_stats = stars.batch_stats(self.db, [doc.id for doc in visible], requester_id)
        return [documents.to_response(doc, is_starred=star_stats[doc.id].is_starred) for doc in visible]

    def list_tags(self) -> List[schemas.TagWithCount]:
        return [_with_count(tag, count) for tag, count in tags.list_with_counts(self.db)]

    def popular_tags(self, limit: int = 20) -> List[schemas.TagWithCount]:
        return [_with_count(tag, count) for tag, count in tags.popular(self.db, limit)]

    def search_tags(self, query: str) -> List[schemas.TagResponse]:
        return [schemas.TagResponse.model_validate(tag) for tag in tags.search(self.db, query)]

    def my_tags(self, requester_id: Optional[str]) -> List[schemas.TagResponse]:
        user = self._require_user(requester_id)
        return [schemas.TagResponse.model_validate(tag) for tag in tags.tags_by_creator(self.db, user.id)]

    def tag_suggestions(self, query: str) -> List[str]:
        return tags.suggest(self.db, query)

    def recommend_tags(self, fields: schemas.DocumentFields) -> List[str]:
        return tags.recommend(fields.title, fields.description, fields.content)


def _with_count(tag: models.Tag, count: int) -> schemas.TagWithCount:
    return schemas.TagWithCount(
        id=tag.id,
        name=tag.name,
        color=tag.color,
        creator_id=tag.creator_id,
        doc_count=count,
    )
