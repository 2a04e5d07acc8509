import pytest

from catalog import documents, models, schemas, stars, tags
from catalog.errors import NotFound, PermissionDenied, ValidationError


def _fields(**overrides):
    values = {"title": "Title", "description": None, "content": "Body", "is_public": True, "tags": []}
    values.update(overrides)
    return schemas.DocumentFields(**values)


class TestCreateDocument:
    """Tests for document creation."""

    def test_create_with_tags(self, db_session, alice):
        document = documents.create(db_session, alice.id, _fields(tags=["react", "vue"]))

        assert document.id is not None
        assert document.owner_id == alice.id
        assert document.tag_names == ["react", "vue"]
        assert (document.views, document.downloads, document.stars) == (0, 0, 0)

    def test_create_reuses_existing_tags(self, db_session, alice, bob):
        documents.create(db_session, alice.id, _fields(tags=["react"]))
        documents.create(db_session, bob.id, _fields(tags=["react"]))

        assert db_session.query(models.Tag).count() == 1
        assert tags.get_by_name(db_session, "react").creator_id == alice.id

    def test_response_carries_author(self, db_session, alice):
        response = documents.to_response(documents.create(db_session, alice.id, _fields()))
        assert response.author_username == "alice"
        assert response.is_starred is False


class TestUpdateDocument:
    """Tests for document updates and tag re-sync."""

    def test_full_tag_replace(self, db_session, alice):
        """Test the stored set is the normalized input and old associations are gone."""
        document = documents.create(db_session, alice.id, _fields(tags=["react"]))

        updated = documents.update_document(db_session, document.id, alice.id, _fields(tags=["ab", "ab", "CD "]))

        assert sorted(updated.tag_names) == ["ab", "cd"]
        # The old tag survives without its association
        assert tags.get_by_name(db_session, "react") is not None
        assert tags.tags_for_document(db_session, document.id)[0].name == "ab"
        assert len(tags.tags_for_document(db_session, document.id)) == 2

    def test_updates_fields(self, db_session, alice):
        document = documents.create(db_session, alice.id, _fields(is_public=False))

        updated = documents.update_document(
            db_session, document.id, alice.id,
            _fields(title="New title", description="New description", content="New body", is_public=True),
        )

        assert updated.title == "New title"
        assert updated.description == "New description"
        assert updated.content == "New body"
        assert updated.is_public is True

    def test_failed_resync_leaves_document_untouched(self, db_session, alice):
        """Test a failure part-way through the re-sync rolls back the whole update."""
        document = documents.create(db_session, alice.id, _fields(title="Original", tags=["react"]))
        document_id = document.id

        with pytest.raises(ValidationError):
            documents.update_document(
                db_session, document_id, alice.id, _fields(title="Changed", tags=["good", "x"])
            )

        db_session.expire_all()
        reloaded = documents.get(db_session, document_id, alice.id)
        assert reloaded.title == "Original"
        assert reloaded.tag_names == ["react"]
        assert tags.get_by_name(db_session, "good") is None

    def test_non_owner_of_public_document(self, db_session, public_document, bob):
        with pytest.raises(PermissionDenied):
            documents.update_document(db_session, public_document.id, bob.id, _fields())

    def test_non_owner_of_private_document(self, db_session, private_document, bob):
        """Test a private document of someone else looks missing."""
        with pytest.raises(NotFound):
            documents.update_document(db_session, private_document.id, bob.id, _fields())

    def test_missing_document(self, db_session, alice):
        with pytest.raises(NotFound):
            documents.update_document(db_session, "missing", alice.id, _fields())


class TestGetDocument:
    """Tests for visibility rules on reads."""

    def test_public_visible_to_anyone(self, db_session, public_document, bob):
        assert documents.get(db_session, public_document.id, bob.id) is not None
        assert documents.get(db_session, public_document.id, None) is not None

    def test_private_visible_to_owner(self, db_session, private_document, alice):
        assert documents.get(db_session, private_document.id, alice.id) is not None

    def test_private_hidden_like_missing(self, db_session, private_document, bob):
        """Test a private document is indistinguishable from a missing id."""
        assert documents.get(db_session, private_document.id, bob.id) is None
        assert documents.get(db_session, private_document.id, None) is None
        assert documents.get(db_session, "missing", bob.id) is None


class TestDeleteDocument:
    """Tests for document deletion."""

    def test_delete_cascades_stars_and_associations(self, db_session, public_document, alice, bob):
        stars.toggle(db_session, public_document.id, bob.id)

        assert documents.delete(db_session, public_document.id, alice.id) is True

        assert documents.get(db_session, public_document.id, alice.id) is None
        assert db_session.query(models.DocumentStar).count() == 0
        assert db_session.execute(models.document_tags.select()).all() == []
        # Tags themselves survive
        assert tags.get_by_name(db_session, "react") is not None

    def test_only_owner_may_delete(self, db_session, public_document, bob):
        with pytest.raises(PermissionDenied):
            documents.delete(db_session, public_document.id, bob.id)

    def test_private_document_of_other_user(self, db_session, private_document, bob):
        with pytest.raises(NotFound):
            documents.delete(db_session, private_document.id, bob.id)


class TestVisibilityAndCounters:
    """Tests for visibility toggling and fire-and-forget counters."""

    def test_toggle_visibility(self, db_session, private_document, alice):
        assert documents.toggle_visibility(db_session, private_document.id, alice.id) is True
        assert documents.toggle_visibility(db_session, private_document.id, alice.id) is False

    def test_toggle_visibility_non_owner(self, db_session, public_document, bob):
        with pytest.raises(PermissionDenied):
            documents.toggle_visibility(db_session, public_document.id, bob.id)

    def test_increment_counters(self, db_session, public_document):
        documents.increment_views(db_session, public_document.id)
        documents.increment_views(db_session, public_document.id)
        documents.increment_downloads(db_session, public_document.id)

        db_session.expire_all()
        document = documents.get(db_session, public_document.id)
        assert document.views == 2
        assert document.downloads == 1

    def test_increment_missing_document_is_silent(self, db_session):
        documents.increment_views(db_session, "missing")


class TestListing:
    """Tests for owner listings and bulk loads."""

    def test_list_by_owner_includes_private(self, db_session, public_document, private_document, alice, bob):
        owned = documents.list_by_owner(db_session, alice.id)
        assert {doc.id for doc in owned} == {public_document.id, private_document.id}
        assert documents.list_by_owner(db_session, bob.id) == []

    def test_get_many_keeps_order(self, db_session, public_document, private_document):
        ids = [private_document.id, "missing", public_document.id]
        assert [doc.id for doc in documents.get_many(db_session, ids)] == [private_document.id, public_document.id]
