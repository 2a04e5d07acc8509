import logging

import pytest

from catalog import schemas
from catalog.errors import Conflict, NotFound, PermissionDenied, Unauthenticated, ValidationError
from catalog.service import CatalogService


def _fields(**overrides):
    values = {"title": "Title", "description": None, "content": "Body", "is_public": True, "tags": []}
    values.update(overrides)
    return schemas.DocumentFields(**values)


class TestAuthentication:
    """Tests for requester checks on mutations."""

    @pytest.mark.parametrize("requester_id", [None, "", "   "])
    def test_missing_requester(self, service, requester_id):
        with pytest.raises(Unauthenticated):
            service.create_document(requester_id, _fields())

    def test_unknown_requester(self, service):
        with pytest.raises(Unauthenticated):
            service.create_document("nobody", _fields())

    def test_star_requires_requester(self, service, public_document):
        with pytest.raises(Unauthenticated):
            service.toggle_star(public_document.id, None)

    def test_tag_creation_requires_requester(self, service):
        with pytest.raises(Unauthenticated):
            service.find_or_create_tag("python", None)


class TestDocumentOperations:
    """Tests for document operations through the service."""

    def test_create_validates_before_writing(self, service, alice):
        with pytest.raises(ValidationError):
            service.create_document(alice.id, _fields(title="t" * 201))
        assert service.list_my_documents(alice.id) == []

    def test_create_normalizes_tags(self, service, alice):
        document = service.create_document(alice.id, _fields(tags=["react", "React "]))
        assert document.tags == ["react"]

    def test_get_counts_views(self, service, public_document, bob):
        first = service.get_document(public_document.id, bob.id)
        second = service.get_document(public_document.id, bob.id)

        assert first.views == 0
        assert second.views == 1

    def test_get_without_tracking(self, service, public_document):
        service.get_document(public_document.id, track_view=False)
        assert service.get_document(public_document.id, track_view=False).views == 0

    def test_get_hidden_document(self, service, private_document, bob):
        assert service.get_document(private_document.id, bob.id) is None
        assert service.get_document("missing", bob.id) is None

    def test_get_reports_star_flag(self, service, public_document, bob):
        service.toggle_star(public_document.id, bob.id)
        assert service.get_document(public_document.id, bob.id).is_starred is True

    def test_download(self, service, make_document, alice):
        document = make_document(alice, title="My Doc: v2!", content="# Hello")

        download = service.download_document(document.id)

        assert download.filename == "My_Doc_v2.md"
        assert download.content == "# Hello"
        assert service.get_document(document.id, track_view=False).downloads == 1

    def test_download_hidden_document(self, service, private_document, bob):
        with pytest.raises(NotFound):
            service.download_document(private_document.id, bob.id)

    def test_update_by_non_owner(self, service, public_document, bob):
        with pytest.raises(PermissionDenied):
            service.update_document(public_document.id, bob.id, _fields())

    def test_delete(self, service, public_document, alice):
        assert service.delete_document(public_document.id, alice.id) is True
        assert service.get_document(public_document.id, alice.id) is None

    def test_toggle_visibility(self, service, private_document, alice, bob):
        result = service.toggle_visibility(private_document.id, alice.id)

        assert result.is_public is True
        assert service.get_document(private_document.id, bob.id) is not None

    def test_list_my_documents(self, service, public_document, private_document, alice):
        mine = service.list_my_documents(alice.id)
        assert {doc.id for doc in mine} == {public_document.id, private_document.id}

    def test_document_stats(self, service, public_document, bob):
        service.get_document(public_document.id, bob.id)
        service.download_document(public_document.id, bob.id)
        service.toggle_star(public_document.id, bob.id)

        stats = service.document_stats(public_document.id, bob.id)

        assert stats == schemas.DocumentStats(views=1, downloads=1, stars=1, tag_count=2)

    def test_document_stats_hidden_document(self, service, private_document, bob):
        with pytest.raises(NotFound):
            service.document_stats(private_document.id, bob.id)


class TestStarOperations:
    """Tests for star operations through the service."""

    def test_toggle(self, service, public_document, bob):
        starred = service.toggle_star(public_document.id, bob.id)
        assert starred.starred is True
        assert starred.star_count == 1

        unstarred = service.toggle_star(public_document.id, bob.id)
        assert unstarred.starred is False
        assert unstarred.star_count == 0

    def test_star_count_of_hidden_document(self, service, private_document, bob):
        with pytest.raises(NotFound):
            service.star_count(private_document.id, bob.id)

    def test_stargazers(self, service, public_document, bob):
        service.toggle_star(public_document.id, bob.id)
        assert [user.username for user in service.stargazers(public_document.id)] == ["bob"]

    def test_star_stats_hides_private_documents(self, service, public_document, private_document, alice, bob):
        service.toggle_star(public_document.id, bob.id)
        service.toggle_star(private_document.id, alice.id)

        stats = service.star_stats([public_document.id, private_document.id], bob.id)

        assert stats[public_document.id].count == 1
        assert stats[public_document.id].is_starred is True
        assert stats[private_document.id].count == 0

    def test_starred_documents_skip_hidden(self, service, make_document, alice, bob):
        document = make_document(alice, title="Starred")
        service.toggle_star(document.id, bob.id)
        service.toggle_visibility(document.id, alice.id)

        assert service.starred_documents(bob.id) == []
        assert [doc.id for doc in service.starred_documents(alice.id)] == []


class TestTagOperations:
    """Tests for tag operations through the service."""

    def test_list_and_popular(self, service, public_document):
        assert [(tag.name, tag.doc_count) for tag in service.list_tags()] == [("react", 1), ("typescript", 1)]
        assert len(service.popular_tags(limit=1)) == 1

    def test_bulk(self, service, alice):
        result = service.bulk_find_or_create_tags(["python", "x"], alice.id)
        assert [tag.name for tag in result.tags] == ["python"]
        assert result.failed[0].name == "x"

    def test_my_tags(self, service, alice, bob):
        service.find_or_create_tag("mine", alice.id)
        service.find_or_create_tag("theirs", bob.id)
        assert [tag.name for tag in service.my_tags(alice.id)] == ["mine"]

    def test_recommend(self, service):
        recommended = service.recommend_tags(_fields(title="Docker compose", content="Running a database"))
        assert "docker" in recommended
        assert "postgresql" in recommended

    def test_update_tag(self, service, alice):
        tag = service.find_or_create_tag("pyhton", alice.id)

        updated = service.update_tag(tag.id, alice.id, schemas.TagUpdate(name="python", color="#3776ab"))

        assert (updated.name, updated.color) == ("python", "#3776ab")

    def test_update_tag_by_other_user(self, service, alice, bob):
        tag = service.find_or_create_tag("mine", alice.id)
        with pytest.raises(PermissionDenied):
            service.update_tag(tag.id, bob.id, schemas.TagUpdate(name="ours"))

    def test_tag_documents_skip_hidden(self, service, public_document, private_document, alice, bob):
        service.update_document(
            private_document.id, alice.id,
            _fields(title="Private Notes", is_public=False, tags=["react"]),
        )
        tag_id = next(tag.id for tag in service.list_tags() if tag.name == "react")

        assert [doc.id for doc in service.tag_documents(tag_id, bob.id)] == [public_document.id]
        assert {doc.id for doc in service.tag_documents(tag_id, alice.id)} == {public_document.id, private_document.id}

    def test_tag_documents_unknown_tag(self, service):
        with pytest.raises(NotFound):
            service.tag_documents("missing")


class TestAccounts:
    """Tests for user operations through the service."""

    def test_resolve_user(self, service):
        user = service.resolve_user(schemas.AuthIdentity(id="id-1", user_name="dev"))
        assert user.username == "dev"

    def test_user_stats_unknown_user(self, service):
        with pytest.raises(NotFound):
            service.user_stats("missing")

    def test_user_stats_hide_private_documents_from_others(self, service, make_document, alice, bob):
        make_document(alice, title="Public")
        make_document(alice, title="Private", is_public=False)

        own = service.user_stats(alice.id, alice.id)
        seen_by_bob = service.user_stats(alice.id, bob.id)
        anonymous = service.user_stats(alice.id)

        assert (own.total_docs, own.private_docs) == (2, 1)
        assert (seen_by_bob.total_docs, seen_by_bob.private_docs) == (1, 0)
        assert anonymous == seen_by_bob

    def test_username_available_to_its_owner(self, service, alice, bob):
        assert service.is_username_available("alice", alice.id) is True
        assert service.is_username_available("alice", bob.id) is False
        assert service.is_username_available("alice") is False

    def test_update_profile(self, service, alice):
        user = service.update_profile(alice.id, schemas.ProfileUpdate(username="alice2", display_name="Alice"))

        assert user.username == "alice2"
        assert user.display_name == "Alice"

    def test_update_profile_requires_requester(self, service):
        with pytest.raises(Unauthenticated):
            service.update_profile(None, schemas.ProfileUpdate(display_name="x"))

    def test_update_profile_taken_username(self, service, alice, bob):
        with pytest.raises(Conflict):
            service.update_profile(bob.id, schemas.ProfileUpdate(username="alice"))

    def test_search_users_and_contributors(self, service, make_document, alice, bob):
        make_document(bob, title="Bob doc")

        assert [user.username for user in service.search_users("bo")] == ["bob"]
        assert [(c.username, c.doc_count) for c in service.top_contributors()] == [("bob", 1)]

    def test_delete_account(self, service, make_user):
        user = make_user("leaving")
        user_id = user.id

        assert service.delete_account(user_id) is True

        with pytest.raises(Unauthenticated):
            service.create_document(user_id, _fields())


class TestEvents:
    """Tests for event publishing."""

    def test_mutations_publish_events(self, service, events, alice, bob):
        document = service.create_document(alice.id, _fields(tags=["react"]))
        service.update_document(document.id, alice.id, _fields(title="Renamed"))
        service.toggle_star(document.id, bob.id)
        service.toggle_star(document.id, bob.id)
        service.toggle_visibility(document.id, alice.id)
        service.delete_document(document.id, alice.id)

        assert [event for event, _ in events] == [
            "document.created",
            "document.updated",
            "document.starred",
            "document.unstarred",
            "document.visibility_changed",
            "document.deleted",
        ]
        assert events[2][1] == {"document_id": document.id, "user_id": bob.id, "star_count": 1}

    def test_failed_mutation_publishes_nothing(self, service, events, public_document, bob):
        events.clear()
        with pytest.raises(PermissionDenied):
            service.delete_document(public_document.id, bob.id)
        assert events == []

    def test_reads_publish_nothing(self, service, events, public_document):
        events.clear()
        service.get_document(public_document.id)
        service.search(schemas.SearchParams())
        assert events == []

    def test_tag_and_account_events(self, service, events, alice):
        tag = service.find_or_create_tag("temp", alice.id)
        service.delete_tag(tag.id, alice.id)
        service.delete_account(alice.id)

        assert [event for event, _ in events] == ["tag.deleted", "user.deleted"]

    def test_profile_and_tag_update_events(self, service, events, alice):
        tag = service.find_or_create_tag("temp", alice.id)
        service.update_tag(tag.id, alice.id, schemas.TagUpdate(name="tempo"))
        service.update_profile(alice.id, schemas.ProfileUpdate(display_name="Alice"))

        assert events == [
            ("tag.updated", {"tag_id": tag.id, "user_id": alice.id, "tag_name": "tempo"}),
            ("user.updated", {"user_id": alice.id}),
        ]

    def test_publisher_failure_is_logged(self, db_session, alice, caplog):
        def broken_publisher(event, payload):
            raise RuntimeError("bus down")

        service = CatalogService(db_session, publisher=broken_publisher)

        with caplog.at_level(logging.WARNING, logger="catalog.service"):
            document = service.create_document(alice.id, _fields())

        assert document.id is not None
        assert "bus down" in caplog.text

    def test_without_publisher(self, db_session, alice):
        service = CatalogService(db_session)
        assert service.create_document(alice.id, _fields()).id is not None
