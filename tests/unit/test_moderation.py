"""Tests for gallerysync.core.moderation — the submission state machine.

Tests cover:
- ``submit`` validation and the initial ``pending`` state.
- Legal transitions (pending → approved, pending → rejected).
- Illegal transitions raising InvalidStateError, incl. repeated actions.
- Atomic approval: gallery items exist iff the submission is approved.
- Pending listing with resolved URLs.
"""

from __future__ import annotations

import sqlite3
from contextlib import closing

import pytest

from gallerysync.core.content_store import Collection, ContentStore, utc_now
from gallerysync.core.errors import InvalidStateError, NotFoundError, StoreError, ValidationError
from gallerysync.core.moderation import ModerationService


class TestSubmit:
    def test_submit_creates_pending(self, moderation: ModerationService, sample_file_refs):
        submission = moderation.submit("Ada", sample_file_refs, artist_social="@ada", description="Bongo")
        assert submission["status"] == "pending"
        assert submission["artist_name"] == "Ada"
        assert submission["artist_social"] == "@ada"
        assert submission["files"] == sample_file_refs
        assert submission["reviewed_at"] is None

    def test_submit_strips_and_blanks_optional_fields(self, moderation: ModerationService, sample_file_refs):
        submission = moderation.submit("  Ada  ", sample_file_refs, artist_social="  ", description="")
        assert submission["artist_name"] == "Ada"
        assert submission["artist_social"] is None
        assert submission["description"] is None

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_submit_requires_artist_name(self, moderation: ModerationService, store: ContentStore, sample_file_refs, name):
        with pytest.raises(ValidationError, match="artist_name"):
            moderation.submit(name, sample_file_refs)
        assert store.find(Collection.SUBMISSIONS) == []

    def test_submit_requires_files(self, moderation: ModerationService, store: ContentStore):
        with pytest.raises(ValidationError):
            moderation.submit("Ada", [])
        assert store.find(Collection.SUBMISSIONS) == []


class TestApprove:
    def test_approve_sets_status_and_creates_items(self, moderation: ModerationService, store: ContentStore, sample_file_refs):
        sub = moderation.submit("Ada", sample_file_refs)
        result = moderation.approve(sub["id"])

        assert result["submission"]["status"] == "approved"
        assert result["submission"]["reviewed_at"] is not None
        items = store.find(Collection.GALLERY, submission_id=sub["id"])
        assert len(items) == 2
        assert {item["origin"] for item in items} == {"local"}
        assert items[0]["image_url"] == "http://testserver/uploads/a1.jpg"
        assert all(item["external_id"] is None for item in items)

    def test_external_reference_attaches_to_first_image(self, moderation: ModerationService, sample_file_refs):
        sub = moderation.submit("Ada", sample_file_refs)
        items = moderation.approve(sub["id"], external_reference="msg-42", image_url="https://t.me/c/42")["items"]
        assert items[0]["external_id"] == "msg-42"
        assert items[0]["image_url"] == "https://t.me/c/42"
        assert items[1]["external_id"] is None
        assert items[1]["image_url"].endswith("/uploads/b2.png")

    def test_approve_twice_is_invalid(self, moderation: ModerationService, store: ContentStore, sample_file_refs):
        sub = moderation.submit("Ada", sample_file_refs)
        moderation.approve(sub["id"])
        with pytest.raises(InvalidStateError, match="already approved"):
            moderation.approve(sub["id"])
        assert len(store.find(Collection.GALLERY)) == 2

    def test_approve_rejected_is_invalid(self, moderation: ModerationService, sample_file_refs):
        sub = moderation.submit("Ada", sample_file_refs)
        moderation.reject(sub["id"])
        with pytest.raises(InvalidStateError):
            moderation.approve(sub["id"])

    def test_approve_unknown(self, moderation: ModerationService):
        with pytest.raises(NotFoundError):
            moderation.approve(12345)

    def test_duplicate_external_reference_rolls_back(self, moderation: ModerationService, store: ContentStore, sample_file_refs):
        store.put(
            Collection.GALLERY,
            {
                "image_url": "https://example.org/a.jpg",
                "artist_name": "Channel",
                "display_at": utc_now(),
                "origin": "external",
                "external_id": "msg-42",
                "created_at": utc_now(),
            },
        )
        sub = moderation.submit("Ada", sample_file_refs)

        with pytest.raises(ValidationError, match="msg-42"):
            moderation.approve(sub["id"], external_reference="msg-42")

        assert store.get(Collection.SUBMISSIONS, sub["id"])["status"] == "pending"
        assert store.find(Collection.GALLERY, submission_id=sub["id"]) == []

    def test_store_failure_mid_approval_rolls_back(
        self, moderation: ModerationService, store: ContentStore, sample_file_refs
    ):
        # The second local gallery insert fails with a non-unique constraint error.
        with closing(sqlite3.connect(store.db_path)) as conn:
            conn.execute(
                "CREATE TRIGGER fail_second_local_item BEFORE INSERT ON gallery_items "
                "WHEN NEW.origin = 'local' "
                "AND (SELECT COUNT(*) FROM gallery_items WHERE origin = 'local') >= 1 "
                "BEGIN SELECT RAISE(ABORT, 'simulated write failure'); END"
            )
            conn.commit()
        sub = moderation.submit("Ada", sample_file_refs)

        with pytest.raises(StoreError):
            moderation.approve(sub["id"])

        assert store.get(Collection.SUBMISSIONS, sub["id"])["status"] == "pending"
        assert store.find(Collection.GALLERY) == []


class TestReject:
    def test_reject_sets_status_without_items(self, moderation: ModerationService, store: ContentStore, sample_file_refs):
        sub = moderation.submit("Ada", sample_file_refs)
        rejected = moderation.reject(sub["id"])
        assert rejected["status"] == "rejected"
        assert store.find(Collection.GALLERY) == []

    def test_reject_twice_is_invalid(self, moderation: ModerationService, sample_file_refs):
        sub = moderation.submit("Ada", sample_file_refs)
        moderation.reject(sub["id"])
        with pytest.raises(InvalidStateError, match="already rejected"):
            moderation.reject(sub["id"])

    def test_reject_approved_is_invalid(self, moderation: ModerationService, sample_file_refs):
        sub = moderation.submit("Ada", sample_file_refs)
        moderation.approve(sub["id"])
        with pytest.raises(InvalidStateError):
            moderation.reject(sub["id"])

    def test_reject_unknown(self, moderation: ModerationService):
        with pytest.raises(NotFoundError):
            moderation.reject(777)


class TestPending:
    def test_only_pending_newest_first(self, moderation: ModerationService, sample_file_refs):
        first = moderation.submit("Ada", sample_file_refs)
        second = moderation.submit("Grace", sample_file_refs)
        third = moderation.submit("Linus", sample_file_refs)
        moderation.reject(second["id"])

        pending = moderation.pending()
        assert [row["id"] for row in pending] == [third["id"], first["id"]]

    def test_pending_includes_urls(self, moderation: ModerationService, sample_file_refs):
        moderation.submit("Ada", sample_file_refs)
        row = moderation.pending()[0]
        assert row["image_url"] == "http://testserver/uploads/a1.jpg"
        assert row["image_urls"] == [
            "http://testserver/uploads/a1.jpg",
            "http://testserver/uploads/b2.png",
        ]
