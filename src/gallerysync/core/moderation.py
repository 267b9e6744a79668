"""Moderation state machine for locally submitted artwork.

A submission starts ``pending`` and moves exactly once, to ``approved`` or
``rejected``.  The transition is a compare-and-set on the submission row
(``UPDATE ... WHERE status = 'pending'``), so two concurrent moderators can
never both win.

Approval and the creation of the submission's gallery items happen in the
same store transaction: either the submission is approved *and* visible, or
neither change is kept.
"""

from __future__ import annotations

import logging
from typing import Any

from gallerysync.core.content_store import (
    Collection,
    ContentStore,
    Origin,
    SubmissionStatus,
    utc_now,
)
from gallerysync.core.errors import DuplicateKeyError, InvalidStateError, ValidationError

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    """Strip optional text, mapping blanks to ``None``."""
    if value is None:
        return None
    value = value.strip()
    return value or None


class ModerationService:
    """Submit, approve and reject artwork submissions.

    Args:
        store: Content store holding submissions and gallery items.
        public_base_url: Base URL used to build absolute links to stored files.
        uploads_route: URL path under which stored files are served.
    """

    def __init__(
        self,
        store: ContentStore,
        public_base_url: str,
        uploads_route: str = "/uploads",
    ):
        self._store = store
        self._public_base_url = public_base_url.rstrip("/")
        self._uploads_route = "/" + uploads_route.strip("/")

    def file_url(self, filename: str) -> str:
        """Absolute URL of a stored submission file."""
        return f"{self._public_base_url}{self._uploads_route}/{filename}"

    def submit(
        self,
        artist_name: str | None,
        files: list[dict],
        artist_social: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        """Record a new pending submission.

        Args:
            artist_name: Display name of the artist; required.
            files: Stored file references from :func:`~gallerysync.core.uploads.save_uploads`.
            artist_social: Optional social handle.
            description: Optional artwork description.

        Returns:
            The stored submission record.

        Raises:
            ValidationError: Empty artist name or no files.
        """
        name = _clean(artist_name)
        if not name:
            raise ValidationError("artist_name is required")
        if not files:
            raise ValidationError("At least one image is required")

        record = {
            "artist_name": name,
            "artist_social": _clean(artist_social),
            "description": _clean(description),
            "files": files,
            "created_at": utc_now(),
            "status": SubmissionStatus.PENDING.value,
        }
        submission_id = self._store.put(Collection.SUBMISSIONS, record)
        logger.info(f"Submission {submission_id} from {name!r} received ({len(files)} file(s))")
        return self._store.get(Collection.SUBMISSIONS, submission_id)

    def pending(self) -> list[dict[str, Any]]:
        """Pending submissions, newest first, with resolved image URLs."""
        rows = self._store.find(Collection.SUBMISSIONS, status=SubmissionStatus.PENDING.value)
        rows.sort(key=lambda row: row["id"], reverse=True)
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [self._with_urls(row) for row in rows]

    def approve(
        self,
        submission_id: int,
        external_reference: str | None = None,
        image_url: str | None = None,
    ) -> dict[str, Any]:
        """Approve a pending submission and publish its images.

        One gallery item is created per stored file.  ``external_reference``
        and ``image_url`` describe a single channel post, so they apply to the
        first image only; the remaining images are purely local.

        Args:
            submission_id: Submission to approve.
            external_reference: Optional channel identifier of the same artwork.
            image_url: Optional image URL replacing the first stored file's URL.

        Returns:
            Dictionary with the updated ``submission`` and created ``items``.

        Raises:
            NotFoundError: Unknown submission.
            InvalidStateError: The submission is not pending.
            ValidationError: ``external_reference`` is already in the gallery.
            StoreError: Persistence failed; nothing was changed.
        """
        external_reference = _clean(external_reference)
        image_url = _clean(image_url)
        now = utc_now()

        with self._store.atomic() as tx:
            submission = tx.update(
                Collection.SUBMISSIONS,
                submission_id,
                {"status": SubmissionStatus.APPROVED.value, "reviewed_at": now},
                only_if={"status": SubmissionStatus.PENDING.value},
            )
            if submission is None:
                current = tx.get(Collection.SUBMISSIONS, submission_id)
                raise InvalidStateError(
                    f"Submission {submission_id} is already {current['status']}"
                )

            items = []
            for index, file_ref in enumerate(submission["files"]):
                first = index == 0
                record = {
                    "image_url": image_url
                    if first and image_url
                    else self.file_url(file_ref["filename"]),
                    "artist_name": submission["artist_name"],
                    "artist_social": submission["artist_social"],
                    "description": submission["description"],
                    "display_at": now,
                    "origin": Origin.LOCAL.value,
                    "external_id": external_reference if first else None,
                    "submission_id": submission_id,
                    "created_at": now,
                }
                try:
                    item_id = tx.put(Collection.GALLERY, record)
                except DuplicateKeyError as e:
                    raise ValidationError(
                        f"External reference {external_reference!r} is already in the gallery"
                    ) from e
                items.append({"id": item_id, **record})

        logger.info(f"Submission {submission_id} approved ({len(items)} gallery item(s))")
        return {"submission": submission, "items": items}

    def reject(self, submission_id: int) -> dict[str, Any]:
        """Reject a pending submission.

        Raises:
            NotFoundError: Unknown submission.
            InvalidStateError: The submission is not pending.
        """
        with self._store.atomic() as tx:
            submission = tx.update(
                Collection.SUBMISSIONS,
                submission_id,
                {"status": SubmissionStatus.REJECTED.value, "reviewed_at": utc_now()},
                only_if={"status": SubmissionStatus.PENDING.value},
            )
            if submission is None:
                current = tx.get(Collection.SUBMISSIONS, submission_id)
                raise InvalidStateError(
                    f"Submission {submission_id} is already {current['status']}"
                )

        logger.info(f"Submission {submission_id} rejected")
        return submission

    def _with_urls(self, submission: dict[str, Any]) -> dict[str, Any]:
        urls = [self.file_url(file_ref["filename"]) for file_ref in submission["files"]]
        return {**submission, "image_url": urls[0] if urls else None, "image_urls": urls}
