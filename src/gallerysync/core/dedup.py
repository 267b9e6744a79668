"""Idempotent admission of external items into the gallery.

The deduplicator never keeps a "seen" set of its own.  It inserts the gallery
record and lets the store's UNIQUE constraint on ``external_id`` decide; a
:class:`~gallerysync.core.errors.DuplicateKeyError` simply means the item is
already published.  This keeps ingestion correct under at-least-once
delivery, overlapping cycles and process restarts.
"""

from __future__ import annotations

import logging
from typing import Any

from gallerysync.core.content_store import (
    Collection,
    ContentStore,
    Origin,
    Transaction,
    to_timestamp,
    utc_now,
)
from gallerysync.core.errors import DuplicateKeyError, ValidationError
from gallerysync.ingestion.items import ContentItem

logger = logging.getLogger(__name__)


class Deduplicator:
    """Admit external-origin gallery items at most once per external identifier."""

    def __init__(self, store: ContentStore):
        self._store = store

    def seen(self, external_id: str) -> bool:
        """Whether an item with this identifier is already stored.

        Only a hint for skipping expensive work (e.g. media downloads); the
        insert in :meth:`admit` is what enforces uniqueness.
        """
        return self._store.exists(Collection.GALLERY, external_id=external_id)

    def admit(self, record: dict[str, Any]) -> dict[str, Any] | None:
        """Insert a gallery record keyed by its ``external_id``.

        Returns:
            The stored record with its id, or ``None`` if the identifier was
            already present.

        Raises:
            ValueError: The record has no ``external_id``.
            StoreError: Persistence failed for another reason.
        """
        external_id = record.get("external_id")
        if not external_id:
            raise ValueError("External gallery records need an external_id")

        try:
            item_id = self._store.put(Collection.GALLERY, record)
        except DuplicateKeyError:
            logger.debug(f"Skipping already ingested item {external_id}")
            return None

        logger.info(f"Ingested external item {external_id} as gallery item {item_id}")
        return {"id": item_id, **record}

    def admit_content(
        self,
        item: ContentItem,
        image_url: str,
        default_artist: str,
    ) -> dict[str, Any] | None:
        """Admit a canonical content item whose media resolved to ``image_url``.

        Images of one media group may arrive in separate batches or webhook
        pushes.  The group caption is the first caption stored for the group:
        an image arriving without (or with a later) caption takes it over, and
        the first captioned image backfills its uncaptioned siblings.  The
        lookup, backfill and insert share one transaction.
        """
        record = {
            "image_url": image_url,
            "artist_name": item.author or default_artist,
            "artist_social": None,
            "description": item.caption,
            "display_at": to_timestamp(item.received_at),
            "origin": Origin.EXTERNAL.value,
            "external_id": item.external_id,
            "submission_id": None,
            "media_group_id": item.media_group_id,
            "created_at": utc_now(),
        }
        if not item.media_group_id:
            return self.admit(record)

        try:
            with self._store.atomic(immediate=True) as tx:
                record["description"] = self._group_caption(tx, item)
                item_id = tx.put(Collection.GALLERY, record)
        except DuplicateKeyError:
            logger.debug(f"Skipping already ingested item {item.external_id}")
            return None

        logger.info(f"Ingested external item {item.external_id} as gallery item {item_id}")
        return {"id": item_id, **record}

    def _group_caption(self, tx: Transaction, item: ContentItem) -> str | None:
        siblings = tx.find(Collection.GALLERY, media_group_id=item.media_group_id)
        for sibling in siblings:
            if sibling["description"]:
                return sibling["description"]

        if item.caption:
            for sibling in siblings:
                tx.update(Collection.GALLERY, sibling["id"], {"description": item.caption})
            if siblings:
                logger.debug(
                    f"Backfilled caption of media group {item.media_group_id} "
                    f"on {len(siblings)} item(s)"
                )
        return item.caption

    def admit_manual(
        self,
        external_id: str | None,
        image_url: str | None,
        artist_name: str | None,
        artist_social: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any] | None:
        """Admit an item an admin copied from the channel by hand.

        Raises:
            ValidationError: A required field is missing.
        """
        external_id = (external_id or "").strip()
        image_url = (image_url or "").strip()
        artist_name = (artist_name or "").strip()
        missing = [
            name
            for name, value in (
                ("telegram_message_id", external_id),
                ("image_url", image_url),
                ("artist_name", artist_name),
            )
            if not value
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        now = utc_now()
        return self.admit(
            {
                "image_url": image_url,
                "artist_name": artist_name,
                "artist_social": (artist_social or "").strip() or None,
                "description": (description or "").strip() or None,
                "display_at": now,
                "origin": Origin.EXTERNAL.value,
                "external_id": external_id,
                "submission_id": None,
                "created_at": now,
            }
        )
