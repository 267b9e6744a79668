"""Gallery aggregation for the gallerysync API.

The public feed is the union of

- external-origin items ingested from the channel, and
- local-origin items belonging to approved submissions,

ordered newest first by display timestamp.  Items sharing a timestamp (the
images of one media group or one approved submission) keep their insertion
order, so albums read in the order they were posted.

Everything here is a pure read of the content store.
"""

from __future__ import annotations

from datetime import datetime

from gallerysync.core.content_store import Collection, ContentStore, Origin, SubmissionStatus


def filter_gallery_items(items: list[dict], *, origin: str | None = None) -> list[dict]:
    """Apply the origin filter to gallery items.

    Args:
        items: Source gallery items.
        origin: ``"external"``, ``"local"`` or ``None`` for both.

    Returns:
        Filtered gallery items in their original order.
    """
    if origin:
        return [item for item in items if item.get("origin") == origin]
    return items


def sort_gallery_items(items: list[dict]) -> list[dict]:
    """Order items by ``display_at`` descending, ties by id ascending.

    Python's sort is stable (also with ``reverse=True``), so sorting by id
    first and by timestamp second yields the tie order.
    """
    ordered = sorted(items, key=lambda item: item["id"])
    return sorted(ordered, key=lambda item: datetime.fromisoformat(item["display_at"]), reverse=True)


class GalleryAggregator:
    """Read-only view merging both gallery origins."""

    def __init__(self, store: ContentStore):
        self._store = store

    def feed(self, origin: str | None = None) -> list[dict]:
        """Return the merged, ordered gallery.

        Local items are only included while their submission is approved.
        """
        items = self._store.find(Collection.GALLERY)
        approved = {
            row["id"]
            for row in self._store.find(
                Collection.SUBMISSIONS, status=SubmissionStatus.APPROVED.value
            )
        }
        visible = [
            item
            for item in items
            if item["origin"] == Origin.EXTERNAL.value or item["submission_id"] in approved
        ]
        return sort_gallery_items(filter_gallery_items(visible, origin=origin))

    def stats(self) -> dict:
        """Return gallery statistics.

        Returns:
            Dictionary with ``total_items``, ``origin_counts`` (origin → count)
            and ``submission_counts`` (status → count).
        """
        feed = self.feed()
        origin_counts = {origin.value: 0 for origin in Origin}
        for item in feed:
            origin_counts[item["origin"]] += 1

        submission_counts = {status.value: 0 for status in SubmissionStatus}
        for row in self._store.find(Collection.SUBMISSIONS):
            submission_counts[row["status"]] += 1

        return {
            "total_items": len(feed),
            "origin_counts": origin_counts,
            "submission_counts": submission_counts,
        }
