"""Canonical content items and normalization of raw channel updates.

The channel delivers images in three shapes:

- a post with a ``photo`` (several sizes of the same picture),
- a post with a ``document`` whose ``mime_type`` is ``image/*``,
- a media group: several posts sharing ``media_group_id``, where usually only
  one of them carries the caption.

:func:`normalize_updates` turns any mix of these into a flat list of
:class:`ContentItem` records, one per image, in received order.  Everything
downstream (media resolution, deduplication, storage) works on
:class:`ContentItem` only and never looks at the raw payload again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    """Which payload shape an item was normalized from."""

    PHOTO = "photo"
    DOCUMENT = "document"


@dataclass(frozen=True)
class ContentItem:
    """One ingested image, independent of the payload shape it came from.

    Attributes:
        external_id: Channel-assigned message id, stored verbatim.
        file_id: Bot API file reference used to resolve the media.
        file_unique_id: Stable file identifier (same file, same value).
        kind: Payload shape tag.
        caption: Post caption; for media groups, the group's caption.
        received_at: Post date (UTC).
        author: Channel author signature, when the channel signs posts.
        media_group_id: Album identifier for media-group images.
        mime_type: Declared media type (documents only).
        file_name: Original file name (documents only).
    """

    external_id: str
    file_id: str
    file_unique_id: str
    kind: MediaKind
    caption: str | None
    received_at: datetime
    author: str | None = None
    media_group_id: str | None = None
    mime_type: str | None = None
    file_name: str | None = None


def _post_of(update: dict[str, Any]) -> dict[str, Any] | None:
    return update.get("channel_post") or update.get("message")


def chat_matches(chat: dict[str, Any], channel: str | None) -> bool:
    """Whether ``chat`` is the configured channel (``@username`` or numeric id)."""
    if not channel:
        return True
    if channel.startswith("@"):
        username = chat.get("username") or ""
        return username.lower() == channel[1:].lower()
    return str(chat.get("id")) == channel


def _largest_photo(sizes: list[dict[str, Any]]) -> dict[str, Any] | None:
    if not sizes:
        return None
    return max(
        sizes,
        key=lambda size: (size.get("width", 0) * size.get("height", 0), size.get("file_size", 0)),
    )


def normalize_post(post: dict[str, Any]) -> ContentItem | None:
    """Normalize one channel post, or return ``None`` if it holds no image."""
    media_file: dict[str, Any] | None = None
    kind: MediaKind | None = None
    mime_type = None
    file_name = None

    if post.get("photo"):
        media_file = _largest_photo(post["photo"])
        kind = MediaKind.PHOTO
    elif post.get("document"):
        document = post["document"]
        mime_type = document.get("mime_type") or ""
        if mime_type.startswith("image/"):
            media_file = document
            kind = MediaKind.DOCUMENT
            file_name = document.get("file_name")

    if media_file is None or kind is None:
        return None

    if "message_id" not in post or not media_file.get("file_id"):
        logger.warning(f"Skipping malformed post: {post.get('message_id')!r}")
        return None

    date = post.get("date")
    received_at = (
        datetime.fromtimestamp(date, tz=timezone.utc) if date else datetime.now(timezone.utc)
    )

    return ContentItem(
        external_id=str(post["message_id"]),
        file_id=media_file["file_id"],
        file_unique_id=media_file.get("file_unique_id") or media_file["file_id"],
        kind=kind,
        caption=(post.get("caption") or "").strip() or None,
        received_at=received_at,
        author=post.get("author_signature"),
        media_group_id=post.get("media_group_id"),
        mime_type=mime_type,
        file_name=file_name,
    )


def _update_id(update: Any) -> Any:
    return update.get("update_id") if isinstance(update, dict) else None


def _normalize_update(update: dict[str, Any], channel: str | None) -> ContentItem | None:
    post = _post_of(update)
    if post is None:
        return None
    if not chat_matches(post.get("chat") or {}, channel):
        logger.debug(f"Ignoring update {update.get('update_id')} from another chat")
        return None
    return normalize_post(post)


def normalize_updates(
    updates: list[dict[str, Any]],
    channel: str | None = None,
) -> list[ContentItem]:
    """Turn a batch of raw updates into canonical content items.

    Args:
        updates: Raw ``Update`` objects in received order.
        channel: Only accept posts from this channel (``@username`` or id).

    Returns:
        One item per image, in received order.  Images of a media group share
        the first non-empty caption found for that group in this batch.
        Malformed updates are logged and left out.
    """
    items: list[ContentItem] = []
    for update in updates:
        try:
            item = _normalize_update(update, channel)
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            logger.warning(f"Skipping malformed update {_update_id(update)!r}: {e!r}")
            continue
        if item is not None:
            items.append(item)

    group_captions: dict[str, str] = {}
    for item in items:
        if item.media_group_id and item.caption:
            group_captions.setdefault(item.media_group_id, item.caption)

    return [
        replace(item, caption=group_captions[item.media_group_id])
        if item.media_group_id in group_captions
        else item
        for item in items
    ]
