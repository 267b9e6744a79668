"""Pydantic request models for the gallerysync API.

These models define the JSON schema of the admin endpoints.  FastAPI uses
them for request validation and OpenAPI documentation.  Field names follow
the admin panel's existing form names (``telegram_message_id`` etc.).

Models
------
ApproveRequest
    Optional body of ``POST /api/admin/approve/{id}``.
ManualSyncRequest
    Body of ``POST /api/admin/add-from-telegram``.
QuickAddRequest
    Body of ``POST /api/admin/quick-telegram-add``.
"""

from __future__ import annotations

from urllib.parse import urlsplit

from pydantic import BaseModel, Field


class ApproveRequest(BaseModel):
    """Request body for ``POST /api/admin/approve/{id}``.

    Attributes:
        telegram_message_id: Channel message id of the same artwork, when the
            admin also posted it to the channel.  Attached to the first image.
        image_url: URL replacing the first image's local URL.
    """

    telegram_message_id: str | None = Field(
        default=None,
        description="External identifier recorded with the first gallery item.",
    )
    image_url: str | None = Field(
        default=None,
        description="Image URL overriding the first stored file's URL.",
    )


class ManualSyncRequest(BaseModel):
    """Request body for ``POST /api/admin/add-from-telegram``."""

    telegram_message_id: str = Field(
        ...,
        description="Channel message id; the deduplication key.",
    )
    image_url: str = Field(
        ...,
        description="Publicly fetchable image URL.",
    )
    artist_name: str = Field(
        ...,
        description="Display name of the artist.",
    )
    artist_social: str | None = Field(default=None)
    art_description: str | None = Field(default=None)


class QuickAddRequest(BaseModel):
    """Request body for ``POST /api/admin/quick-telegram-add``.

    Attributes:
        telegram_url: Public post link, e.g. ``https://t.me/channel/42``.
    """

    telegram_url: str = Field(
        ...,
        min_length=1,
        description="Public link of the channel post.",
    )

    @property
    def message_id(self) -> str:
        """Last path segment of the post link (query string ignored)."""
        path = urlsplit(self.telegram_url.strip()).path
        return path.rstrip("/").rsplit("/", 1)[-1]
