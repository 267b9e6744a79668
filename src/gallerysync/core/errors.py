"""Error taxonomy shared by the store, moderation, ingestion and API layers.

The HTTP boundary in :mod:`gallerysync.api.main` maps these to status codes:

==========================  ===========
Exception                   HTTP status
==========================  ===========
:class:`ValidationError`    400
:class:`NotFoundError`      404
:class:`InvalidStateError`  409
:class:`StoreError`         500
==========================  ===========

:class:`DuplicateKeyError` is consumed by the deduplicator, and
:class:`TransportError` and :class:`MediaResolutionError` by the ingestion
cycle; none of them reaches a caller.
"""

from __future__ import annotations


class GallerySyncError(Exception):
    """Base class for all gallerysync errors."""


class ValidationError(GallerySyncError):
    """Caller input was rejected (missing field, bad file, ...)."""


class NotFoundError(GallerySyncError):
    """A record with the requested identifier does not exist."""


class InvalidStateError(GallerySyncError):
    """A moderation transition was attempted from a non-pending state."""


class StoreError(GallerySyncError):
    """The persistence layer failed."""


class DuplicateKeyError(StoreError):
    """A write collided with the unique external identifier constraint."""

    def __init__(self, external_id: str):
        super().__init__(f"Duplicate external identifier: {external_id}")
        self.external_id = external_id


class TransportError(GallerySyncError):
    """The external channel was unreachable, rate limited or answered garbage.

    Attributes:
        retry_after: Seconds the channel asked us to wait, when it said so.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class MediaResolutionError(GallerySyncError):
    """One item's media could not be turned into a fetchable URL.

    Unlike :class:`TransportError` this is specific to the item (file too
    large, file gone) and the item is skipped rather than retried.
    """
