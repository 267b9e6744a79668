"""Resolution of channel media references to public URLs.

Bot API download URLs embed the bot token and expire, so they cannot be
shown to visitors.  The mirror downloads each image once into the media
directory, named after the file's ``file_unique_id``, and hands out a URL
under the application's own ``/media`` route instead.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from pathlib import Path

from gallerysync.core.errors import MediaResolutionError
from gallerysync.ingestion.items import ContentItem, MediaKind
from gallerysync.ingestion.telegram import TelegramApiError, TelegramClient

logger = logging.getLogger(__name__)

# API answers that describe the file itself rather than the connection.
_ITEM_ERROR_CODES = {400, 403, 404, 413}


def media_filename(item: ContentItem) -> str:
    """Stable local file name for an item's media."""
    suffix = ""
    if item.kind is MediaKind.PHOTO:
        suffix = ".jpg"
    elif item.file_name and Path(item.file_name).suffix:
        suffix = Path(item.file_name).suffix.lower()
    elif item.mime_type:
        suffix = mimetypes.guess_extension(item.mime_type) or ""
    return f"{item.file_unique_id}{suffix}"


class MediaMirror:
    """Download channel media into ``media_dir`` and return public URLs.

    Args:
        client: Bot API client.
        media_dir: Directory served under ``route``.
        public_base_url: Base URL of this application.
        max_bytes: Largest file that will be mirrored.
        route: URL path the media directory is mounted at.
    """

    def __init__(
        self,
        client: TelegramClient,
        media_dir: Path,
        public_base_url: str,
        max_bytes: int,
        route: str = "/media",
    ):
        self._client = client
        self._media_dir = Path(media_dir)
        self._public_base_url = public_base_url.rstrip("/")
        self._route = "/" + route.strip("/")
        self._max_bytes = max_bytes

    def url_for(self, filename: str) -> str:
        return f"{self._public_base_url}{self._route}/{filename}"

    async def resolve(self, item: ContentItem) -> str:
        """Return a public URL for the item's image, downloading it if needed.

        Raises:
            MediaResolutionError: The file cannot be fetched (too big, gone).
            TransportError: The channel is unreachable; retry the cycle.
        """
        filename = media_filename(item)
        target = self._media_dir / filename
        if target.exists():
            return self.url_for(filename)

        try:
            file_info = await self._client.get_file(item.file_id)
            file_path = file_info.get("file_path")
            if not file_path:
                raise MediaResolutionError(f"No file_path for item {item.external_id}")
            data = await self._client.download(file_path, self._max_bytes)
        except TelegramApiError as e:
            if e.error_code in _ITEM_ERROR_CODES:
                raise MediaResolutionError(
                    f"Cannot fetch media for item {item.external_id}: {e}"
                ) from e
            raise

        await asyncio.to_thread(self._write, target, data)
        logger.debug(f"Mirrored media for item {item.external_id} to {target}")
        return self.url_for(filename)

    def _write(self, target: Path, data: bytes) -> None:
        self._media_dir.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(f"{target.name}.{uuid.uuid4().hex}.part")
        try:
            partial.write_bytes(data)
            partial.replace(target)
        except OSError:
            partial.unlink(missing_ok=True)
            raise
