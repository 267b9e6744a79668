"""Channel ingestion adapter: polling cycles, push ingestion and scheduling.

:class:`ChannelSync` owns the only cross-cycle state of the pipeline, the
``getUpdates`` offset.  One cycle:

1. fetches updates after the offset (bounded by the client timeout),
2. normalizes them into :class:`~gallerysync.ingestion.items.ContentItem` records,
3. for each item, in received order, mirrors its media and admits it through
   the :class:`~gallerysync.core.dedup.Deduplicator`,
4. advances the offset past the batch.

The whole cycle runs under ``asyncio.wait_for``.  A transport failure or a
timeout ends the cycle without moving the offset, so the same updates are
fetched again next time and the deduplicator absorbs whatever was already
stored.  A single item whose media cannot be fetched is skipped with a
warning, and so is an item that fails in any other unexpected way.  A store
failure on an item keeps the offset in place so the batch is retried.

Cycles never overlap: a cycle requested while another is running is skipped,
not queued.

The offset lives in memory only.  After a restart it is unset, and Telegram
returns every update that was not confirmed yet (at-least-once delivery).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import asdict, dataclass
from typing import Any

from gallerysync.core.content_store import utc_now
from gallerysync.core.dedup import Deduplicator
from gallerysync.core.errors import MediaResolutionError, StoreError, TransportError
from gallerysync.ingestion.items import normalize_updates
from gallerysync.ingestion.media import MediaMirror
from gallerysync.ingestion.telegram import TelegramClient

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Outcome of one ingestion cycle or push.

    Attributes:
        skipped: Another cycle was running; nothing was done.
        updates: Raw updates received.
        items: Canonical items after normalization.
        ingested: New gallery items created.
        duplicates: Items that were already in the gallery.
        unresolved: Items skipped because their media could not be fetched or
            they failed unexpectedly.
        store_errors: Items that failed to persist.
        error: Cycle-level failure message.
        retry_after: Back-off requested by the channel, in seconds.
    """

    skipped: bool = False
    updates: int = 0
    items: int = 0
    ingested: int = 0
    duplicates: int = 0
    unresolved: int = 0
    store_errors: int = 0
    error: str | None = None
    retry_after: float | None = None

    @property
    def ok(self) -> bool:
        return not self.skipped and self.error is None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SyncStatus:
    last_cycle_at: str | None = None
    last_success_at: str | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    total_ingested: int = 0


class ChannelSync:
    """Pull or receive channel posts and publish them to the gallery.

    Args:
        client: Bot API client.
        dedup: Deduplicator writing to the content store.
        mirror: Media mirror resolving file references to public URLs.
        channel: Channel to accept posts from (``@username`` or chat id).
        default_artist: Artist name for posts without an author signature.
        cycle_timeout: Upper bound on one polling cycle, in seconds.
    """

    def __init__(
        self,
        client: TelegramClient,
        dedup: Deduplicator,
        mirror: MediaMirror,
        channel: str | None = None,
        default_artist: str = "Community Artist",
        cycle_timeout: float = 60.0,
    ):
        self._client = client
        self._dedup = dedup
        self._mirror = mirror
        self._channel = channel
        self._default_artist = default_artist
        self._cycle_timeout = cycle_timeout
        self._offset: int | None = None
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._status = SyncStatus()

    @property
    def offset(self) -> int | None:
        """Next ``getUpdates`` offset, or ``None`` before the first success."""
        return self._offset

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self) -> CycleResult:
        """Run one polling cycle unless one is already in progress."""
        if self._lock.locked():
            logger.info("Sync cycle already running; skipping this tick")
            return CycleResult(skipped=True)

        async with self._lock:
            self._status.last_cycle_at = utc_now()
            try:
                result = await asyncio.wait_for(self._poll_once(), timeout=self._cycle_timeout)
            except TransportError as e:
                return self._record_failure(str(e), retry_after=e.retry_after)
            except asyncio.TimeoutError:
                return self._record_failure(f"Sync cycle exceeded {self._cycle_timeout:g}s")
            except Exception as e:
                logger.exception("Unexpected error in sync cycle")
                return self._record_failure(f"Unexpected error: {e!r}")

            self._record_success(result)
            return result

    async def _poll_once(self) -> CycleResult:
        updates = await self._client.get_updates(offset=self._offset)
        result = await self.ingest_updates(updates)

        update_ids = [
            update["update_id"]
            for update in updates
            if isinstance(update, dict) and isinstance(update.get("update_id"), int)
        ]
        if update_ids and result.store_errors == 0:
            self._offset = max(update_ids) + 1
        elif result.store_errors:
            logger.warning(
                f"Keeping offset {self._offset} after {result.store_errors} store error(s); "
                "batch will be retried"
            )
        return result

    async def ingest_updates(self, updates: list[dict[str, Any]]) -> CycleResult:
        """Normalize and admit a batch of raw updates in received order.

        Used by polling cycles and by the push webhook.  Does not touch the
        offset.

        Raises:
            TransportError: The channel became unreachable mid-batch.
        """
        items = normalize_updates(updates, self._channel)
        result = CycleResult(updates=len(updates), items=len(items))

        for item in items:
            try:
                if await asyncio.to_thread(self._dedup.seen, item.external_id):
                    result.duplicates += 1
                    continue
                image_url = await self._mirror.resolve(item)
                admitted = await asyncio.to_thread(
                    self._dedup.admit_content, item, image_url, self._default_artist
                )
            except MediaResolutionError as e:
                logger.warning(f"Skipping item {item.external_id}: {e}")
                result.unresolved += 1
                continue
            except StoreError as e:
                logger.error(f"Could not store item {item.external_id}: {e}")
                result.store_errors += 1
                continue
            except TransportError:
                raise
            except Exception:
                logger.exception(f"Skipping item {item.external_id} after an unexpected error")
                result.unresolved += 1
                continue

            if admitted is None:
                result.duplicates += 1
            else:
                result.ingested += 1

        self._status.total_ingested += result.ingested
        return result

    def _record_success(self, result: CycleResult) -> None:
        self._status.last_success_at = self._status.last_cycle_at
        self._status.last_error = None
        self._status.consecutive_failures = 0
        logger.info(
            f"Sync cycle done: {result.updates} update(s), {result.ingested} new, "
            f"{result.duplicates} duplicate(s), {result.unresolved} unresolved; "
            f"offset={self._offset}"
        )

    def _record_failure(self, message: str, retry_after: float | None = None) -> CycleResult:
        self._status.last_error = message
        self._status.consecutive_failures += 1
        logger.warning(
            f"Sync cycle failed ({self._status.consecutive_failures} in a row), "
            f"offset stays at {self._offset}: {message}"
        )
        return CycleResult(error=message, retry_after=retry_after)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self, interval: float) -> None:
        """Start the periodic polling task on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run_periodically(interval), name="channel-sync")
        logger.info(f"Channel sync scheduled every {interval:g}s")

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Channel sync stopped")

    async def _run_periodically(self, interval: float) -> None:
        while True:
            delay = interval
            try:
                result = await self.run_cycle()
                if result.retry_after:
                    delay = max(interval, float(result.retry_after))
            except Exception:
                # Keeps one broken cycle from ending the schedule.
                logger.exception("Unexpected error in sync cycle")
            await asyncio.sleep(delay)

    def status(self) -> dict[str, Any]:
        """Snapshot for the status and health endpoints."""
        return {
            "enabled": True,
            "channel": self._channel,
            "offset": self._offset,
            "running": self.running,
            "scheduled": self._task is not None and not self._task.done(),
            **asdict(self._status),
        }
