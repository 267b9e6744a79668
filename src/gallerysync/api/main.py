"""gallerysync — FastAPI application.

This module builds the FastAPI application, declares every REST route and
provides the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Content store** (:mod:`gallerysync.core.content_store`) is a SQLite file;
  it is the only component that writes persistent state.
- **Moderation** (:mod:`gallerysync.core.moderation`) drives submissions
  through ``pending → approved | rejected``.
- **Channel sync** (:mod:`gallerysync.ingestion.sync`) polls the Telegram
  channel on a timer (or receives webhook pushes) and admits new posts
  through the deduplicator.  It only exists when a bot token is configured.
- **Gallery** (:mod:`gallerysync.core.gallery`) merges both origins into the
  public feed on every read.
- **Static files**: submitted artwork is served at ``/uploads`` and mirrored
  channel media at ``/media``.

All services are created by :func:`create_app` from an explicit
:class:`~gallerysync.core.config.GallerySyncConfig` and live on ``app.state``;
there are no module-level service instances.

Endpoints
---------
========  ==================================  ===================================
Method    Path                                Purpose
========  ==================================  ===================================
POST      ``/api/submit-art``                 Submit artwork (multipart)
GET       ``/api/gallery``                    Merged public gallery feed
GET       ``/api/stats``                      Gallery statistics
GET       ``/api/admin/submissions``          Pending submissions
POST      ``/api/admin/approve/{id}``         Approve a submission
POST      ``/api/admin/reject/{id}``          Reject a submission
POST      ``/api/admin/add-from-telegram``    Add a channel post by hand
POST      ``/api/admin/quick-telegram-add``   Add a channel post by link
POST      ``/api/admin/telegram-sync``        Run one sync cycle now
GET       ``/api/admin/telegram-status``      Channel sync status
POST      ``/api/telegram/webhook``           Push ingestion of one update
GET       ``/api/health``                     Liveness check
========  ==================================  ===================================

Error responses always have the shape ``{"error": "..."}``.

Usage
-----
CLI (installed entry point)::

    gallerysync

Direct invocation::

    python -m gallerysync.api.main
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from gallerysync import __version__
from gallerysync.api.models import ApproveRequest, ManualSyncRequest, QuickAddRequest
from gallerysync.core.config import GallerySyncConfig
from gallerysync.core.content_store import ContentStore, Origin, utc_now
from gallerysync.core.dedup import Deduplicator
from gallerysync.core.errors import (
    GallerySyncError,
    InvalidStateError,
    NotFoundError,
    StoreError,
    TransportError,
    ValidationError,
)
from gallerysync.core.gallery import GalleryAggregator
from gallerysync.core.moderation import ModerationService
from gallerysync.core.uploads import IncomingFile, discard_uploads, save_uploads
from gallerysync.ingestion.media import MediaMirror
from gallerysync.ingestion.sync import ChannelSync
from gallerysync.ingestion.telegram import TelegramClient

logger = logging.getLogger(__name__)

QUICK_ADD_ARTIST = "Telegram Community"
QUICK_ADD_DESCRIPTION = "Art from Telegram channel"

_ERROR_STATUS: dict[type[GallerySyncError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
}

router = APIRouter()


# ---------------------------------------------------------------------------
# Application lifecycle: channel sync scheduling.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the periodic channel sync on startup and stop it on shutdown.

    Nothing is scheduled when sync is disabled (no bot token) or when
    ``auto_sync`` is off; the admin trigger and webhook still work in the
    latter case.
    """
    cfg: GallerySyncConfig = app.state.config
    sync: ChannelSync | None = app.state.sync

    if sync is not None and cfg.auto_sync:
        sync.start(cfg.poll_interval_seconds)
    elif sync is None:
        logger.info("No Telegram bot token configured; channel sync disabled.")

    yield

    if sync is not None:
        await sync.stop()
        await app.state.telegram.aclose()


# ---------------------------------------------------------------------------
# Error mapping.
# ---------------------------------------------------------------------------


async def _handle_domain_error(request: Request, exc: GallerySyncError) -> JSONResponse:
    for error_type, status in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return JSONResponse(status_code=status, content={"error": str(exc)})

    if isinstance(exc, StoreError):
        logger.error(f"{request.method} {request.url.path} failed in the store: {exc}")
    else:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:])
        messages.append(f"{field}: {error.get('msg')}" if field else error.get("msg"))
    return JSONResponse(status_code=400, content={"error": "; ".join(messages)})


# ---------------------------------------------------------------------------
# Public routes.
# ---------------------------------------------------------------------------


@router.post("/api/submit-art")
async def submit_art(
    request: Request,
    artist_name: str = Form(default=""),
    artist_social: str | None = Form(default=None),
    art_description: str | None = Form(default=None),
    images: list[UploadFile] | None = File(default=None),
) -> dict:
    """Accept an artwork submission for moderation.

    Every file is checked (media type ``image/*``, size limit, at most
    ``max_files_per_submission``) before anything is written.  If recording
    the submission fails, the stored files are removed again.

    Returns:
        Dictionary with ``success``, ``message``, ``submissionCount`` (number
        of images) and ``submissionId``.

    Raises:
        ValidationError: Missing artist name, no files, or a rejected file.
    """
    cfg: GallerySyncConfig = request.app.state.config
    moderation: ModerationService = request.app.state.moderation

    incoming = []
    for upload in images or []:
        # Read one byte past the limit so oversized files are detectable
        # without buffering them completely.
        data = await upload.read(cfg.max_upload_bytes + 1)
        incoming.append(
            IncomingFile(
                filename=upload.filename or "",
                content_type=upload.content_type or "",
                data=data,
            )
        )

    references = await asyncio.to_thread(
        save_uploads,
        incoming,
        cfg.uploads_dir,
        cfg.max_upload_bytes,
        cfg.max_files_per_submission,
    )
    try:
        submission = await asyncio.to_thread(
            moderation.submit,
            artist_name,
            references,
            artist_social=artist_social,
            description=art_description,
        )
    except Exception:
        discard_uploads([cfg.uploads_dir / ref["filename"] for ref in references])
        raise

    return {
        "success": True,
        "message": "Artwork submitted successfully! It will be reviewed soon.",
        "submissionCount": len(references),
        "submissionId": submission["id"],
    }


@router.get("/api/gallery")
def get_gallery(request: Request, origin: Origin | None = None) -> list[dict]:
    """Return the merged gallery, newest first.

    Args:
        origin: Optional ``external`` or ``local`` filter.
    """
    gallery: GalleryAggregator = request.app.state.gallery
    return gallery.feed(origin=origin.value if origin else None)


@router.get("/api/stats")
def get_stats(request: Request) -> dict:
    """Return gallery statistics (items per origin, submissions per status)."""
    gallery: GalleryAggregator = request.app.state.gallery
    return gallery.stats()


@router.get("/api/health")
async def health(request: Request) -> dict:
    """Liveness check including the channel sync status."""
    return {
        "status": "OK",
        "timestamp": utc_now(),
        "version": __version__,
        "sync": _sync_status(request),
    }


# ---------------------------------------------------------------------------
# Admin routes.
# ---------------------------------------------------------------------------


@router.get("/api/admin/submissions")
def list_pending_submissions(request: Request) -> list[dict]:
    """Return pending submissions with absolute image URLs, newest first."""
    moderation: ModerationService = request.app.state.moderation
    return moderation.pending()


@router.post("/api/admin/approve/{submission_id}")
def approve_submission(
    request: Request,
    submission_id: int,
    req: ApproveRequest | None = None,
) -> dict:
    """Approve a pending submission and publish its images.

    Raises:
        NotFoundError: 404 for an unknown submission.
        InvalidStateError: 409 when the submission is not pending.
        ValidationError: 400 when the external reference is already used.
    """
    moderation: ModerationService = request.app.state.moderation
    req = req or ApproveRequest()
    result = moderation.approve(
        submission_id,
        external_reference=req.telegram_message_id,
        image_url=req.image_url,
    )
    return {
        "success": True,
        "message": "Submission approved successfully",
        "approved_id": result["items"][0]["id"] if result["items"] else None,
        "items": result["items"],
    }


@router.post("/api/admin/reject/{submission_id}")
def reject_submission(request: Request, submission_id: int) -> dict:
    """Reject a pending submission.

    Raises:
        NotFoundError: 404 for an unknown submission.
        InvalidStateError: 409 when the submission is not pending.
    """
    moderation: ModerationService = request.app.state.moderation
    moderation.reject(submission_id)
    return {"success": True, "message": "Submission rejected"}


@router.post("/api/admin/add-from-telegram")
def add_from_telegram(request: Request, req: ManualSyncRequest) -> JSONResponse:
    """Publish a channel post entered by hand, through the deduplicator."""
    dedup: Deduplicator = request.app.state.dedup
    item = dedup.admit_manual(
        req.telegram_message_id,
        req.image_url,
        req.artist_name,
        artist_social=req.artist_social,
        description=req.art_description,
    )
    return _manual_sync_response(item)


@router.post("/api/admin/quick-telegram-add")
def quick_telegram_add(request: Request, req: QuickAddRequest) -> JSONResponse:
    """Publish a channel post from its public link.

    The message id is the last path segment of the link; the link itself is
    stored as the image reference.
    """
    dedup: Deduplicator = request.app.state.dedup
    item = dedup.admit_manual(
        req.message_id,
        req.telegram_url,
        QUICK_ADD_ARTIST,
        description=QUICK_ADD_DESCRIPTION,
    )
    return _manual_sync_response(item)


@router.post("/api/admin/telegram-sync")
async def trigger_telegram_sync(request: Request) -> dict:
    """Run one ingestion cycle immediately.

    Returns the cycle result; ``skipped`` is true when a cycle was already
    running.

    Raises:
        HTTPException: 503 when channel sync is not configured.
    """
    sync = _require_sync(request)
    result = await sync.run_cycle()
    return {"success": result.ok, **result.as_dict()}


@router.get("/api/admin/telegram-status")
async def telegram_status(request: Request) -> dict:
    """Describe the channel configuration and the sync state."""
    cfg: GallerySyncConfig = request.app.state.config
    return {
        "channel": cfg.telegram_channel,
        "bot_configured": cfg.sync_enabled,
        "auto_sync_available": cfg.sync_enabled and cfg.auto_sync,
        "manual_sync_available": True,
        "sync": _sync_status(request),
    }


@router.post("/api/telegram/webhook")
async def telegram_webhook(request: Request) -> dict:
    """Ingest one pushed update.

    When ``telegram_webhook_secret`` is configured the request must carry it
    in ``X-Telegram-Bot-Api-Secret-Token``.  A transport failure while
    fetching the media, or a failure to store the item, answers 503 so that
    Telegram redelivers the update.
    """
    cfg: GallerySyncConfig = request.app.state.config
    sync = _require_sync(request)

    if cfg.telegram_webhook_secret and (
        request.headers.get("X-Telegram-Bot-Api-Secret-Token") != cfg.telegram_webhook_secret
    ):
        raise HTTPException(status_code=403, detail="Invalid webhook secret")

    try:
        update = await request.json()
    except ValueError as e:
        raise ValidationError("Webhook body must be a JSON update") from e
    if not isinstance(update, dict):
        raise ValidationError("Webhook body must be a JSON object")

    try:
        result = await sync.ingest_updates([update])
    except TransportError as e:
        logger.warning(f"Webhook update {update.get('update_id')} not ingested: {e}")
        raise HTTPException(status_code=503, detail="Channel temporarily unavailable") from e

    if result.store_errors:
        raise HTTPException(status_code=503, detail="Update could not be stored")

    return {"ok": True, "ingested": result.ingested, "duplicates": result.duplicates}


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _manual_sync_response(item: dict | None) -> JSONResponse:
    if item is None:
        return JSONResponse(
            status_code=409,
            content={"success": False, "error": "This Telegram message is already synced"},
        )
    return JSONResponse(
        content={
            "success": True,
            "message": "Artwork synced from Telegram successfully!",
            "id": item["id"],
        }
    )


def _require_sync(request: Request) -> ChannelSync:
    sync: ChannelSync | None = request.app.state.sync
    if sync is None:
        raise HTTPException(status_code=503, detail="Telegram sync is not configured")
    return sync


def _sync_status(request: Request) -> dict:
    sync: ChannelSync | None = request.app.state.sync
    if sync is None:
        return {"enabled": False}
    return sync.status()


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    cfg: GallerySyncConfig | None = None,
    telegram_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the FastAPI application and its services.

    Args:
        cfg: Configuration; a fresh :class:`GallerySyncConfig` (environment
            and ``.env``) when omitted.
        telegram_transport: Optional httpx transport for the Bot API client.

    Returns:
        The configured application.
    """
    cfg = cfg or GallerySyncConfig()

    app = FastAPI(
        title="gallerysync",
        description="Moderated community art gallery fed by uploads and a Telegram channel.",
        version=__version__,
        lifespan=lifespan,
    )

    store = ContentStore(cfg.database_path)
    dedup = Deduplicator(store)
    app.state.config = cfg
    app.state.store = store
    app.state.dedup = dedup
    app.state.moderation = ModerationService(store, cfg.public_base_url)
    app.state.gallery = GalleryAggregator(store)
    app.state.telegram = None
    app.state.sync = None

    if cfg.sync_enabled:
        telegram = TelegramClient(
            cfg.telegram_bot_token,
            api_base=cfg.telegram_api_base,
            timeout=cfg.request_timeout_seconds,
            transport=telegram_transport,
        )
        mirror = MediaMirror(
            telegram,
            cfg.media_dir,
            cfg.public_base_url,
            max_bytes=cfg.max_media_bytes,
        )
        app.state.telegram = telegram
        app.state.sync = ChannelSync(
            telegram,
            dedup,
            mirror,
            channel=cfg.telegram_channel,
            default_artist=cfg.external_artist_name,
            cycle_timeout=cfg.cycle_timeout_seconds,
        )

    # The admin panel and gallery page may be served from another origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GallerySyncError, _handle_domain_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)

    app.include_router(router)
    app.mount("/uploads", StaticFiles(directory=str(cfg.uploads_dir)), name="uploads")
    app.mount("/media", StaticFiles(directory=str(cfg.media_dir)), name="media")

    return app


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Builds a :class:`GallerySyncConfig` for host, port and log level
    (``GALLERYSYNC_SERVER_HOST``, ``GALLERYSYNC_SERVER_PORT``,
    ``GALLERYSYNC_LOG_LEVEL``); the server builds its own through
    :func:`create_app`.

    This function is registered as the ``gallerysync`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    config = GallerySyncConfig()

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "gallerysync.api.main:create_app",
        factory=True,
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
