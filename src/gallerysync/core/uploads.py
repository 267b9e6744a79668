"""Validation and storage of submitted artwork files.

All files of a submission are validated before any of them is written, so a
rejected request never leaves files behind.  Stored names are random UUIDs
that keep the original extension; the original name is kept in the file
reference for the admin view.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from gallerysync.core.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IncomingFile:
    """An uploaded file as received at the HTTP boundary."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def _format_size(num_bytes: int) -> str:
    return f"{num_bytes / (1024 * 1024):g}MB"


def validate_uploads(files: list[IncomingFile], max_bytes: int, max_files: int) -> None:
    """Check count, media type and size of every file.

    Raises:
        ValidationError: With a message naming the offending file and reason.
    """
    if not files:
        raise ValidationError("At least one image is required")
    if len(files) > max_files:
        raise ValidationError(f"Too many files: at most {max_files} images per submission")

    for incoming in files:
        name = incoming.filename or "unnamed file"
        if not (incoming.content_type or "").startswith("image/"):
            raise ValidationError(
                f"{name}: only image files are allowed (got {incoming.content_type or 'unknown type'})"
            )
        if incoming.size == 0:
            raise ValidationError(f"{name}: file is empty")
        if incoming.size > max_bytes:
            raise ValidationError(
                f"{name}: file too large. Maximum size is {_format_size(max_bytes)}"
            )


def save_uploads(
    files: list[IncomingFile],
    uploads_dir: Path,
    max_bytes: int,
    max_files: int,
) -> list[dict]:
    """Validate and write submitted files to ``uploads_dir``.

    Args:
        files: Files from the request, in upload order.
        uploads_dir: Destination directory.
        max_bytes: Per-file size limit.
        max_files: Maximum number of files.

    Returns:
        File references (``filename``, ``original_filename``, ``content_type``,
        ``size``) in upload order.

    Raises:
        ValidationError: A file was rejected; nothing was written.
        OSError: Writing failed; files written by this call were removed.
    """
    validate_uploads(files, max_bytes, max_files)
    uploads_dir.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    references: list[dict] = []
    try:
        for incoming in files:
            suffix = Path(incoming.filename or "").suffix.lower()
            stored_name = f"{uuid.uuid4().hex}{suffix}"
            path = uploads_dir / stored_name
            path.write_bytes(incoming.data)
            written.append(path)
            references.append(
                {
                    "filename": stored_name,
                    "original_filename": incoming.filename,
                    "content_type": incoming.content_type,
                    "size": incoming.size,
                }
            )
    except OSError:
        logger.error(f"Failed writing uploads to {uploads_dir}; removing {len(written)} file(s)")
        discard_uploads(written)
        raise

    return references


def discard_uploads(paths: list[Path]) -> None:
    """Remove stored files, ignoring ones that are already gone."""
    for path in paths:
        path.unlink(missing_ok=True)
