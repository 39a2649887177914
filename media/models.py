"""
media/models.py -- Domain dataclasses for uploaded media.

Pure data containers with zero logic. media/uploader.py does the work.

FileRef is how the transport layer hands an uploaded file to the domain: a
file already spooled to local disk. "No file" is None at the call site, never
an empty FileRef, so a missing upload can always be told apart from a failed
one.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class FileRef:
    """A locally spooled upload waiting to be pushed to the media store."""

    path: Path
    filename: str
    content_type: str | None = None


@dataclass(frozen=True)
class MediaAsset:
    """What the media store returned for one upload.

    url may be empty when a remote store answers without one; the caller
    treats that as a failed upload.
    """

    url: str
    public_id: str | None = None
    bytes: int | None = None
