"""
media/uploader.py -- Media store clients for avatar and cover images.

Two backends implement the same upload(ref) -> MediaAsset contract:

  LocalMediaUploader -- copies the spooled file into MEDIA_ROOT and returns a
      URL under MEDIA_BASE_URL. Default for development and tests.

  HttpMediaUploader -- multipart POST to an unsigned upload endpoint
      (Cloudinary-compatible: file + upload_preset in, JSON with secure_url
      out). Uses a pooled requests.Session with a bounded timeout so a slow
      store surfaces as UploadError instead of a hung request.

Both backends delete the spooled local file after the attempt, whether it
succeeded or not -- the local copy is only a staging area.

Failures raise UploadError. A store that answers 2xx without a URL is not an
error here; the MediaAsset comes back with url="" and the SessionManager
decides that an empty URL is a failed upload.

Layer rule: may import from auth.errors (shared error taxonomy) and core/.
No imports from api/.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import requests

from auth.errors import UploadError
from media.models import FileRef, MediaAsset

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("vidstream.media")

ALLOWED_CONTENT_TYPES: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


class MediaUploader(Protocol):
    def upload(self, ref: FileRef) -> MediaAsset: ...


def _discard(ref: FileRef) -> None:
    try:
        ref.path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove spooled upload %s: %s", ref.path, exc)


# ---------------------------------------------------------------------------
# Local directory store
# ---------------------------------------------------------------------------


class LocalMediaUploader:
    """Stores uploads under a local directory served at base_url."""

    def __init__(self, root: Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def upload(self, ref: FileRef) -> MediaAsset:
        try:
            if not ref.path.is_file():
                raise UploadError("Uploaded file is missing.")
            suffix = ALLOWED_CONTENT_TYPES.get(ref.content_type or "") or Path(ref.filename).suffix.lower()
            name = f"{uuid.uuid4().hex}{suffix}"
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                target = self.root / name
                shutil.copyfile(ref.path, target)
            except OSError as exc:
                logger.error("Local media store write failed for %s: %s", ref.filename, exc)
                raise UploadError("Could not store file.", status_code=502) from exc
            size = target.stat().st_size
            logger.info("Stored %s as %s (%d bytes)", ref.filename, name, size)
            return MediaAsset(url=f"{self.base_url}/{name}", public_id=name, bytes=size)
        finally:
            _discard(ref)


# ---------------------------------------------------------------------------
# Remote HTTP store
# ---------------------------------------------------------------------------


class HttpMediaUploader:
    """Pushes uploads to a remote media service over HTTP."""

    def __init__(self, endpoint: str, upload_preset: str = "", timeout: float = 10.0) -> None:
        self.endpoint = endpoint
        self.upload_preset = upload_preset
        self.timeout = timeout
        # Shared session for connection pooling. The store is a known endpoint,
        # so a short redirect budget is plenty.
        self._session = requests.Session()
        self._session.max_redirects = 3

    def upload(self, ref: FileRef) -> MediaAsset:
        try:
            data = {"upload_preset": self.upload_preset} if self.upload_preset else {}
            with ref.path.open("rb") as fh:
                resp = self._session.post(
                    self.endpoint,
                    data=data,
                    files={"file": (ref.filename, fh, ref.content_type or "application/octet-stream")},
                    timeout=self.timeout,
                )
            resp.raise_for_status()
            body = resp.json()
        except FileNotFoundError as exc:
            raise UploadError("Uploaded file is missing.") from exc
        except requests.Timeout as exc:
            logger.warning("Media upload timed out after %.1fs for %s", self.timeout, ref.filename)
            raise UploadError("Media store timed out.", status_code=504) from exc
        except requests.RequestException as exc:
            logger.warning("Media upload failed for %s: %s", ref.filename, exc)
            raise UploadError("Media store unavailable.", status_code=502) from exc
        except ValueError as exc:
            logger.warning("Media store returned a non-JSON body for %s", ref.filename)
            raise UploadError("Media store returned an invalid response.", status_code=502) from exc
        finally:
            _discard(ref)

        if not isinstance(body, dict):
            raise UploadError("Media store returned an invalid response.", status_code=502)
        return MediaAsset(
            url=body.get("secure_url") or body.get("url") or "",
            public_id=body.get("public_id"),
            bytes=body.get("bytes"),
        )

    def close(self) -> None:
        self._session.close()


def build_media_uploader(settings: Settings) -> MediaUploader:
    """Return the uploader selected by MEDIA_BACKEND."""
    if settings.media_backend == "http":
        return HttpMediaUploader(
            settings.media_upload_url,
            upload_preset=settings.media_upload_preset,
            timeout=settings.media_upload_timeout,
        )
    return LocalMediaUploader(settings.media_root, settings.media_base_url)
