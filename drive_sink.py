"""Google Drive sink: upload downloaded PDFs, then remove the local copy."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from drive_auth import DriveAuthError, DriveClientProvider
from models import DownloadedArtifact, RemoteRef

PDF_MIME_TYPE = "application/pdf"
UPLOAD_FIELDS = "id, name, webViewLink"
DELETE_ATTEMPTS = 5
DELETE_DELAY_SECONDS = 2.0

LOGGER = logging.getLogger(__name__)


class UploadError(RuntimeError):
    """Raised when Drive rejects an upload; the local file is left in place."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Upload failed: {name} - {cause}")
        self.name = name
        self.cause = cause


class DriveUploader:
    """Push artifacts to Drive; the local file is deleted only after a successful write."""

    def __init__(
        self,
        provider: DriveClientProvider,
        folder_id: str | None = None,
        delete_attempts: int = DELETE_ATTEMPTS,
        delete_delay_seconds: float = DELETE_DELAY_SECONDS,
    ) -> None:
        if delete_attempts < 1:
            raise ValueError(f"delete_attempts must be >= 1, got {delete_attempts}")
        self.provider = provider
        self.folder_id = folder_id
        self.delete_attempts = delete_attempts
        self.delete_delay_seconds = delete_delay_seconds

    def upload(self, artifact: DownloadedArtifact) -> RemoteRef:
        """Upload ``artifact`` and remove it from disk.

        Raises:
            UploadError: If the Drive client cannot be built or the write fails.
        """
        metadata: dict[str, object] = {"name": artifact.name}
        if self.folder_id:
            metadata["parents"] = [self.folder_id]

        try:
            handle = self.provider.get()
            # Handle must be closed before the delete below.
            with artifact.path.open("rb") as fh:
                media = MediaIoBaseUpload(fh, mimetype=PDF_MIME_TYPE, resumable=True)
                created = (
                    handle.service.files()
                    .create(body=metadata, media_body=media, fields=UPLOAD_FIELDS)
                    .execute(http=handle.new_http())
                )
        except (HttpError, httplib2.HttpLib2Error, GoogleAuthError, DriveAuthError, OSError) as exc:
            raise UploadError(artifact.name, exc) from exc

        remote = RemoteRef(
            file_id=created.get("id", ""),
            name=created.get("name", artifact.name),
            web_view_link=created.get("webViewLink", ""),
        )
        LOGGER.info("File uploaded: %s -> %s", artifact.name, remote.web_view_link)

        remove_local_file(
            artifact.path,
            attempts=self.delete_attempts,
            delay_seconds=self.delete_delay_seconds,
        )
        return remote


def remove_local_file(
    path: Path,
    attempts: int = DELETE_ATTEMPTS,
    delay_seconds: float = DELETE_DELAY_SECONDS,
) -> bool:
    """Delete ``path``, retrying while the OS refuses (e.g. file held open elsewhere).

    Returns False when the file is still on disk after the last attempt; that
    is logged and left for the operator.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")
    for attempt in range(1, attempts + 1):
        try:
            path.unlink()
        except FileNotFoundError:
            LOGGER.warning("Local file already gone: %s", path.name)
            return True
        except OSError as exc:
            if attempt >= attempts:
                LOGGER.warning(
                    "Could not delete %s after %s attempts, leaving it on disk: %s",
                    path,
                    attempts,
                    exc,
                )
                return False
            LOGGER.info(
                "File %s still in use (attempt %s/%s): %s",
                path.name,
                attempt,
                attempts,
                exc,
            )
            time.sleep(delay_seconds)
        else:
            LOGGER.info("Deleted local file: %s", path.name)
            return True
    return False
