"""Google Drive OAuth credentials and the shared, lazily built Drive client."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httplib2
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

SCOPES = ["https://www.googleapis.com/auth/drive.file"]
TOKEN_FILE_NAME = "token.json"
DEFAULT_OAUTH_PORT = 8888

LOGGER = logging.getLogger(__name__)


class DriveAuthError(RuntimeError):
    """Raised when no usable Drive credentials can be obtained."""


@dataclass(frozen=True, slots=True)
class DriveHandle:
    """Built Drive v3 service plus the credentials it was built with."""

    service: Any
    credentials: Credentials

    def new_http(self) -> AuthorizedHttp:
        """Return a fresh authorized transport; httplib2 objects are not thread-safe."""
        return AuthorizedHttp(self.credentials, http=httplib2.Http())


def load_credentials(
    credentials_path: Path,
    token_dir: Path,
    port: int = DEFAULT_OAUTH_PORT,
) -> Credentials:
    """Return valid Drive credentials, refreshing or re-authorizing as needed.

    The token cache lives at ``token_dir/token.json``. When it is missing or
    cannot be refreshed, the installed-app flow opens a browser and listens on
    ``localhost:port`` for the OAuth callback.

    Raises:
        DriveAuthError: If the client-secret file is missing or the flow fails.
    """
    token_path = Path(token_dir) / TOKEN_FILE_NAME
    credentials: Credentials | None = None

    if token_path.exists():
        LOGGER.debug("Loading token from %s", token_path)
        credentials = Credentials.from_authorized_user_file(str(token_path), SCOPES)

    if credentials and credentials.expired and credentials.refresh_token:
        LOGGER.info("Refreshing expired Drive token")
        credentials.refresh(Request())
        _save_token(credentials, token_path)

    if credentials and credentials.valid:
        return credentials

    credentials_path = Path(credentials_path)
    if not credentials_path.exists():
        raise DriveAuthError(
            f"Credentials file not found: {credentials_path}. "
            "Download an OAuth client secret from Google Cloud Console."
        )

    LOGGER.info("Running OAuth flow on port %s", port)
    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        credentials = flow.run_local_server(port=port, access_type="offline")
    except Exception as exc:
        raise DriveAuthError(f"OAuth flow failed: {exc}") from exc

    _save_token(credentials, token_path)
    return credentials


def build_drive_handle(credentials_path: Path, token_dir: Path, port: int = DEFAULT_OAUTH_PORT) -> DriveHandle:
    credentials = load_credentials(credentials_path, token_dir, port)
    service = build("drive", "v3", credentials=credentials, cache_discovery=False)
    LOGGER.info("Connected to Google Drive API")
    return DriveHandle(service=service, credentials=credentials)


class DriveClientProvider:
    """Builds the Drive handle on first use and hands the same one to every caller.

    Concurrent first calls block on a lock so the factory runs at most once
    per successful initialization. A failed build is not cached; the next
    caller tries again.
    """

    def __init__(self, factory: Callable[[], DriveHandle]) -> None:
        self._factory = factory
        self._handle: DriveHandle | None = None
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._handle is not None

    def get(self) -> DriveHandle:
        handle = self._handle
        if handle is not None:
            return handle
        with self._lock:
            if self._handle is None:
                self._handle = self._factory()
            return self._handle


def _save_token(credentials: Credentials, token_path: Path) -> None:
    LOGGER.debug("Saving token to %s", token_path)
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(credentials.to_json(), encoding="utf-8")
