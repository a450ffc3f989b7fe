"""HTTP retrieval of archive pages and PDF files with bounded retries."""

from __future__ import annotations

import logging
import tempfile
import time
from pathlib import Path, PurePosixPath
from typing import Callable, TypeVar
from urllib.parse import unquote, urlparse

import requests
from bs4 import BeautifulSoup

from backoff import HTML_RETRY_POLICY, PDF_RETRY_POLICY, RetryPolicy
from models import DownloadedArtifact

HTML_TIMEOUT_SECONDS = 30
PDF_TIMEOUT_SECONDS = 60
CHUNK_BYTES = 64 * 1024
USER_AGENT = "neurips-archiver/0.1 (+https://papers.nips.cc)"

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class FetchError(RuntimeError):
    """Raised once a page or file could not be retrieved within the retry budget."""

    def __init__(self, url: str, attempts: int, last_cause: BaseException | None) -> None:
        super().__init__(f"Failed to fetch {url} after {attempts} attempt(s): {last_cause}")
        self.url = url
        self.attempts = attempts
        self.last_cause = last_cause


class Fetcher:
    """Fetch HTML pages as parsed soup and stream PDFs to ``download_dir``."""

    def __init__(
        self,
        download_dir: Path,
        session: requests.Session | None = None,
        html_policy: RetryPolicy = HTML_RETRY_POLICY,
        pdf_policy: RetryPolicy = PDF_RETRY_POLICY,
        html_timeout: float = HTML_TIMEOUT_SECONDS,
        pdf_timeout: float = PDF_TIMEOUT_SECONDS,
    ) -> None:
        self.download_dir = Path(download_dir)
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT
        self.html_policy = html_policy
        self.pdf_policy = pdf_policy
        self.html_timeout = html_timeout
        self.pdf_timeout = pdf_timeout

    def fetch(self, url: str, expect_html: bool = True) -> BeautifulSoup | DownloadedArtifact:
        """Dispatch to :meth:`fetch_page` or :meth:`download`."""
        if expect_html:
            return self.fetch_page(url)
        return self.download(url)

    def fetch_page(self, url: str) -> BeautifulSoup:
        def _get() -> BeautifulSoup:
            response = self.session.get(url, timeout=self.html_timeout)
            response.raise_for_status()
            return BeautifulSoup(response.text, "html.parser")

        return self._with_retries(url, self.html_policy, _get)

    def download(self, url: str) -> DownloadedArtifact:
        """Stream ``url`` into ``download_dir``.

        Each download gets its own temporary file name, so two papers whose
        PDFs share a final path segment never write to the same local path.
        ``artifact.name`` keeps the URL's last segment as the logical name.
        """
        name = file_name_from_url(url)
        self.download_dir.mkdir(parents=True, exist_ok=True)

        def _get() -> DownloadedArtifact:
            with self.session.get(url, timeout=self.pdf_timeout, stream=True) as response:
                response.raise_for_status()
                with tempfile.NamedTemporaryFile(
                    "wb", dir=self.download_dir, prefix="", suffix=f"-{name}", delete=False
                ) as fh:
                    path = Path(fh.name)
                    try:
                        for chunk in response.iter_content(chunk_size=CHUNK_BYTES):
                            if chunk:
                                fh.write(chunk)
                    except Exception:
                        # Partial body from a broken transfer is not an artifact.
                        fh.close()
                        path.unlink(missing_ok=True)
                        raise
            return DownloadedArtifact(path=path, name=name, size=path.stat().st_size)

        artifact = self._with_retries(url, self.pdf_policy, _get)
        LOGGER.info("Downloaded: %s (%s bytes)", artifact.name, artifact.size)
        return artifact

    def _with_retries(self, url: str, policy: RetryPolicy, action: Callable[[], T]) -> T:
        last_error: Exception | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return action()
            except requests.HTTPError as exc:
                last_error = exc
                if not policy.retry_on_http_status:
                    raise FetchError(url, attempt, exc) from exc
            except requests.RequestException as exc:
                last_error = exc
            except OSError as exc:
                # Local write failure (e.g. disk full); not retried.
                raise FetchError(url, attempt, exc) from exc

            if attempt >= policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            LOGGER.warning(
                "Retrying connection to %s (attempt %s/%s failed: %s), next try in %.1fs",
                url,
                attempt,
                policy.max_attempts,
                last_error,
                delay,
            )
            time.sleep(delay)

        raise FetchError(url, policy.max_attempts, last_error) from last_error


def file_name_from_url(url: str) -> str:
    """Return the final path segment of ``url``, e.g. ``abc-Paper.pdf``.

    Percent-escapes are decoded before the segment is taken, so an encoded
    ``%2F`` can never smuggle a directory part into the name.

    Raises:
        ValueError: If no usable file name remains (empty, ``.`` or ``..``).
    """
    segment = PurePosixPath(unquote(urlparse(url).path)).name
    segment = segment.rsplit("\\", 1)[-1]
    if segment in ("", ".", ".."):
        raise ValueError(f"URL has no file name segment: {url}")
    return segment
