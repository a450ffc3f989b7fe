"""Crawl -> download -> upload orchestration over one bounded worker pool.

The archive is walked in three levels: the root index lists year pages, each
year page lists paper pages, each paper page links (at most) one PDF. Year
tasks and paper tasks share a single ``ThreadPoolExecutor``; a year task
occupies its slot while it waits for all of its papers, so the pool must be
larger than the number of years in flight.

Failures are contained at the smallest unit of work. A paper task never
raises: it returns a ``PaperOutcome``. A year whose page cannot be fetched is
recorded as failed. Only a failure to resolve the root index escapes ``run``.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Protocol

from bs4 import BeautifulSoup

from extractor import PAPER_LINKS, PDF_LINK, YEAR_LINKS, extract, select_latest_years
from fetcher import FetchError
from models import (
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_UPLOADED,
    DownloadedArtifact,
    PaperOutcome,
    PaperTask,
    RemoteRef,
    RunSummary,
    YearOutcome,
    YearTask,
)

DEFAULT_BASE_URL = "https://papers.nips.cc"
DEFAULT_POOL_SIZE = 10
DEFAULT_MAX_YEARS = 5
COURTESY_DELAY_SECONDS = 1.0
SHUTDOWN_TIMEOUT_SECONDS = 60.0

LOGGER = logging.getLogger(__name__)


class PageFetcher(Protocol):
    def fetch_page(self, url: str) -> BeautifulSoup: ...

    def download(self, url: str) -> DownloadedArtifact: ...


class ArtifactUploader(Protocol):
    def upload(self, artifact: DownloadedArtifact) -> RemoteRef: ...


class ArchivePipeline:
    """Drive one full archive run."""

    def __init__(
        self,
        fetcher: PageFetcher,
        uploader: ArtifactUploader,
        base_url: str = DEFAULT_BASE_URL,
        max_years: int = DEFAULT_MAX_YEARS,
        pool_size: int = DEFAULT_POOL_SIZE,
        courtesy_delay_seconds: float = COURTESY_DELAY_SECONDS,
        shutdown_timeout_seconds: float = SHUTDOWN_TIMEOUT_SECONDS,
    ) -> None:
        if max_years < 1:
            raise ValueError(f"max_years must be >= 1, got {max_years}")
        if pool_size <= max_years:
            # Every year would hold a slot while its papers wait for one.
            raise ValueError(f"pool_size ({pool_size}) must be greater than max_years ({max_years})")

        self.fetcher = fetcher
        self.uploader = uploader
        self.base_url = base_url
        self.max_years = max_years
        self.pool_size = pool_size
        self.courtesy_delay_seconds = courtesy_delay_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds

        self._executor: ThreadPoolExecutor | None = None
        self._submitted: list[Future[Any]] = []
        self._submitted_lock = threading.Lock()

    def run(self) -> RunSummary:
        """Archive the newest years; raises FetchError if the root index is unreachable."""
        started = time.monotonic()
        summary = RunSummary()
        self._executor = ThreadPoolExecutor(max_workers=self.pool_size, thread_name_prefix="archiver")
        self._submitted = []

        try:
            years = self.resolve_years()
            LOGGER.info("Processing years: %s", [task.url for task in years])

            year_futures = [self._submit(self.process_year, task) for task in years]
            summary.years = [future.result() for future in year_futures]
        finally:
            self._shutdown()
            summary.elapsed_seconds = time.monotonic() - started
            LOGGER.info("Total execution time: %.0fms", summary.elapsed_seconds * 1000)

        LOGGER.info(
            "Run complete. years=%s failed_years=%s uploaded=%s skipped=%s failed=%s",
            len(summary.years),
            summary.failed_years,
            summary.uploaded,
            summary.skipped,
            summary.failed,
        )
        return summary

    def resolve_years(self) -> list[YearTask]:
        root = self.fetcher.fetch_page(self.base_url)
        refs = extract(root, YEAR_LINKS, self.base_url)
        return select_latest_years(refs, limit=self.max_years)

    def process_year(self, task: YearTask) -> YearOutcome:
        """Fan out one task per paper on the year page and wait for all of them."""
        try:
            page = self.fetcher.fetch_page(task.url)
            papers = [PaperTask(ref=ref) for ref in extract(page, PAPER_LINKS, self.base_url)]
        except FetchError as exc:
            LOGGER.error("Year processing failed: %s - %s", task.url, exc)
            return YearOutcome(url=task.url, failed=True)
        except Exception as exc:  # a single year must not abort the run
            LOGGER.exception("Year processing failed: %s - %s", task.url, exc)
            return YearOutcome(url=task.url, failed=True)

        LOGGER.info("Found %s papers in %s", len(papers), task.url)
        if not papers:
            return YearOutcome(url=task.url)

        futures = [self._submit(self._process_paper_throttled, paper) for paper in papers]
        return YearOutcome(url=task.url, papers=[future.result() for future in futures])

    def process_paper(self, task: PaperTask) -> PaperOutcome:
        """Resolve, download and upload the PDF of one paper; never raises."""
        try:
            page = self.fetcher.fetch_page(task.url)
            pdf_refs = extract(page, PDF_LINK, self.base_url)
            if not pdf_refs:
                LOGGER.info("PDF not found for paper page: %s", task.url)
                return PaperOutcome(url=task.url, status=STATUS_SKIPPED, detail="no pdf link")

            artifact = self.fetcher.download(pdf_refs[0].url)
            remote = self.uploader.upload(artifact)
            return PaperOutcome(url=task.url, status=STATUS_UPLOADED, detail=remote.web_view_link)
        except Exception as exc:  # a single paper must not abort its year
            LOGGER.error("Paper processing failed: %s - %s", task.url, exc)
            return PaperOutcome(url=task.url, status=STATUS_FAILED, detail=str(exc))

    def _process_paper_throttled(self, task: PaperTask) -> PaperOutcome:
        try:
            return self.process_paper(task)
        finally:
            time.sleep(self.courtesy_delay_seconds)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Future[Any]:
        if self._executor is None:
            raise RuntimeError("Pipeline is not running")
        future = self._executor.submit(fn, *args)
        with self._submitted_lock:
            self._submitted.append(future)
        return future

    def _shutdown(self) -> None:
        executor = self._executor
        if executor is None:
            return
        with self._submitted_lock:
            pending = list(self._submitted)

        _, not_done = wait(pending, timeout=self.shutdown_timeout_seconds)
        if not_done:
            LOGGER.warning(
                "Abandoning %s task(s) still running after %.0fs",
                len(not_done),
                self.shutdown_timeout_seconds,
            )
        executor.shutdown(wait=False)
        self._executor = None
