"""CLI entrypoint for the NeurIPS paper archiver."""

from __future__ import annotations

import argparse
import logging
import sys
from functools import partial

from dotenv import load_dotenv

from backoff import RetryPolicy
from config import ArchiverSettings, load_settings
from drive_auth import DriveClientProvider, build_drive_handle
from drive_sink import DriveUploader
from fetcher import Fetcher
from models import RunSummary
from pipeline import ArchivePipeline

LOG_FORMAT = "[%(tag)s] %(asctime)s %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags (there are none beyond --help)."""
    parser = argparse.ArgumentParser(
        description=(
            "Archive the newest NeurIPS proceedings PDFs to Google Drive. "
            "All settings come from environment variables or a .env file."
        )
    )
    return parser.parse_args(argv)


class TaggedFormatter(logging.Formatter):
    """Render records below WARNING as ``[LOG]`` and everything else as ``[ERROR]``."""

    def format(self, record: logging.LogRecord) -> str:
        record.tag = "LOG" if record.levelno < logging.WARNING else "ERROR"
        return super().format(record)


def configure_logging(level: int = logging.INFO) -> None:
    """Send INFO/DEBUG to stdout and WARNING+ to stderr, tagged [LOG] / [ERROR]."""
    formatter = TaggedFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.setLevel(logging.WARNING)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(stdout_handler)
    root.addHandler(stderr_handler)


def build_pipeline(settings: ArchiverSettings) -> ArchivePipeline:
    """Wire fetcher, Drive uploader and orchestrator from settings."""
    fetcher = Fetcher(
        download_dir=settings.download_dir,
        html_policy=RetryPolicy(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.retry_delay_seconds,
        ),
        pdf_policy=RetryPolicy(
            max_attempts=settings.max_attempts,
            backoff=settings.pdf_backoff,
            base_delay_seconds=settings.retry_delay_seconds,
            retry_on_http_status=False,
        ),
        html_timeout=settings.html_timeout_seconds,
        pdf_timeout=settings.pdf_timeout_seconds,
    )
    provider = DriveClientProvider(
        partial(
            build_drive_handle,
            settings.credentials_path,
            settings.token_dir,
            settings.oauth_port,
        )
    )
    uploader = DriveUploader(
        provider,
        folder_id=settings.drive_folder_id,
        delete_attempts=settings.delete_attempts,
        delete_delay_seconds=settings.delete_delay_seconds,
    )
    return ArchivePipeline(
        fetcher=fetcher,
        uploader=uploader,
        base_url=settings.base_url,
        max_years=settings.max_years,
        pool_size=settings.pool_size,
        courtesy_delay_seconds=settings.courtesy_delay_seconds,
        shutdown_timeout_seconds=settings.shutdown_timeout_seconds,
    )


def run(settings: ArchiverSettings) -> RunSummary:
    """Run one full archive pass."""
    return build_pipeline(settings).run()


def main(argv: list[str] | None = None) -> int:
    """Load config, run the pipeline, and return a process exit code."""
    load_dotenv()
    configure_logging()
    parse_args(argv)

    LOGGER.info("Starting NeurIPS paper archiver")
    try:
        settings = load_settings()
        run(settings)
    except Exception as exc:
        LOGGER.error("Main process failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
