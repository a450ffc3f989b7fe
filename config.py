"""Environment-driven settings for the archiver."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from backoff import BackoffKind


@dataclass(frozen=True, slots=True)
class ArchiverSettings:
    """Runtime settings; every field maps to one environment variable."""

    base_url: str = "https://papers.nips.cc"
    max_years: int = 5
    pool_size: int = 10
    courtesy_delay_seconds: float = 1.0
    shutdown_timeout_seconds: float = 60.0
    html_timeout_seconds: float = 30.0
    pdf_timeout_seconds: float = 60.0
    max_attempts: int = 3
    retry_delay_seconds: float = 1.0
    pdf_backoff: BackoffKind = BackoffKind.EXPONENTIAL
    download_dir: Path = Path("downloads")
    credentials_path: Path = Path("credentials.json")
    token_dir: Path = Path("tokens")
    oauth_port: int = 8888
    drive_folder_id: str | None = None
    delete_attempts: int = 5
    delete_delay_seconds: float = 2.0


def load_settings() -> ArchiverSettings:
    """Read settings from the environment (call ``load_dotenv`` first for ``.env`` support).

    Raises:
        ValueError: If a numeric variable does not parse or PDF_BACKOFF is unknown.
    """
    defaults = ArchiverSettings()
    backoff_raw = os.getenv("PDF_BACKOFF", defaults.pdf_backoff.value).strip().lower()
    try:
        pdf_backoff = BackoffKind(backoff_raw)
    except ValueError as exc:
        choices = ", ".join(kind.value for kind in BackoffKind)
        raise ValueError(f"PDF_BACKOFF must be one of: {choices}; got {backoff_raw!r}") from exc

    return ArchiverSettings(
        base_url=os.getenv("ARCHIVE_BASE_URL", defaults.base_url).rstrip("/"),
        max_years=_int_env("MAX_YEARS", defaults.max_years),
        pool_size=_int_env("WORKER_POOL_SIZE", defaults.pool_size),
        courtesy_delay_seconds=_float_env("COURTESY_DELAY_SECONDS", defaults.courtesy_delay_seconds),
        shutdown_timeout_seconds=_float_env("SHUTDOWN_TIMEOUT_SECONDS", defaults.shutdown_timeout_seconds),
        html_timeout_seconds=_float_env("HTML_TIMEOUT_SECONDS", defaults.html_timeout_seconds),
        pdf_timeout_seconds=_float_env("PDF_TIMEOUT_SECONDS", defaults.pdf_timeout_seconds),
        max_attempts=_int_env("FETCH_MAX_ATTEMPTS", defaults.max_attempts),
        retry_delay_seconds=_float_env("RETRY_DELAY_SECONDS", defaults.retry_delay_seconds),
        pdf_backoff=pdf_backoff,
        download_dir=Path(os.getenv("DOWNLOAD_DIR", str(defaults.download_dir))),
        credentials_path=Path(os.getenv("GOOGLE_CREDENTIALS_PATH", str(defaults.credentials_path))),
        token_dir=Path(os.getenv("GOOGLE_TOKEN_DIR", str(defaults.token_dir))),
        oauth_port=_int_env("OAUTH_PORT", defaults.oauth_port),
        drive_folder_id=os.getenv("DRIVE_FOLDER_ID") or None,
        delete_attempts=_int_env("DELETE_ATTEMPTS", defaults.delete_attempts),
        delete_delay_seconds=_float_env("DELETE_DELAY_SECONDS", defaults.delete_delay_seconds),
    )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
