import logging
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest
import requests

from backoff import BackoffKind, RetryPolicy
from fetcher import FetchError, Fetcher, file_name_from_url

PAGE_URL = "https://papers.nips.cc/paper_files/paper/2023"
PDF_URL = "https://papers.nips.cc/paper_files/paper/2023/file/abc-Paper-Conference.pdf"


def _html_resp(body: str = '<a href="/paper/2023">2023</a>') -> MagicMock:
    mock = MagicMock()
    mock.text = f"<html><body>{body}</body></html>"
    return mock


def _status_error_resp(status: int) -> MagicMock:
    mock = MagicMock()
    error_resp = MagicMock(status_code=status)
    mock.raise_for_status.side_effect = requests.HTTPError(f"{status} error", response=error_resp)
    mock.__enter__.return_value = mock
    mock.__exit__.return_value = False
    return mock


def _pdf_resp(chunks: list[bytes]) -> MagicMock:
    mock = MagicMock()
    mock.iter_content.return_value = iter(chunks)
    mock.__enter__.return_value = mock
    mock.__exit__.return_value = False
    return mock


def _fetcher(tmp_path: Path, session: MagicMock, **kwargs) -> Fetcher:
    session.headers = {}
    return Fetcher(download_dir=tmp_path / "downloads", session=session, **kwargs)


def test_fetch_page_succeeds_after_two_failures(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    session = MagicMock()
    session.get.side_effect = [
        requests.ConnectionError("connection reset"),
        requests.Timeout("read timed out"),
        _html_resp(),
    ]
    fetcher = _fetcher(tmp_path, session)

    with patch("fetcher.time.sleep") as mock_sleep, caplog.at_level(logging.WARNING, logger="fetcher"):
        soup = fetcher.fetch_page(PAGE_URL)

    assert soup.select_one("a")["href"] == "/paper/2023"
    assert session.get.call_count == 3
    assert mock_sleep.call_args_list == [call(1.0), call(1.0)]
    retries = [r for r in caplog.records if "Retrying connection" in r.getMessage()]
    assert len(retries) == 2


def test_fetch_page_raises_after_three_failures(tmp_path: Path) -> None:
    session = MagicMock()
    last = requests.ConnectionError("third")
    session.get.side_effect = [
        requests.ConnectionError("first"),
        requests.ConnectionError("second"),
        last,
    ]
    fetcher = _fetcher(tmp_path, session)

    with patch("fetcher.time.sleep") as mock_sleep:
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch_page(PAGE_URL)

    assert excinfo.value.url == PAGE_URL
    assert excinfo.value.attempts == 3
    assert excinfo.value.last_cause is last
    assert session.get.call_count == 3
    assert mock_sleep.call_count == 2


def test_fetch_page_first_attempt_success_does_not_sleep(tmp_path: Path) -> None:
    session = MagicMock()
    session.get.return_value = _html_resp()
    fetcher = _fetcher(tmp_path, session)

    with patch("fetcher.time.sleep") as mock_sleep:
        fetcher.fetch_page(PAGE_URL)

    session.get.assert_called_once_with(PAGE_URL, timeout=30)
    mock_sleep.assert_not_called()


def test_fetch_page_retries_http_status_errors(tmp_path: Path) -> None:
    session = MagicMock()
    session.get.side_effect = [_status_error_resp(503), _html_resp()]
    fetcher = _fetcher(tmp_path, session)

    with patch("fetcher.time.sleep"):
        soup = fetcher.fetch_page(PAGE_URL)

    assert soup.select_one("a") is not None
    assert session.get.call_count == 2


def test_fetcher_sets_user_agent(tmp_path: Path) -> None:
    session = MagicMock()
    fetcher = _fetcher(tmp_path, session)

    assert "neurips-archiver" in fetcher.session.headers["User-Agent"]


def test_download_writes_file_named_after_url(tmp_path: Path) -> None:
    session = MagicMock()
    session.get.return_value = _pdf_resp([b"%PDF-1.4 ", b"", b"body"])
    fetcher = _fetcher(tmp_path, session)

    artifact = fetcher.download(PDF_URL)

    assert artifact.name == "abc-Paper-Conference.pdf"
    assert artifact.path.parent == tmp_path / "downloads"
    assert artifact.path.name.endswith("-abc-Paper-Conference.pdf")
    assert artifact.path.read_bytes() == b"%PDF-1.4 body"
    assert artifact.size == len(b"%PDF-1.4 body")
    session.get.assert_called_once_with(PDF_URL, timeout=60, stream=True)


def test_download_http_status_fails_without_retry(tmp_path: Path) -> None:
    session = MagicMock()
    session.get.return_value = _status_error_resp(404)
    fetcher = _fetcher(tmp_path, session)

    with patch("fetcher.time.sleep") as mock_sleep:
        with pytest.raises(FetchError) as excinfo:
            fetcher.download(PDF_URL)

    assert excinfo.value.attempts == 1
    assert session.get.call_count == 1
    mock_sleep.assert_not_called()
    assert not any((tmp_path / "downloads").iterdir())


def test_download_uses_exponential_backoff(tmp_path: Path) -> None:
    session = MagicMock()
    session.get.side_effect = [
        requests.ConnectionError("reset"),
        requests.ConnectionError("reset"),
        _pdf_resp([b"%PDF"]),
    ]
    fetcher = _fetcher(tmp_path, session)

    with patch("fetcher.time.sleep") as mock_sleep:
        artifact = fetcher.download(PDF_URL)

    assert artifact.size == 4
    assert mock_sleep.call_args_list == [call(2.0), call(4.0)]


def test_download_fixed_backoff_is_configurable(tmp_path: Path) -> None:
    session = MagicMock()
    session.get.side_effect = [requests.Timeout("slow"), _pdf_resp([b"%PDF"])]
    policy = RetryPolicy(backoff=BackoffKind.FIXED, retry_on_http_status=False)
    fetcher = _fetcher(tmp_path, session, pdf_policy=policy)

    with patch("fetcher.time.sleep") as mock_sleep:
        fetcher.download(PDF_URL)

    assert mock_sleep.call_args_list == [call(1.0)]


def test_download_removes_partial_file_after_broken_transfer(tmp_path: Path) -> None:
    def _broken_stream(chunk_size: int):
        yield b"%PDF-partial"
        raise requests.exceptions.ChunkedEncodingError("connection broken")

    broken = MagicMock()
    broken.iter_content.side_effect = _broken_stream
    broken.__enter__.return_value = broken
    broken.__exit__.return_value = False

    session = MagicMock()
    session.get.return_value = broken
    fetcher = _fetcher(tmp_path, session)

    with patch("fetcher.time.sleep"):
        with pytest.raises(FetchError):
            fetcher.download(PDF_URL)

    assert session.get.call_count == 3
    assert not any((tmp_path / "downloads").iterdir())


def test_download_same_file_name_gets_distinct_paths(tmp_path: Path) -> None:
    session = MagicMock()
    session.get.side_effect = [_pdf_resp([b"%PDF-first"]), _pdf_resp([b"%PDF-second"])]
    fetcher = _fetcher(tmp_path, session)

    first = fetcher.download(PDF_URL)
    second = fetcher.download(PDF_URL)

    assert first.name == second.name == "abc-Paper-Conference.pdf"
    assert first.path != second.path
    assert first.path.read_bytes() == b"%PDF-first"
    assert second.path.read_bytes() == b"%PDF-second"


def test_download_disk_write_failure_is_not_retried(tmp_path: Path) -> None:
    def _full_disk(chunk_size: int):
        yield b"%PDF"
        raise OSError(28, "No space left on device")

    response = _pdf_resp([])
    response.iter_content.side_effect = _full_disk
    session = MagicMock()
    session.get.return_value = response
    fetcher = _fetcher(tmp_path, session)

    with patch("fetcher.time.sleep") as mock_sleep:
        with pytest.raises(FetchError) as excinfo:
            fetcher.download(PDF_URL)

    assert excinfo.value.attempts == 1
    assert isinstance(excinfo.value.last_cause, OSError)
    assert session.get.call_count == 1
    mock_sleep.assert_not_called()
    assert not any((tmp_path / "downloads").iterdir())


def test_download_stays_inside_download_dir_for_encoded_slashes(tmp_path: Path) -> None:
    session = MagicMock()
    session.get.return_value = _pdf_resp([b"%PDF"])
    fetcher = _fetcher(tmp_path, session)

    artifact = fetcher.download("https://papers.nips.cc/paper/2023/file/..%2F..%2Fescaped-Paper.pdf")

    assert artifact.name == "escaped-Paper.pdf"
    assert artifact.path.parent == tmp_path / "downloads"
    assert not (tmp_path / "escaped-Paper.pdf").exists()


def test_fetch_dispatches_on_expect_html(tmp_path: Path) -> None:
    session = MagicMock()
    fetcher = _fetcher(tmp_path, session)

    with patch.object(fetcher, "fetch_page") as mock_page, patch.object(fetcher, "download") as mock_download:
        fetcher.fetch(PAGE_URL)
        fetcher.fetch(PDF_URL, expect_html=False)

    mock_page.assert_called_once_with(PAGE_URL)
    mock_download.assert_called_once_with(PDF_URL)


@pytest.mark.parametrize("url, expected", [
    (PDF_URL, "abc-Paper-Conference.pdf"),
    ("https://papers.nips.cc/paper/2019/file/x%20y-Paper.pdf?dl=1", "x y-Paper.pdf"),
])
def test_file_name_from_url(url: str, expected: str) -> None:
    assert file_name_from_url(url) == expected


def test_file_name_from_url_without_segment_raises() -> None:
    with pytest.raises(ValueError):
        file_name_from_url("https://papers.nips.cc/")


def test_file_name_from_url_ignores_encoded_directory_parts() -> None:
    url = "https://papers.nips.cc/paper/2023/file/..%2F..%2Fescaped-Paper.pdf"

    assert file_name_from_url(url) == "escaped-Paper.pdf"


@pytest.mark.parametrize("url", [
    "https://papers.nips.cc/paper/2023/file/..",
    "https://papers.nips.cc/paper/2023/file/%2E%2E",
])
def test_file_name_from_url_rejects_dot_segments(url: str) -> None:
    with pytest.raises(ValueError):
        file_name_from_url(url)
