"""Shared typed models for the archive pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

KIND_ROOT = "root"
KIND_YEAR = "year"
KIND_PAPER = "paper"
KIND_PDF = "pdf"

STATUS_UPLOADED = "uploaded"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PageRef:
    """Absolute URL discovered on a page, tagged with the page level it points to."""

    url: str
    kind: str


@dataclass(frozen=True, slots=True)
class YearTask:
    ref: PageRef
    year: int

    @property
    def url(self) -> str:
        return self.ref.url


@dataclass(frozen=True, slots=True)
class PaperTask:
    ref: PageRef

    @property
    def url(self) -> str:
        return self.ref.url


@dataclass(frozen=True, slots=True)
class DownloadedArtifact:
    """A PDF written to local disk, waiting to be handed to the uploader."""

    path: Path
    name: str
    size: int


@dataclass(frozen=True, slots=True)
class RemoteRef:
    file_id: str
    name: str
    web_view_link: str


@dataclass(slots=True)
class PaperOutcome:
    url: str
    status: str
    detail: str = ""


@dataclass(slots=True)
class YearOutcome:
    url: str
    papers: list[PaperOutcome] = field(default_factory=list)
    failed: bool = False


@dataclass(slots=True)
class RunSummary:
    """Counts for one completed run; logged at the end, never persisted."""

    years: list[YearOutcome] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def count(self, status: str) -> int:
        return sum(1 for year in self.years for paper in year.papers if paper.status == status)

    @property
    def uploaded(self) -> int:
        return self.count(STATUS_UPLOADED)

    @property
    def skipped(self) -> int:
        return self.count(STATUS_SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(STATUS_FAILED)

    @property
    def failed_years(self) -> int:
        return sum(1 for year in self.years if year.failed)
