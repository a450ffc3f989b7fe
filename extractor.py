"""Selector-driven link extraction for the archive's three page shapes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from models import KIND_PAPER, KIND_PDF, KIND_YEAR, PageRef, YearTask

_NON_DIGITS = re.compile(r"\D+")

DEFAULT_MAX_YEARS = 5


@dataclass(frozen=True, slots=True)
class LinkSelector:
    """CSS selector for anchors plus the kind of page the anchors lead to."""

    css: str
    kind: str
    first_only: bool = False


YEAR_LINKS = LinkSelector(css='a[href^="/paper"]', kind=KIND_YEAR)
PAPER_LINKS = LinkSelector(css='a[href$=".html"]', kind=KIND_PAPER)
# Papers using any other file naming convention are not picked up.
PDF_LINK = LinkSelector(
    css='a[href$="-Paper-Conference.pdf"], a[href$="-Paper.pdf"]',
    kind=KIND_PDF,
    first_only=True,
)


def extract(content: BeautifulSoup, selector: LinkSelector, base_url: str) -> list[PageRef]:
    """Return the anchors in ``content`` matched by ``selector`` as absolute PageRefs.

    An empty list means the page had nothing to follow; it is not an error.
    """
    if selector.first_only:
        anchor = content.select_one(selector.css)
        anchors = [anchor] if anchor is not None else []
    else:
        anchors = content.select(selector.css)

    refs: list[PageRef] = []
    for anchor in anchors:
        href = anchor.get("href")
        if not href:
            continue
        refs.append(PageRef(url=urljoin(base_url, href), kind=selector.kind))
    return refs


def extract_year(url: str) -> int:
    """Concatenate every digit in ``url`` into an int; 0 when there are none."""
    digits = _NON_DIGITS.sub("", url)
    if not digits:
        return 0
    return int(digits)


def select_latest_years(refs: Iterable[PageRef], limit: int = DEFAULT_MAX_YEARS) -> list[YearTask]:
    """Dedupe year links by URL and keep the ``limit`` newest, newest first.

    Ties keep discovery order.
    """
    seen: set[str] = set()
    tasks: list[YearTask] = []
    for ref in refs:
        if ref.url in seen:
            continue
        seen.add(ref.url)
        tasks.append(YearTask(ref=ref, year=extract_year(ref.url)))

    tasks.sort(key=lambda task: task.year, reverse=True)
    return tasks[:limit]
