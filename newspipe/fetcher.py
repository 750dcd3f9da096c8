"""Playwright-backed extraction of Naver news articles."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Protocol, Sequence

LOGGER = logging.getLogger(__name__)

_TITLE_SELECTORS = ("#title_area > span", "#title_area", ".media_end_head_headline")
_BODY_SELECTORS = ("#dic_area", "article#dic_area", ".go_trans._article_content")
_PUBLISHED_AT_SELECTORS = (
    ".media_end_head_info_datestamp_time._ARTICLE_DATE_TIME",
    ".media_end_head_info_datestamp_time",
    "span._ARTICLE_DATE_TIME",
)
_REQUIRED_SELECTOR = "#dic_area"
_WHITESPACE_RE = re.compile(r"\s+")


class ArticleFetchError(RuntimeError):
    """Raised when an article page cannot be loaded or parsed."""


@dataclass(slots=True)
class FetchedArticle:
    url: str
    title: str
    body: str
    published_at: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class ArticleFetcher(Protocol):
    """One batch-scoped session that fetches articles one page at a time."""

    async def __aenter__(self) -> "ArticleFetcher":
        ...

    async def __aexit__(self, exc_type, exc, tb) -> bool | None:
        ...

    async def fetch_one(self, url: str) -> FetchedArticle:
        ...


def normalize_single_line(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value.replace("\u00a0", " ")).strip()


def normalize_multiline(value: str) -> str:
    lines = (line.strip() for line in value.replace("\u00a0", " ").split("\n"))
    return "\n".join(line for line in lines if line).strip()


class NaverArticleFetcher:
    """Share one browser context per batch and open a fresh page per article."""

    def __init__(
        self,
        *,
        headless: bool = True,
        page_timeout: float = 30.0,
        wait_timeout: float = 15.0,
    ) -> None:
        self._headless = headless
        self._page_timeout_ms = int(page_timeout * 1000)
        self._wait_timeout_ms = int(wait_timeout * 1000)
        self._playwright_cm = None
        self._playwright = None
        self._browser = None
        self._context = None
        self._timeout_error_cls: type[Exception] | None = None
        self._navigation_error_cls: type[Exception] | None = None

    async def __aenter__(self) -> "NaverArticleFetcher":
        try:
            from playwright.async_api import Error as PlaywrightError
            from playwright.async_api import TimeoutError as PlaywrightTimeoutError
            from playwright.async_api import async_playwright
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise ArticleFetchError(
                "Playwright is not installed. Install it with `pip install playwright` and run `playwright install chromium`."
            ) from exc

        self._timeout_error_cls = PlaywrightTimeoutError
        self._navigation_error_cls = PlaywrightError
        self._playwright_cm = async_playwright()
        self._playwright = await self._playwright_cm.__aenter__()
        try:
            self._browser = await self._playwright.chromium.launch(headless=self._headless)
            self._context = await self._browser.new_context()
        except BaseException as exc:
            await self._shutdown(type(exc), exc, exc.__traceback__)
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self._shutdown(exc_type, exc, tb)
        return False

    async def _shutdown(self, exc_type, exc, tb) -> None:
        try:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright_cm is not None:
                await self._playwright_cm.__aexit__(exc_type, exc, tb)
            self._context = None
            self._browser = None
            self._playwright = None
            self._playwright_cm = None

    async def fetch_one(self, url: str) -> FetchedArticle:
        if self._context is None:
            raise ArticleFetchError("Fetcher must be used as an async context manager")

        page = await self._context.new_page()
        try:
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=self._page_timeout_ms)
            except self._timeout_error_cls as exc:
                raise ArticleFetchError(f"Timed out while loading {url}") from exc
            except self._navigation_error_cls as exc:
                raise ArticleFetchError(f"Failed to load {url}: {exc}") from exc

            try:
                await page.wait_for_load_state("networkidle", timeout=self._wait_timeout_ms)
            except self._timeout_error_cls:
                LOGGER.debug("Network did not settle for %s; continuing", url)

            try:
                await page.wait_for_selector(_REQUIRED_SELECTOR, timeout=self._wait_timeout_ms)
            except self._timeout_error_cls as exc:
                raise ArticleFetchError(f"Article body {_REQUIRED_SELECTOR!r} not found on {url}") from exc

            return await self._extract(page, url)
        finally:
            await page.close()

    async def _extract(self, page, url: str) -> FetchedArticle:
        title = await _first_text(page, _TITLE_SELECTORS)
        body = await _first_text(page, _BODY_SELECTORS, multiline=True)
        published_at = await _published_at(page)
        if not title:
            title = normalize_single_line(await page.title())
        return FetchedArticle(url=url, title=title, body=body, published_at=published_at)


async def _first_text(page, selectors: Sequence[str], *, multiline: bool = False) -> str:
    for selector in selectors:
        element = page.locator(selector).first
        if await element.count() == 0:
            continue
        raw = await element.inner_text()
        text = normalize_multiline(raw) if multiline else normalize_single_line(raw)
        if text:
            return text
    return ""


async def _published_at(page) -> str:
    for selector in _PUBLISHED_AT_SELECTORS:
        element = page.locator(selector).first
        if await element.count() == 0:
            continue
        data_date_time = await element.get_attribute("data-date-time")
        if data_date_time and data_date_time.strip():
            return normalize_single_line(data_date_time)
        text = normalize_single_line(await element.inner_text())
        if text:
            return text
    return ""


__all__ = [
    "ArticleFetchError",
    "ArticleFetcher",
    "FetchedArticle",
    "NaverArticleFetcher",
    "normalize_multiline",
    "normalize_single_line",
]
