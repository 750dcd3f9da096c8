"""Collect canonical article URLs from the Naver Finance mainnews listing."""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from .config import PipelineConfig
from .news_id import InvalidUrlFormat, canonical_article_url, to_news_id

LOGGER = logging.getLogger(__name__)

_LISTING_BASE_URL = "https://finance.naver.com"
_LISTING_HOST = "finance.naver.com"
_LISTING_ARTICLE_PATH = "/news/news_read.naver"


class ListingFetchError(RuntimeError):
    """Raised when the listing page cannot be fetched."""


def _canonicalize_listing_href(href: str | None) -> str | None:
    if not href:
        return None
    try:
        if urlsplit(href.strip()).hostname not in (None, _LISTING_HOST):
            return None
        parts = urlsplit(urljoin(_LISTING_BASE_URL, href.strip()))
    except ValueError:
        return None
    if parts.path != _LISTING_ARTICLE_PATH:
        return None

    params = parse_qs(parts.query)
    office_values = params.get("office_id")
    article_values = params.get("article_id")
    if not office_values or not article_values:
        return None

    try:
        return canonical_article_url(office_values[0], article_values[0])
    except InvalidUrlFormat:
        return None


def extract_article_urls(html: str, limit: int) -> list[str]:
    """Return up to ``limit`` distinct canonical article URLs in first-seen order."""

    soup = BeautifulSoup(html, "html.parser")
    urls: list[str] = []
    seen_ids: set[str] = set()

    for anchor in soup.find_all("a", href=True):
        if len(urls) >= limit:
            break
        canonical = _canonicalize_listing_href(anchor.get("href"))
        if canonical is None:
            continue
        news_id = to_news_id(canonical)
        if news_id in seen_ids:
            continue
        seen_ids.add(news_id)
        urls.append(canonical)

    return urls


class MainnewsCollector:
    """Fetch one listing page and turn its article links into canonical URLs."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client = client or self._build_client()
        self._owns_client = client is None

    def _build_client(self) -> httpx.AsyncClient:
        kwargs: dict[str, object] = {
            "timeout": self._config.timeout.request_timeout,
            "headers": {"User-Agent": self._config.scrape.user_agent},
            "follow_redirects": True,
        }
        if self._transport:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def collect(self, page: int, limit: int) -> list[str]:
        if page < 1:
            raise ValueError(f"page must be >= 1 (got {page})")
        if limit < 1:
            raise ValueError(f"limit must be >= 1 (got {limit})")

        listing_url = self._config.scrape.mainnews_url
        try:
            response = await self._client.get(listing_url, params={"page": str(page)})
        except httpx.HTTPError as exc:
            raise ListingFetchError(f"Listing request failed for {listing_url}: {exc}") from exc

        if not response.is_success:
            raise ListingFetchError(f"Listing request failed: HTTP {response.status_code} for {response.url}")

        urls = extract_article_urls(response.text, limit)
        LOGGER.info("Collected %d article URLs from listing page %d (limit=%d)", len(urls), page, limit)
        return urls

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "MainnewsCollector":
        return self

    async def __aexit__(self, *_exc_info) -> None:
        await self.aclose()


__all__ = ["ListingFetchError", "MainnewsCollector", "extract_article_urls"]
