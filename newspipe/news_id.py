"""Canonical identifiers for Naver news articles."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

CANONICAL_ARTICLE_BASE = "https://n.news.naver.com/mnews/article"
_ARTICLE_PATH_PATTERN = re.compile(r"^/mnews/article/(\d+)/(\d+)(?:/|$)")
_NUMERIC_PATTERN = re.compile(r"\d+")
_NEWS_ID_SEPARATOR = "#"


class InvalidUrlFormat(ValueError):
    """Raised when a URL does not have the expected article path shape."""


def canonical_article_url(office_id: str, article_id: str) -> str:
    """Build the canonical article URL from its two numeric components."""

    if not _NUMERIC_PATTERN.fullmatch(office_id or "") or not _NUMERIC_PATTERN.fullmatch(article_id or ""):
        raise InvalidUrlFormat(f"Non-numeric article components: office_id={office_id!r} article_id={article_id!r}")
    return f"{CANONICAL_ARTICLE_BASE}/{office_id}/{article_id}"


def to_news_id(url: str) -> str:
    """Derive the ``office#article`` identifier from an article URL."""

    path = urlsplit(url).path
    match = _ARTICLE_PATH_PATTERN.match(path)
    if not match:
        raise InvalidUrlFormat(f"Unsupported article URL format: {url}")
    office_id, article_id = match.groups()
    return f"{office_id}{_NEWS_ID_SEPARATOR}{article_id}"


def validate_article_url(raw_url: str) -> str:
    """Return ``raw_url`` normalised when it points at an n.news.naver.com article."""

    try:
        parsed = urlsplit(raw_url.strip())
    except ValueError as exc:
        raise InvalidUrlFormat(f"Invalid URL: {raw_url}") from exc

    if parsed.scheme != "https" or parsed.hostname != "n.news.naver.com":
        raise InvalidUrlFormat(
            f"Only Naver news article URLs are supported (e.g. {CANONICAL_ARTICLE_BASE}/015/0005249661): {raw_url}"
        )
    if not _ARTICLE_PATH_PATTERN.match(parsed.path):
        raise InvalidUrlFormat(f"Unsupported article URL format: {raw_url}")
    return parsed.geturl()


__all__ = [
    "CANONICAL_ARTICLE_BASE",
    "InvalidUrlFormat",
    "canonical_article_url",
    "to_news_id",
    "validate_article_url",
]
