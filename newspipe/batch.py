"""Pull-based worker pool that fetches a batch of articles concurrently."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .fetcher import ArticleFetcher, FetchedArticle

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FetchFailure:
    url: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "error": self.error}


@dataclass(slots=True)
class BatchResult:
    articles: list[FetchedArticle] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)


def _describe_error(exc: BaseException) -> str:
    message = str(exc)
    return message if message else type(exc).__name__


class BatchScraper:
    """Run ``fetch_one`` over many URLs with a bounded number of workers.

    The fetcher factory is entered once per batch; every worker shares that
    session and each item is fetched on its own page, so a failing item is
    reported as a :class:`FetchFailure` without affecting its siblings.
    """

    def __init__(
        self,
        fetcher_factory: Callable[[], ArticleFetcher],
        *,
        item_timeout: float | None = None,
    ) -> None:
        self._fetcher_factory = fetcher_factory
        self._item_timeout = item_timeout

    async def run_batch(self, urls: Iterable[str], concurrency: int) -> BatchResult:
        targets = list(urls)
        if not targets:
            return BatchResult()
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency <= 0:
            raise ValueError(f"concurrency must be a positive integer (got {concurrency!r})")

        worker_count = min(concurrency, len(targets))
        slots: list[FetchedArticle | None] = [None] * len(targets)
        failures: list[FetchFailure] = []
        cursor = 0

        async with self._fetcher_factory() as fetcher:

            async def worker(worker_id: int) -> None:
                nonlocal cursor
                while True:
                    index = cursor
                    cursor += 1
                    if index >= len(targets):
                        return

                    target_url = targets[index]
                    try:
                        slots[index] = await self._fetch(fetcher, target_url)
                    except Exception as exc:
                        LOGGER.warning("Worker %d failed to fetch %s: %s", worker_id, target_url, exc)
                        failures.append(FetchFailure(url=target_url, error=_describe_error(exc)))

            await asyncio.gather(*(worker(worker_id) for worker_id in range(worker_count)))

        articles = [article for article in slots if article is not None]
        LOGGER.info(
            "Batch finished: %d succeeded, %d failed (workers=%d)",
            len(articles),
            len(failures),
            worker_count,
        )
        return BatchResult(articles=articles, failures=failures)

    async def _fetch(self, fetcher: ArticleFetcher, url: str) -> FetchedArticle:
        if self._item_timeout is None:
            return await fetcher.fetch_one(url)
        try:
            return await asyncio.wait_for(fetcher.fetch_one(url), timeout=self._item_timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"Timed out after {self._item_timeout:g}s fetching {url}") from exc


__all__ = ["BatchResult", "BatchScraper", "FetchFailure"]
