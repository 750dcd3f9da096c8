"""Scrape flow: listing page -> batch fetch -> raw news upsert."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from models import NewsSource

from .batch import BatchScraper, FetchFailure
from .collector import MainnewsCollector
from .persistence import RawNewsStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ScrapeSummary:
    collected: int = 0
    succeeded: int = 0
    failed: int = 0
    persisted: int = 0
    persist_failed: int = 0


def record_fetch_failures(log_path: Path, failures: Iterable[FetchFailure]) -> None:
    """Append failed fetches to an NDJSON log for later inspection."""

    timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as handle:
            for failure in failures:
                payload = {**failure.to_dict(), "timestamp": timestamp}
                handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
    except OSError as exc:  # pragma: no cover - filesystem failure path
        LOGGER.warning("Failed to record fetch failures to %s: %s", log_path, exc)


async def scrape_and_store(
    collector: MainnewsCollector,
    scraper: BatchScraper,
    store: RawNewsStore,
    *,
    page: int,
    limit: int,
    concurrency: int,
    failure_log: Path | None = None,
    source: NewsSource = NewsSource.NAVER_FINANCE_MAINNEWS,
) -> ScrapeSummary:
    LOGGER.info("Starting scrape (page=%d, limit=%d, concurrency=%d)", page, limit, concurrency)
    summary = ScrapeSummary()

    urls = await collector.collect(page, limit)
    summary.collected = len(urls)
    if not urls:
        LOGGER.info("No article URLs found on listing page %d", page)
        return summary

    result = await scraper.run_batch(urls, concurrency)
    summary.succeeded = len(result.articles)
    summary.failed = len(result.failures)

    if result.failures:
        for failure in result.failures:
            LOGGER.warning("Failed to scrape %s: %s", failure.url, failure.error)
        if failure_log is not None:
            record_fetch_failures(failure_log, result.failures)

    if not result.articles:
        LOGGER.info("No articles to persist")
        return summary

    report = await asyncio.to_thread(store.upsert_batch, result.articles, source)
    summary.persisted = len(report.succeeded)
    summary.persist_failed = len(report.failed)

    LOGGER.info(
        "Scrape complete: collected=%d succeeded=%d failed=%d persisted=%d persist_failed=%d",
        summary.collected,
        summary.succeeded,
        summary.failed,
        summary.persisted,
        summary.persist_failed,
    )
    return summary


__all__ = ["ScrapeSummary", "record_fetch_failures", "scrape_and_store"]
