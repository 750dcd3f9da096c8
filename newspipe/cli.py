"""Command-line entrypoint for the news ingestion pipeline."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import date, timedelta
from typing import Sequence

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from models import Base, NewsSource

from .analysis import AnalysisRunner, DailySummaryBuilder, KeywordAnalyzer
from .batch import BatchScraper
from .collector import ListingFetchError, MainnewsCollector
from .config import PipelineConfig, load_config
from .fetcher import ArticleFetchError, NaverArticleFetcher
from .jobs import (
    FAILED_RETRY_DEFAULT_LIMIT,
    FAILED_RETRY_DEFAULT_SINCE_HOURS,
    JobController,
    article_fetcher_factory,
    create_job_controller,
    validate_retry_bounds,
)
from .news_id import InvalidUrlFormat, validate_article_url
from .persistence import PersistenceError, RawNewsStore
from .pipeline import scrape_and_store
from .scheduler import build_scheduler, register_schedules

LOGGER = logging.getLogger(__name__)

ANALYSIS_PAGE_SIZE_DEFAULT = 20
ANALYSIS_PAGE_SIZE_MAX = 100


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"must be >= 1 (got {parsed})")
    return parsed


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collect Naver finance news and track analysis status")
    parser.add_argument(
        "--db-url",
        type=str,
        default=None,
        help="SQLAlchemy database URL (defaults to NEWSPIPE_DATABASE_URL)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scrape = subparsers.add_parser("scrape", help="Collect the listing page, scrape articles and store them")
    scrape.add_argument("--page", type=_positive_int, default=None, help="Listing page number (default: 1)")
    scrape.add_argument("--limit", type=_positive_int, default=None, help="Maximum number of articles to collect")
    scrape.add_argument("--concurrency", type=_positive_int, default=None, help="Number of concurrent browser pages")

    fetch = subparsers.add_parser("fetch", help="Scrape a single article URL and print it as JSON")
    fetch.add_argument("--url", required=True, help="Article URL, e.g. https://n.news.naver.com/mnews/article/015/0005249661")
    fetch.add_argument("--save", action="store_true", help="Also upsert the article into the database")

    analyze = subparsers.add_parser("analyze", help="Analyse pending articles")
    analyze.add_argument("--limit", type=_positive_int, default=None, help="Maximum number of pending records to claim")

    retry = subparsers.add_parser("retry-failed", help="Reset recently failed records to PENDING and analyse them")
    retry.add_argument("--limit", type=int, default=FAILED_RETRY_DEFAULT_LIMIT, help="Maximum number of records to reset")
    retry.add_argument(
        "--since-hours",
        type=int,
        default=FAILED_RETRY_DEFAULT_SINCE_HOURS,
        help="Only reset records that failed within this many hours",
    )

    subparsers.add_parser("status", help="Print record counts per status as JSON")

    analyses = subparsers.add_parser("analyses", help="Print stored analyses as JSON")
    analyses.add_argument("--news-id", default=None, help="Print one analysis, e.g. 015#0005249661")
    analyses.add_argument("--page", type=_positive_int, default=1, help="Page number, newest first (default: 1)")
    analyses.add_argument(
        "--page-size",
        type=_positive_int,
        default=ANALYSIS_PAGE_SIZE_DEFAULT,
        help=f"Analyses per page, capped at {ANALYSIS_PAGE_SIZE_MAX}",
    )

    summary = subparsers.add_parser("summary", help="Print the market summary for one day as JSON")
    summary.add_argument("--date", type=_iso_date, default=None, help="Summary date YYYY-MM-DD (default: today)")
    summary.add_argument("--rebuild", action="store_true", help="Rebuild the summary from stored analyses first")
    subparsers.add_parser("serve", help="Run the scrape and analysis schedules until interrupted")
    return parser


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace) -> PipelineConfig:
    config = load_config()
    if args.db_url:
        config.db_url = args.db_url
    if args.command == "scrape" and args.page:
        config.scrape.page = args.page
    if args.command == "scrape" and args.limit:
        config.scrape.limit = args.limit
    if args.command == "analyze" and args.limit:
        config.analysis.batch_size = args.limit
    if args.command == "scrape" and args.concurrency:
        config.scrape.concurrency = args.concurrency
    return config


def build_store(db_url: str) -> RawNewsStore:
    engine = create_engine(db_url, pool_pre_ping=True)
    Base.metadata.create_all(engine)  # ensure required tables exist before queries
    return RawNewsStore(sessionmaker(bind=engine))


async def _run_scrape(config: PipelineConfig, store: RawNewsStore) -> int:
    scraper = BatchScraper(article_fetcher_factory(config), item_timeout=config.timeout.item_timeout)
    async with MainnewsCollector(config) as collector:
        summary = await scrape_and_store(
            collector,
            scraper,
            store,
            page=config.scrape.page,
            limit=config.scrape.limit,
            concurrency=config.scrape.concurrency,
            failure_log=config.fetch_failure_log,
        )
    return 0 if summary.failed == 0 and summary.persist_failed == 0 else 1


async def _run_fetch(config: PipelineConfig, url: str, store: RawNewsStore | None) -> int:
    async with article_fetcher_factory(config)() as fetcher:
        article = await fetcher.fetch_one(url)
    _print_json(article.to_dict())

    if store is not None:
        report = await asyncio.to_thread(store.upsert_batch, [article], NewsSource.NAVER_NEWS_SINGLE)
        if report.failed:
            return 1
    return 0


async def _run_analyze(config: PipelineConfig, store: RawNewsStore) -> int:
    stats = await AnalysisRunner(store, KeywordAnalyzer()).run(config.analysis.batch_size)
    await DailySummaryBuilder(store, tz_name=config.schedule.timezone).run()
    return 0 if stats.failed == 0 else 1


async def _run_retry(config: PipelineConfig, store: RawNewsStore, limit: int, since_hours: int) -> int:
    reset_count = await asyncio.to_thread(store.reset_failed, limit, timedelta(hours=since_hours))
    LOGGER.info("Reset %d failed records", reset_count)
    return await _run_analyze(config, store)


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _show_analyses(store: RawNewsStore, news_id: str | None, page: int, page_size: int) -> int:
    if news_id:
        analysis = store.get_analysis(news_id)
        if analysis is None:
            LOGGER.error("No analysis found for %s", news_id)
            return 1
        _print_json(analysis.to_dict())
        return 0

    page_size = min(page_size, ANALYSIS_PAGE_SIZE_MAX)
    items, total = store.list_analyses(page, page_size)
    _print_json(
        {
            "page": page,
            "pageSize": page_size,
            "total": total,
            "data": [item.to_dict() for item in items],
        }
    )
    return 0


async def _show_summary(config: PipelineConfig, store: RawNewsStore, summary_date: date | None, rebuild: bool) -> int:
    builder = DailySummaryBuilder(store, tz_name=config.schedule.timezone)
    target = summary_date or builder.today()
    if rebuild:
        await builder.run(target)
    summary = await asyncio.to_thread(store.get_daily_summary, target)
    if summary is None:
        LOGGER.error("No summary stored for %s", target.isoformat())
        return 1
    _print_json(summary)
    return 0


async def _serve(config: PipelineConfig, store: RawNewsStore) -> int:
    controller: JobController = create_job_controller(config, store)
    scheduler = build_scheduler(config.schedule)
    register_schedules(scheduler, controller, config.schedule)
    scheduler.start()
    LOGGER.info("Scheduler running; press Ctrl+C to stop")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await controller.wait_idle()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = build_config(args)

    url: str | None = None
    if args.command == "fetch":
        try:
            url = validate_article_url(args.url)
        except InvalidUrlFormat as exc:
            parser.error(str(exc))
    if args.command == "retry-failed":
        try:
            validate_retry_bounds(args.limit, args.since_hours)
        except ValueError as exc:
            parser.error(str(exc))

    needs_db = args.command != "fetch" or args.save
    if needs_db and not config.db_url:
        parser.error("--db-url or NEWSPIPE_DATABASE_URL is required")

    store = build_store(config.db_url) if needs_db else None
    config.ensure_directories()

    try:
        if args.command == "scrape":
            return asyncio.run(_run_scrape(config, store))
        if args.command == "fetch":
            return asyncio.run(_run_fetch(config, url, store))
        if args.command == "analyze":
            return asyncio.run(_run_analyze(config, store))
        if args.command == "retry-failed":
            return asyncio.run(_run_retry(config, store, args.limit, args.since_hours))
        if args.command == "status":
            counts = store.status_counts()
            _print_json({status.value: count for status, count in counts.items()})
            return 0
        if args.command == "analyses":
            return _show_analyses(store, args.news_id, args.page, args.page_size)
        if args.command == "summary":
            return asyncio.run(_show_summary(config, store, args.date, args.rebuild))
        if args.command == "serve":
            return asyncio.run(_serve(config, store))
    except (ListingFetchError, ArticleFetchError, PersistenceError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1
    except KeyboardInterrupt:  # pragma: no cover - interactive stop
        LOGGER.info("Interrupted")
        return 130

    parser.error(f"Unknown command {args.command!r}")
    return 2


__all__ = ["build_arg_parser", "build_config", "build_store", "configure_logging", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
