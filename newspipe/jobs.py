"""Single-flight controller for the scrape and analysis jobs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .analysis import AnalysisRunner, Analyzer, DailySummaryBuilder, KeywordAnalyzer
from .batch import BatchScraper
from .collector import MainnewsCollector
from .config import PipelineConfig
from .fetcher import ArticleFetcher, NaverArticleFetcher
from .persistence import RawNewsStore
from .pipeline import scrape_and_store

LOGGER = logging.getLogger(__name__)

FAILED_RETRY_DEFAULT_LIMIT = 20
FAILED_RETRY_MAX_LIMIT = 100
FAILED_RETRY_DEFAULT_SINCE_HOURS = 24
FAILED_RETRY_MAX_SINCE_HOURS = 24 * 7

JobBody = Callable[[], Awaitable[Any]]


class JobKind(str, Enum):
    SCRAPE = "scrape"
    ANALYSIS = "analysis"


@dataclass(frozen=True, slots=True)
class JobRuntimeState:
    running: bool = False
    started_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class TriggerResult:
    started: bool
    reason: Optional[str] = None
    running_since: Optional[datetime] = None


@dataclass(slots=True)
class _JobSlot:
    running: bool = False
    started_at: Optional[datetime] = None

    def snapshot(self) -> JobRuntimeState:
        return JobRuntimeState(running=self.running, started_at=self.started_at)


def validate_retry_bounds(limit: int, since_hours: int) -> None:
    if not 1 <= limit <= FAILED_RETRY_MAX_LIMIT or not 1 <= since_hours <= FAILED_RETRY_MAX_SINCE_HOURS:
        raise ValueError(
            f"Invalid retry parameters. limit=1..{FAILED_RETRY_MAX_LIMIT}, "
            f"sinceHours=1..{FAILED_RETRY_MAX_SINCE_HOURS}"
        )


class JobController:
    """Start at most one scrape and one analysis job at a time.

    A trigger never waits: when the job kind is already running the caller
    gets ``TriggerResult(started=False)`` with the running job's start time.
    Otherwise the job body is spawned as a task on the running event loop and
    the lock is released in ``finally`` once that task ends, whatever the
    outcome. Each controller instance owns its own state.
    """

    def __init__(
        self,
        *,
        scrape_job: JobBody,
        analysis_job: JobBody,
        reset_failed: Callable[[int, timedelta], Awaitable[int]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._jobs: dict[JobKind, JobBody] = {
            JobKind.SCRAPE: scrape_job,
            JobKind.ANALYSIS: analysis_job,
        }
        self._reset_failed = reset_failed
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._slots = {kind: _JobSlot() for kind in JobKind}
        self._tasks: set[asyncio.Task] = set()

    def trigger(self, kind: JobKind, source: str, job: JobBody | None = None) -> TriggerResult:
        kind = JobKind(kind)
        slot = self._slots[kind]
        if slot.running:
            return TriggerResult(started=False, reason="already_running", running_since=slot.started_at)

        loop = asyncio.get_running_loop()
        body = job or self._jobs[kind]
        slot.running = True
        slot.started_at = self._clock()
        LOGGER.info("%s lock acquired (source=%s)", kind.value.capitalize(), source)

        task = loop.create_task(self._run(kind, source, body, time.monotonic()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return TriggerResult(started=True)

    def trigger_scrape(self, source: str = "manual") -> TriggerResult:
        return self.trigger(JobKind.SCRAPE, source)

    def trigger_analysis(self, source: str = "manual") -> TriggerResult:
        return self.trigger(JobKind.ANALYSIS, source)

    def trigger_failed_retry(
        self,
        source: str = "retry_manual",
        *,
        limit: int = FAILED_RETRY_DEFAULT_LIMIT,
        since_hours: int = FAILED_RETRY_DEFAULT_SINCE_HOURS,
    ) -> TriggerResult:
        validate_retry_bounds(limit, since_hours)
        if self._reset_failed is None:
            raise RuntimeError("Failed-record retry is not configured for this controller")

        async def retry_then_analyse() -> Any:
            reset_count = await self._reset_failed(limit, timedelta(hours=since_hours))
            LOGGER.info("Reset %d failed records before analysis (source=%s)", reset_count, source)
            return await self._jobs[JobKind.ANALYSIS]()

        return self.trigger(JobKind.ANALYSIS, source, job=retry_then_analyse)

    def runtime_state(self, kind: JobKind) -> JobRuntimeState:
        return self._slots[JobKind(kind)].snapshot()

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)

    async def _run(self, kind: JobKind, source: str, body: JobBody, started: float) -> None:
        label = kind.value.capitalize()
        slot = self._slots[kind]
        try:
            outcome = await body()
            LOGGER.info(
                "%s completed (source=%s, duration_ms=%d, result=%s)",
                label,
                source,
                (time.monotonic() - started) * 1000,
                outcome,
            )
        except Exception:
            LOGGER.exception(
                "%s failed (source=%s, duration_ms=%d)",
                label,
                source,
                (time.monotonic() - started) * 1000,
            )
        finally:
            slot.running = False
            slot.started_at = None
            LOGGER.info("%s lock released (source=%s)", label, source)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def status_report(controller: JobController, store: RawNewsStore) -> dict[str, Any]:
    state = controller.runtime_state(JobKind.ANALYSIS)
    counts = store.status_counts()
    return {
        "running": state.running,
        "runningSince": _isoformat(state.started_at),
        "statusCounts": {status.value: count for status, count in counts.items()},
    }


def article_fetcher_factory(config: PipelineConfig) -> Callable[[], ArticleFetcher]:
    """Return a factory building one Playwright fetcher per batch from ``config``."""

    def factory() -> ArticleFetcher:
        return NaverArticleFetcher(
            headless=config.scrape.headless,
            page_timeout=config.timeout.page_timeout,
            wait_timeout=config.timeout.wait_timeout,
        )

    return factory


def create_job_controller(
    config: PipelineConfig,
    store: RawNewsStore,
    *,
    fetcher_factory: Callable[[], ArticleFetcher] | None = None,
    analyzer: Analyzer | None = None,
    collector_factory: Callable[[], MainnewsCollector] | None = None,
) -> JobController:
    """Wire the scrape and analysis flows into a :class:`JobController`."""

    if fetcher_factory is None:
        fetcher_factory = article_fetcher_factory(config)

    if collector_factory is None:
        def collector_factory() -> MainnewsCollector:
            return MainnewsCollector(config)

    scraper = BatchScraper(fetcher_factory, item_timeout=config.timeout.item_timeout)
    runner = AnalysisRunner(store, analyzer or KeywordAnalyzer())
    summary_builder = DailySummaryBuilder(store, tz_name=config.schedule.timezone)

    async def scrape_job():
        async with collector_factory() as collector:
            return await scrape_and_store(
                collector,
                scraper,
                store,
                page=config.scrape.page,
                limit=config.scrape.limit,
                concurrency=config.scrape.concurrency,
                failure_log=config.fetch_failure_log,
            )

    async def analysis_job():
        stats = await runner.run(config.analysis.batch_size)
        summary = await summary_builder.run()
        return stats, summary

    async def reset_failed(limit: int, since: timedelta) -> int:
        return await asyncio.to_thread(store.reset_failed, limit, since)

    return JobController(scrape_job=scrape_job, analysis_job=analysis_job, reset_failed=reset_failed)


__all__ = [
    "FAILED_RETRY_DEFAULT_LIMIT",
    "FAILED_RETRY_DEFAULT_SINCE_HOURS",
    "FAILED_RETRY_MAX_LIMIT",
    "FAILED_RETRY_MAX_SINCE_HOURS",
    "JobController",
    "JobKind",
    "JobRuntimeState",
    "TriggerResult",
    "article_fetcher_factory",
    "create_job_controller",
    "status_report",
    "validate_retry_bounds",
]
