"""Database persistence and lifecycle transitions for collected news."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import MarketDailySummary, NewsAnalysis, NewsSource, RawNews, RawNewsStatus

from .fetcher import FetchedArticle
from .news_id import InvalidUrlFormat, to_news_id

LOGGER = logging.getLogger(__name__)

_FINAL_STATUSES = (RawNewsStatus.DONE, RawNewsStatus.FAILED)


class PersistenceError(RuntimeError):
    """Raised when a store read or write fails."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(slots=True)
class UpsertReport:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    failed: dict[str, PersistenceError] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return [*self.created, *self.updated]


@dataclass(slots=True)
class StoredAnalysis:
    news_id: str
    analysis_result: dict[str, Any]
    analyzed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "news_id": self.news_id,
            "analysis_result": self.analysis_result,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


def local_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """Return the naive UTC ``[start, end)`` window covering ``day`` in ``tz_name``."""

    zone = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


@dataclass(slots=True)
class PendingRawNews:
    news_id: str
    url: str
    title: str
    body: str
    published_at: str
    collected_at: datetime
    source: str


class RawNewsStore:
    """Idempotent ingestion and optimistic status claims for ``raw_news`` rows.

    Every method opens its own short-lived session so no transaction ever
    spans more than one record.
    """

    def __init__(self, session_factory, *, clock: Callable[[], datetime] | None = None) -> None:
        self._session_factory = session_factory
        self._clock = clock or _utcnow

    def upsert_batch(
        self,
        articles: Iterable[FetchedArticle],
        source: NewsSource = NewsSource.NAVER_FINANCE_MAINNEWS,
    ) -> UpsertReport:
        report = UpsertReport()
        now = self._clock()
        source_value = NewsSource(source).value

        for article in articles:
            try:
                news_id = to_news_id(article.url)
            except InvalidUrlFormat as exc:
                LOGGER.warning("Skipping article with unsupported URL %s: %s", article.url, exc)
                report.failed[article.url] = PersistenceError(str(exc))
                continue

            try:
                created = self._upsert_one(article, news_id, source_value, now)
            except SQLAlchemyError as exc:
                LOGGER.error("Failed to persist %s: %s", news_id, exc)
                report.failed[news_id] = PersistenceError(f"Failed to persist {news_id}: {exc}")
                continue

            if created:
                report.created.append(news_id)
            else:
                report.updated.append(news_id)

        LOGGER.info(
            "Upserted raw news: created=%d updated=%d failed=%d",
            len(report.created),
            len(report.updated),
            len(report.failed),
        )
        return report

    def _upsert_one(self, article: FetchedArticle, news_id: str, source: str, now: datetime) -> bool:
        with self._session_factory() as session:
            if self._refresh_existing(session, article, news_id, now):
                session.commit()
                return False

            session.add(
                RawNews(
                    news_id=news_id,
                    url=article.url,
                    title=article.title,
                    body=article.body,
                    published_at=article.published_at,
                    collected_at=now,
                    last_seen_at=now,
                    source=source,
                    status=RawNewsStatus.PENDING.value,
                    status_updated_at=now,
                    version=1,
                )
            )
            try:
                session.commit()
                return True
            except IntegrityError:
                # Another writer inserted the same news_id first
                session.rollback()
                if not self._refresh_existing(session, article, news_id, now):
                    raise
                session.commit()
                return False

    @staticmethod
    def _refresh_existing(session: Session, article: FetchedArticle, news_id: str, now: datetime) -> bool:
        result = session.execute(
            update(RawNews)
            .where(RawNews.news_id == news_id)
            .values(
                url=article.url,
                title=article.title,
                body=article.body,
                published_at=article.published_at,
                last_seen_at=now,
                version=RawNews.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def fetch_pending(self, limit: int) -> list[PendingRawNews]:
        if limit < 1:
            return []
        query = (
            select(RawNews)
            .where(RawNews.status == RawNewsStatus.PENDING.value)
            .order_by(RawNews.collected_at.asc(), RawNews.id.asc())
            .limit(limit)
        )
        try:
            with self._session_factory() as session:
                return [
                    PendingRawNews(
                        news_id=row.news_id,
                        url=row.url,
                        title=row.title,
                        body=row.body,
                        published_at=row.published_at,
                        collected_at=row.collected_at,
                        source=row.source,
                    )
                    for row in session.scalars(query)
                ]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to fetch pending raw news: {exc}") from exc

    def try_claim(self, news_id: str) -> bool:
        """Move one record from PENDING to PROCESSING; ``False`` when another claimant won."""

        try:
            with self._session_factory() as session:
                result = session.execute(
                    update(RawNews)
                    .where(
                        RawNews.news_id == news_id,
                        RawNews.status == RawNewsStatus.PENDING.value,
                    )
                    .values(status=RawNewsStatus.PROCESSING.value, status_updated_at=self._clock())
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to claim {news_id}: {exc}") from exc

    def finalize(self, news_id: str, status: RawNewsStatus) -> None:
        status = RawNewsStatus(status)
        if status not in _FINAL_STATUSES:
            raise ValueError(f"finalize() accepts DONE or FAILED, not {status.value}")

        try:
            with self._session_factory() as session:
                result = session.execute(
                    update(RawNews)
                    .where(RawNews.news_id == news_id)
                    .values(status=status.value, status_updated_at=self._clock())
                    .execution_options(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to mark {news_id} as {status.value}: {exc}") from exc

        if result.rowcount == 0:
            LOGGER.warning("finalize(%s, %s) matched no record", news_id, status.value)

    def status_counts(self) -> dict[RawNewsStatus, int]:
        counts = {status: 0 for status in RawNewsStatus}
        query = select(RawNews.status, func.count(RawNews.id)).group_by(RawNews.status)
        try:
            with self._session_factory() as session:
                for status_value, count in session.execute(query):
                    try:
                        counts[RawNewsStatus(status_value)] = int(count)
                    except ValueError:
                        LOGGER.warning("Ignoring unknown raw news status %r", status_value)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to count raw news by status: {exc}") from exc
        return counts

    def reset_failed(self, limit: int, since: timedelta) -> int:
        """Return up to ``limit`` FAILED records marked within ``since`` to PENDING."""

        if limit < 1:
            return 0
        cutoff = self._clock() - since
        candidates = (
            select(RawNews.news_id)
            .where(
                RawNews.status == RawNewsStatus.FAILED.value,
                RawNews.status_updated_at >= cutoff,
            )
            .order_by(RawNews.status_updated_at.asc(), RawNews.id.asc())
            .limit(limit)
        )
        try:
            with self._session_factory() as session:
                news_ids = list(session.scalars(candidates))
                if not news_ids:
                    return 0
                result = session.execute(
                    update(RawNews)
                    .where(
                        RawNews.news_id.in_(news_ids),
                        RawNews.status == RawNewsStatus.FAILED.value,
                    )
                    .values(status=RawNewsStatus.PENDING.value, status_updated_at=self._clock())
                    .execution_options(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to reset failed raw news: {exc}") from exc

        LOGGER.info("Reset %d FAILED records to PENDING (limit=%d, since=%s)", result.rowcount, limit, since)
        return result.rowcount

    def save_analysis(self, news_id: str, analysis_result: Mapping) -> None:
        try:
            with self._session_factory() as session:
                record = session.query(NewsAnalysis).filter(NewsAnalysis.news_id == news_id).one_or_none()
                if record is None:
                    record = NewsAnalysis(news_id=news_id)
                    session.add(record)
                record.analysis_result = dict(analysis_result)
                record.analyzed_at = self._clock()
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save analysis for {news_id}: {exc}") from exc

    @staticmethod
    def _to_stored(row: NewsAnalysis) -> StoredAnalysis:
        return StoredAnalysis(
            news_id=row.news_id,
            analysis_result=dict(row.analysis_result or {}),
            analyzed_at=row.analyzed_at,
        )

    def get_analysis(self, news_id: str) -> StoredAnalysis | None:
        try:
            with self._session_factory() as session:
                row = session.query(NewsAnalysis).filter(NewsAnalysis.news_id == news_id).one_or_none()
                return self._to_stored(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load analysis for {news_id}: {exc}") from exc

    def list_analyses(self, page: int, page_size: int) -> tuple[list[StoredAnalysis], int]:
        """Return one page of analyses, newest first, plus the total row count."""

        if page < 1 or page_size < 1:
            raise ValueError(f"page and page_size must be >= 1 (got page={page}, page_size={page_size})")
        query = (
            select(NewsAnalysis)
            .order_by(NewsAnalysis.analyzed_at.desc(), NewsAnalysis.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        try:
            with self._session_factory() as session:
                total = session.scalar(select(func.count(NewsAnalysis.id))) or 0
                items = [self._to_stored(row) for row in session.scalars(query)]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list analyses: {exc}") from exc
        return items, int(total)

    def fetch_analyses_for_date(self, summary_date: date, tz_name: str) -> list[StoredAnalysis]:
        """Analyses whose ``analyzed_at`` falls on ``summary_date`` in ``tz_name``, oldest first."""

        start, end = local_day_bounds(summary_date, tz_name)
        query = (
            select(NewsAnalysis)
            .where(NewsAnalysis.analyzed_at >= start, NewsAnalysis.analyzed_at < end)
            .order_by(NewsAnalysis.analyzed_at.asc(), NewsAnalysis.id.asc())
        )
        try:
            with self._session_factory() as session:
                return [self._to_stored(row) for row in session.scalars(query)]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to fetch analyses for {summary_date.isoformat()}: {exc}") from exc

    def save_daily_summary(self, summary_date: date, summary_result: Mapping) -> None:
        key = summary_date.isoformat()
        try:
            with self._session_factory() as session:
                record = (
                    session.query(MarketDailySummary)
                    .filter(MarketDailySummary.summary_date == key)
                    .one_or_none()
                )
                if record is None:
                    record = MarketDailySummary(summary_date=key)
                    session.add(record)
                record.summary_result = dict(summary_result)
                record.updated_at = self._clock()
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save daily summary for {key}: {exc}") from exc

    def get_daily_summary(self, summary_date: date) -> dict[str, Any] | None:
        key = summary_date.isoformat()
        try:
            with self._session_factory() as session:
                record = (
                    session.query(MarketDailySummary)
                    .filter(MarketDailySummary.summary_date == key)
                    .one_or_none()
                )
                return dict(record.summary_result) if record is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load daily summary for {key}: {exc}") from exc


__all__ = [
    "PendingRawNews",
    "PersistenceError",
    "RawNewsStore",
    "StoredAnalysis",
    "UpsertReport",
    "local_day_bounds",
]
