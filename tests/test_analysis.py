import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base, MarketDailySummary, NewsAnalysis, RawNewsStatus
from newspipe.analysis import (
    AnalysisRunner,
    DailySummaryBuilder,
    KeywordAnalyzer,
    empty_daily_summary,
    summarize_day,
)
from newspipe.fetcher import FetchedArticle
from newspipe.persistence import PendingRawNews, RawNewsStore


def _record(title: str = "코스피 상승 마감", body: str = "코스피가 상승했다. 외국인 매수가 이어졌다. 반도체 업종이 강세였다. 마감 직전 거래가 몰렸다.") -> PendingRawNews:
    return PendingRawNews(
        news_id="015#0000000001",
        url="https://n.news.naver.com/mnews/article/015/0000000001",
        title=title,
        body=body,
        published_at="2025-01-02 09:00:00",
        collected_at=datetime(2025, 1, 2, 9, 0),
        source="naver_finance_mainnews",
    )


class KeywordAnalyzerTestCase(unittest.TestCase):
    def test_analyze_returns_summary_keywords_and_sentiment(self) -> None:
        result = KeywordAnalyzer().analyze(_record())

        self.assertEqual(result["summary"], "코스피가 상승했다. 외국인 매수가 이어졌다. 반도체 업종이 강세였다.")
        self.assertIn("코스피", result["keywords"])
        self.assertEqual(result["sentiment"], "POSITIVE")
        self.assertEqual(result["published_at"], "2025-01-02 09:00:00")

    def test_keywords_are_limited_and_skip_stopwords(self) -> None:
        analyzer = KeywordAnalyzer(max_keywords=2)
        keywords = analyzer.extract_keywords("금리 금리 환율", "그리고 금리 환율 유가")

        self.assertEqual(keywords, ["금리", "환율"])

    def test_sentiment_labels(self) -> None:
        self.assertEqual(KeywordAnalyzer.classify_sentiment("실적 부진으로 주가 하락"), "NEGATIVE")
        self.assertEqual(KeywordAnalyzer.classify_sentiment("상승 이후 하락"), "NEUTRAL")

    def test_empty_body_is_analysed_from_title(self) -> None:
        result = KeywordAnalyzer().analyze(_record(title="반도체 수출 개선", body=""))

        self.assertEqual(result["summary"], "반도체 수출 개선")
        self.assertEqual(result["keywords"], ["반도체", "수출", "개선"])
        self.assertEqual(result["sentiment"], "POSITIVE")

    def test_empty_title_and_body_yield_neutral_result(self) -> None:
        result = KeywordAnalyzer().analyze(_record(title="", body=""))

        self.assertEqual(result["summary"], "")
        self.assertEqual(result["keywords"], [])
        self.assertEqual(result["sentiment"], "NEUTRAL")


class FailingAnalyzer:
    def __init__(self, failing_ids):
        self.failing_ids = set(failing_ids)
        self.seen = []

    def analyze(self, record):
        self.seen.append(record.news_id)
        if record.news_id in self.failing_ids:
            raise RuntimeError("model unavailable")
        return {"summary": record.title}


class AsyncAnalyzer:
    async def analyze(self, record):
        return {"summary": record.title, "async": True}


class AnalysisRunnerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine)
        self.store = RawNewsStore(self.session_factory)
        self.store.upsert_batch(
            [
                FetchedArticle(
                    url=f"https://n.news.naver.com/mnews/article/015/000000000{index}",
                    title=f"title {index}",
                    body=f"body {index}",
                    published_at="",
                )
                for index in (1, 2, 3)
            ]
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    async def test_success_and_failure_are_finalized(self) -> None:
        analyzer = FailingAnalyzer({"015#0000000002"})

        with self.assertLogs("newspipe.analysis", level="ERROR"):
            stats = await AnalysisRunner(self.store, analyzer).run(10)

        self.assertEqual((stats.picked, stats.processed, stats.succeeded, stats.failed), (3, 3, 2, 1))
        self.assertEqual(analyzer.seen, ["015#0000000001", "015#0000000002", "015#0000000003"])
        counts = self.store.status_counts()
        self.assertEqual(counts[RawNewsStatus.DONE], 2)
        self.assertEqual(counts[RawNewsStatus.FAILED], 1)
        self.assertEqual(counts[RawNewsStatus.PENDING], 0)
        self.assertEqual(counts[RawNewsStatus.PROCESSING], 0)

        with self.session_factory() as session:
            saved = {row.news_id: row.analysis_result for row in session.query(NewsAnalysis)}
        self.assertEqual(saved, {"015#0000000001": {"summary": "title 1"}, "015#0000000003": {"summary": "title 3"}})

    async def test_awaitable_analyzer_results_are_awaited(self) -> None:
        stats = await AnalysisRunner(self.store, AsyncAnalyzer()).run(1)

        self.assertEqual(stats.succeeded, 1)
        with self.session_factory() as session:
            row = session.query(NewsAnalysis).one()
        self.assertEqual(row.analysis_result, {"summary": "title 1", "async": True})

    async def test_records_claimed_elsewhere_are_skipped(self) -> None:
        analyzer = FailingAnalyzer(())
        original = self.store.try_claim

        def racing_claim(news_id):
            if news_id == "015#0000000001":
                return False
            return original(news_id)

        with patch.object(self.store, "try_claim", side_effect=racing_claim):
            stats = await AnalysisRunner(self.store, analyzer).run(10)

        self.assertEqual((stats.picked, stats.processed, stats.succeeded), (3, 2, 2))
        self.assertNotIn("015#0000000001", analyzer.seen)
        self.assertEqual(self.store.status_counts()[RawNewsStatus.PENDING], 1)


    async def test_empty_fields_are_finalized_as_done(self) -> None:
        self.store.upsert_batch(
            [
                FetchedArticle(
                    url="https://n.news.naver.com/mnews/article/015/0000000009",
                    title="",
                    body="",
                    published_at="",
                )
            ]
        )

        stats = await AnalysisRunner(self.store, KeywordAnalyzer()).run(10)

        self.assertEqual((stats.succeeded, stats.failed), (4, 0))
        self.assertEqual(self.store.status_counts()[RawNewsStatus.DONE], 4)


class SummarizeDayTestCase(unittest.TestCase):
    def test_aggregates_keywords_and_sentiment(self) -> None:
        summary = summarize_day(
            date(2025, 1, 2),
            [
                {"sentiment": "POSITIVE", "keywords": ["코스피", "반도체"], "summary": "s1"},
                {"sentiment": "NEGATIVE", "keywords": ["환율"], "summary": "s2"},
                {"sentiment": "NEGATIVE", "keywords": ["환율", "코스피"], "summary": ""},
                {"unexpected": True},
            ],
        )

        self.assertEqual(summary["summaryDate"], "2025-01-02")
        self.assertEqual(summary["analyzedCount"], 3)
        self.assertEqual(summary["sentimentDistribution"], {"POSITIVE": 1, "NEUTRAL": 0, "NEGATIVE": 2})
        self.assertEqual(summary["marketRegime"], "risk_off")
        self.assertEqual(summary["topKeywords"], ["코스피", "환율", "반도체"])
        self.assertEqual(summary["highlights"], ["s1", "s2"])

    def test_no_usable_results_falls_back_to_empty_summary(self) -> None:
        self.assertEqual(summarize_day(date(2025, 1, 2), [{"error": "boom"}]), empty_daily_summary(date(2025, 1, 2)))


class DailySummaryBuilderTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine)
        self.now = datetime(2025, 1, 1, 0, 0)
        self.store = RawNewsStore(self.session_factory, clock=lambda: self.now)
        self.builder = DailySummaryBuilder(
            self.store,
            tz_name="Asia/Seoul",
            clock=lambda: datetime(2025, 1, 2, 1, 0, tzinfo=timezone.utc),
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _save(self, news_id: str, analyzed_at: datetime, result: dict) -> None:
        self.now = analyzed_at
        self.store.save_analysis(news_id, result)

    async def test_populated_day_uses_korean_calendar_day(self) -> None:
        # 2025-01-02 in Asia/Seoul spans 2025-01-01T15:00Z to 2025-01-02T15:00Z
        self._save("015#1", datetime(2025, 1, 1, 14, 59), {"sentiment": "NEGATIVE", "keywords": ["전날"], "summary": "x"})
        self._save("015#2", datetime(2025, 1, 1, 15, 0), {"sentiment": "POSITIVE", "keywords": ["코스피", "반도체"], "summary": "s1"})
        self._save("015#3", datetime(2025, 1, 2, 3, 0), {"sentiment": "POSITIVE", "keywords": ["코스피"], "summary": "s2"})
        self._save("015#4", datetime(2025, 1, 2, 10, 0), {"sentiment": "NEGATIVE", "keywords": ["환율", "코스피"], "summary": "s3"})
        self._save("015#5", datetime(2025, 1, 2, 11, 0), {"error": "unparseable"})
        self._save("015#6", datetime(2025, 1, 2, 15, 0), {"sentiment": "NEGATIVE", "keywords": ["다음날"], "summary": "y"})

        stats = await self.builder.run()

        self.assertEqual(stats.summary_date, date(2025, 1, 2))
        self.assertEqual(stats.analyzed_count, 3)
        stored = self.store.get_daily_summary(date(2025, 1, 2))
        self.assertEqual(stored["analyzedCount"], 3)
        self.assertEqual(stored["marketRegime"], "risk_on")
        self.assertEqual(stored["sentimentDistribution"], {"POSITIVE": 2, "NEUTRAL": 0, "NEGATIVE": 1})
        self.assertEqual(stored["topKeywords"], ["코스피", "반도체", "환율"])
        self.assertEqual(stored["highlights"], ["s1", "s2", "s3"])

    async def test_empty_day_saves_fallback_summary(self) -> None:
        stats = await self.builder.run(date(2025, 1, 5))

        self.assertEqual(stats.analyzed_count, 0)
        self.assertEqual(self.store.get_daily_summary(date(2025, 1, 5)), empty_daily_summary(date(2025, 1, 5)))

    async def test_rebuilding_replaces_the_stored_summary(self) -> None:
        await self.builder.run(date(2025, 1, 2))
        self._save("015#2", datetime(2025, 1, 2, 3, 0), {"sentiment": "NEUTRAL", "keywords": ["금리"], "summary": "s"})
        await self.builder.run(date(2025, 1, 2))

        with self.session_factory() as session:
            self.assertEqual(session.query(MarketDailySummary).count(), 1)
        self.assertEqual(self.store.get_daily_summary(date(2025, 1, 2))["analyzedCount"], 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
