"""Analysis consumer: claim pending news, analyse it, record the outcome and roll up the day."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Protocol
from zoneinfo import ZoneInfo

from models import RawNewsStatus

from .persistence import PendingRawNews, RawNewsStore, StoredAnalysis

LOGGER = logging.getLogger(__name__)

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?。！？])\s+|\n+")
_NON_WORD_RE = re.compile(r"[^a-z0-9가-힣\s]")
_STOPWORDS = frozenset({"그리고", "하지만", "대한", "있는", "한다", "했다", "으로", "에서", "하는"})
_POSITIVE_TOKENS = ("상승", "호황", "개선", "성장", "호실적", "강세")
_NEGATIVE_TOKENS = ("하락", "악화", "감소", "부진", "약세", "손실")
_SENTIMENT_LABELS = ("POSITIVE", "NEUTRAL", "NEGATIVE")
_REGIME_THRESHOLD = 0.2


class Analyzer(Protocol):
    def analyze(self, record: PendingRawNews) -> Mapping[str, Any]:
        ...


@dataclass(slots=True)
class AnalysisStats:
    picked: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


class KeywordAnalyzer:
    """Lightweight lexical analysis: lead summary, frequent keywords and a sentiment label."""

    def __init__(self, *, max_sentences: int = 3, max_summary_chars: int = 1000, max_keywords: int = 10) -> None:
        self._max_sentences = max_sentences
        self._max_summary_chars = max_summary_chars
        self._max_keywords = max_keywords

    def analyze(self, record: PendingRawNews) -> dict[str, Any]:
        title = record.title or ""
        body = record.body or ""
        return {
            "summary": self.summarize(body or title),
            "keywords": self.extract_keywords(title, body),
            "sentiment": self.classify_sentiment(f"{title}\n{body}"),
            "published_at": record.published_at,
        }

    def summarize(self, body: str) -> str:
        sentences = [line.strip() for line in _SENTENCE_SPLIT_RE.split(body) if line.strip()]
        return " ".join(sentences[: self._max_sentences])[: self._max_summary_chars]

    def extract_keywords(self, title: str, body: str) -> list[str]:
        text = _NON_WORD_RE.sub(" ", f"{title} {body}".lower())
        words = [word for word in text.split() if len(word) >= 2 and word not in _STOPWORDS]
        return [word for word, _count in Counter(words).most_common(self._max_keywords)]

    @staticmethod
    def classify_sentiment(body: str) -> str:
        score = sum(1 for token in _POSITIVE_TOKENS if token in body)
        score -= sum(1 for token in _NEGATIVE_TOKENS if token in body)
        if score > 0:
            return "POSITIVE"
        if score < 0:
            return "NEGATIVE"
        return "NEUTRAL"


class AnalysisRunner:
    def __init__(self, store: RawNewsStore, analyzer: Analyzer) -> None:
        self._store = store
        self._analyzer = analyzer

    async def run(self, limit: int) -> AnalysisStats:
        pending = await asyncio.to_thread(self._store.fetch_pending, limit)
        stats = AnalysisStats(picked=len(pending))

        for record in pending:
            claimed = await asyncio.to_thread(self._store.try_claim, record.news_id)
            if not claimed:
                LOGGER.debug("Skipping %s; already claimed by another run", record.news_id)
                continue

            stats.processed += 1
            try:
                result = self._analyzer.analyze(record)
                if inspect.isawaitable(result):
                    result = await result
                await asyncio.to_thread(self._store.save_analysis, record.news_id, result)
            except Exception:
                LOGGER.exception("Analysis failed for news_id=%s", record.news_id)
                await asyncio.to_thread(self._store.finalize, record.news_id, RawNewsStatus.FAILED)
                stats.failed += 1
                continue

            await asyncio.to_thread(self._store.finalize, record.news_id, RawNewsStatus.DONE)
            stats.succeeded += 1

        LOGGER.info(
            "Analysis batch: picked=%d processed=%d succeeded=%d failed=%d",
            stats.picked,
            stats.processed,
            stats.succeeded,
            stats.failed,
        )
        return stats


@dataclass(slots=True)
class DailySummaryStats:
    summary_date: date
    analyzed_count: int = 0


def empty_daily_summary(summary_date: date) -> dict[str, Any]:
    return {
        "summaryDate": summary_date.isoformat(),
        "analyzedCount": 0,
        "marketRegime": "neutral",
        "sentimentDistribution": {label: 0 for label in _SENTIMENT_LABELS},
        "topKeywords": [],
        "highlights": ["No analyzed news available for this date."],
        "summary": "No analyzed news available.",
    }


def summarize_day(
    summary_date: date,
    results: Iterable[Mapping[str, Any]],
    *,
    max_keywords: int = 8,
    max_highlights: int = 3,
) -> dict[str, Any]:
    """Aggregate per-article analysis results into one market summary for ``summary_date``.

    Results without a known sentiment label or a keyword list are ignored; when
    none remain the empty-day summary is returned.
    """

    usable = [
        result
        for result in results
        if result.get("sentiment") in _SENTIMENT_LABELS and isinstance(result.get("keywords"), list)
    ]
    if not usable:
        return empty_daily_summary(summary_date)

    distribution = Counter(result["sentiment"] for result in usable)
    keywords = Counter(keyword for result in usable for keyword in result["keywords"] if keyword)
    balance = (distribution["POSITIVE"] - distribution["NEGATIVE"]) / len(usable)
    if balance > _REGIME_THRESHOLD:
        regime = "risk_on"
    elif balance < -_REGIME_THRESHOLD:
        regime = "risk_off"
    else:
        regime = "neutral"

    top_keywords = [keyword for keyword, _count in keywords.most_common(max_keywords)]
    highlights = [result["summary"] for result in usable if result.get("summary")][:max_highlights]
    return {
        "summaryDate": summary_date.isoformat(),
        "analyzedCount": len(usable),
        "marketRegime": regime,
        "sentimentDistribution": {label: distribution[label] for label in _SENTIMENT_LABELS},
        "topKeywords": top_keywords,
        "highlights": highlights,
        "summary": (
            f"{len(usable)} articles analysed: {distribution['POSITIVE']} positive, "
            f"{distribution['NEUTRAL']} neutral, {distribution['NEGATIVE']} negative. "
            f"Top keywords: {', '.join(top_keywords[:3]) or 'none'}."
        ),
    }


class DailySummaryBuilder:
    """Rebuild the market summary for one local calendar day from stored analyses."""

    def __init__(
        self,
        store: RawNewsStore,
        *,
        tz_name: str = "Asia/Seoul",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._tz_name = tz_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def today(self) -> date:
        return self._clock().astimezone(ZoneInfo(self._tz_name)).date()

    async def run(self, summary_date: date | None = None) -> DailySummaryStats:
        target = summary_date or self.today()
        rows: list[StoredAnalysis] = await asyncio.to_thread(
            self._store.fetch_analyses_for_date, target, self._tz_name
        )
        summary = summarize_day(target, (row.analysis_result for row in rows))
        await asyncio.to_thread(self._store.save_daily_summary, target, summary)

        stats = DailySummaryStats(summary_date=target, analyzed_count=summary["analyzedCount"])
        LOGGER.info("Daily summary saved: date=%s analyzed=%d", target.isoformat(), stats.analyzed_count)
        return stats


__all__ = [
    "AnalysisRunner",
    "AnalysisStats",
    "Analyzer",
    "DailySummaryBuilder",
    "DailySummaryStats",
    "KeywordAnalyzer",
    "empty_daily_summary",
    "summarize_day",
]
