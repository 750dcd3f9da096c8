from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class RawNewsStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"


class NewsSource(str, Enum):
    NAVER_FINANCE_MAINNEWS = "naver_finance_mainnews"
    NAVER_NEWS_SINGLE = "naver_news_single"


class RawNews(Base):
    __tablename__ = 'raw_news'

    # Surrogate key keeps insertion order stable for records collected in the same batch
    id = Column(Integer, primary_key=True, autoincrement=True)
    news_id = Column(String(64), unique=True, nullable=False)
    url = Column(String(2000), nullable=False)
    title = Column(Text, nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    published_at = Column(String(100), nullable=False, default="")
    collected_at = Column(DateTime, nullable=False)
    last_seen_at = Column(DateTime, nullable=False)
    source = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=RawNewsStatus.PENDING.value)
    status_updated_at = Column(DateTime, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index('ix_raw_news_status_collected', 'status', 'collected_at'),
        Index('ix_raw_news_status_updated', 'status', 'status_updated_at'),
    )

    def __repr__(self):
        return (
            f"<RawNews(news_id='{self.news_id}', status='{self.status}', "
            f"version={self.version}, title='{(self.title or '')[:30]}...')>"
        )


class NewsAnalysis(Base):
    __tablename__ = 'news_analysis'

    id = Column(Integer, primary_key=True, autoincrement=True)
    news_id = Column(String(64), unique=True, nullable=False)
    analysis_result = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    analyzed_at = Column(DateTime, default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<NewsAnalysis(news_id='{self.news_id}', analyzed_at={self.analyzed_at})>"


class MarketDailySummary(Base):
    __tablename__ = 'market_daily_summary'

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Local calendar date in YYYY-MM-DD form
    summary_date = Column(String(10), unique=True, nullable=False)
    summary_result = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    updated_at = Column(DateTime, default=func.now(), nullable=False)

    def __repr__(self):
        return f"<MarketDailySummary(summary_date='{self.summary_date}', updated_at={self.updated_at})>"
