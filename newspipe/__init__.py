"""Naver finance news ingestion: collection, batch scraping and analysis bookkeeping."""

from .batch import BatchResult, BatchScraper, FetchFailure
from .jobs import JobController, JobKind, TriggerResult

__all__ = ["BatchResult", "BatchScraper", "FetchFailure", "JobController", "JobKind", "TriggerResult"]
