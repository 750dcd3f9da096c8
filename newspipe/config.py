"""Configuration shared by the scrape and analysis pipelines."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_MAINNEWS_URL = "https://finance.naver.com/news/mainnews.naver"
DEFAULT_LOG_DIR = Path("storage/logs")
DEFAULT_USER_AGENT = "newspipe/1.0"
DEFAULT_TIMEZONE = "Asia/Seoul"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    cleaned = value.strip().lower()
    if cleaned in _TRUE_VALUES:
        return True
    if cleaned in _FALSE_VALUES:
        return False
    LOGGER.warning("Ignoring invalid boolean %s=%r; using %s", name, value, default)
    return default


def _env_int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 1) -> int:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        LOGGER.warning("Ignoring invalid integer %s=%r; using %d", name, value, default)
        return default
    if parsed < minimum:
        LOGGER.warning("Ignoring %s=%d below minimum %d; using %d", name, parsed, minimum, default)
        return default
    return parsed


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        LOGGER.warning("Ignoring invalid number %s=%r; using %s", name, value, default)
        return default
    if parsed <= 0:
        LOGGER.warning("Ignoring non-positive %s=%s; using %s", name, parsed, default)
        return default
    return parsed


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


@dataclass(slots=True)
class TimeoutConfig:
    page_timeout: float = 30.0
    wait_timeout: float = 15.0
    request_timeout: float = 10.0
    item_timeout: float | None = 90.0


@dataclass(slots=True)
class ScrapeConfig:
    mainnews_url: str = DEFAULT_MAINNEWS_URL
    page: int = 1
    limit: int = 20
    concurrency: int = 3
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(slots=True)
class AnalysisConfig:
    batch_size: int = 20


@dataclass(slots=True)
class ScheduleConfig:
    scrape_crontab: str = "0 9 * * *"
    analysis_crontab: str = "0 10 * * *"
    timezone: str = DEFAULT_TIMEZONE


@dataclass(slots=True)
class PipelineConfig:
    db_url: Optional[str] = None
    log_dir: Path = DEFAULT_LOG_DIR
    scrape: ScrapeConfig = field(default_factory=ScrapeConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)

    def ensure_directories(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def fetch_failure_log(self) -> Path:
        return self.log_dir / "fetch_failures.ndjson"


def load_config(env: Mapping[str, str] | None = None) -> PipelineConfig:
    """Build a :class:`PipelineConfig` from ``NEWSPIPE_*`` environment variables."""

    if env is None:
        env = os.environ

    config = PipelineConfig(db_url=_env_str(env, "NEWSPIPE_DATABASE_URL"))

    log_dir = _env_str(env, "NEWSPIPE_LOG_DIR")
    if log_dir:
        config.log_dir = Path(log_dir).expanduser()

    scrape = config.scrape
    scrape.mainnews_url = _env_str(env, "NEWSPIPE_MAINNEWS_URL") or scrape.mainnews_url
    scrape.limit = _env_int(env, "NEWSPIPE_MAINNEWS_LIMIT", scrape.limit)
    scrape.concurrency = _env_int(env, "NEWSPIPE_CONCURRENCY", scrape.concurrency)
    scrape.headless = _env_bool(env, "PLAYWRIGHT_HEADLESS", scrape.headless)
    scrape.user_agent = _env_str(env, "NEWSPIPE_USER_AGENT") or scrape.user_agent

    config.analysis.batch_size = _env_int(env, "NEWSPIPE_ANALYSIS_BATCH_SIZE", config.analysis.batch_size)

    schedule = config.schedule
    schedule.scrape_crontab = _env_str(env, "NEWSPIPE_SCRAPE_SCHEDULE") or schedule.scrape_crontab
    schedule.analysis_crontab = _env_str(env, "NEWSPIPE_ANALYSIS_SCHEDULE") or schedule.analysis_crontab
    schedule.timezone = _env_str(env, "NEWSPIPE_TIMEZONE") or schedule.timezone

    timeout = config.timeout
    timeout.page_timeout = _env_float(env, "NEWSPIPE_PAGE_TIMEOUT", timeout.page_timeout)
    timeout.wait_timeout = _env_float(env, "NEWSPIPE_WAIT_TIMEOUT", timeout.wait_timeout)
    timeout.request_timeout = _env_float(env, "NEWSPIPE_REQUEST_TIMEOUT", timeout.request_timeout)
    if timeout.item_timeout is not None:
        timeout.item_timeout = _env_float(env, "NEWSPIPE_ITEM_TIMEOUT", timeout.item_timeout)

    return config


__all__ = [
    "AnalysisConfig",
    "PipelineConfig",
    "ScheduleConfig",
    "ScrapeConfig",
    "TimeoutConfig",
    "load_config",
]
