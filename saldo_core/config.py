"""Environment and runtime configuration helpers for the saldo bot."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

DEFAULT_LUNCHCHECK_URL = "https://www.lunch-card.ch/saldo/saldo.aspx?crd="
DEFAULT_CHECK_CRON = "0 14 * * *"

_CHECK_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*$")


def _check_time_to_cron(raw: Optional[str]) -> Optional[str]:
    """Translate the legacy ``CARD_CHECK_TIME`` (``HH:MM``) into a daily cron."""
    if not raw:
        return None
    m = _CHECK_TIME_RE.match(raw)
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{minute} {hour} * * *"


@dataclass
class EnvConfig:
    bot_token: str
    data_file: str
    check_cron: str
    check_timezone: Optional[str]
    snapshot_interval: float
    lunchcheck_url: str
    lunchcheck_timeout: float
    scan_concurrency: int


def _load_env_values() -> EnvConfig:
    load_dotenv(override=True)

    def _float_or(default: float, raw: str | None) -> float:
        try:
            return float(raw) if raw is not None else default
        except ValueError:
            return default

    def _int_or(default: int, raw: str | None) -> int:
        try:
            return int(raw) if raw is not None else default
        except ValueError:
            return default

    check_cron = os.getenv("CARD_CHECK_CRON", "").strip()
    if not check_cron:
        check_cron = _check_time_to_cron(os.getenv("CARD_CHECK_TIME")) or DEFAULT_CHECK_CRON

    lunchcheck_url = os.getenv("LUNCHCHECK_URL", DEFAULT_LUNCHCHECK_URL).strip()

    return EnvConfig(
        bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
        data_file=os.getenv("DATA_FILE", "data.json").strip() or "data.json",
        check_cron=check_cron,
        check_timezone=os.getenv("CARD_CHECK_TIMEZONE", "").strip() or None,
        snapshot_interval=max(1.0, _float_or(10.0, os.getenv("SNAPSHOT_INTERVAL_SECONDS"))),
        lunchcheck_url=lunchcheck_url or DEFAULT_LUNCHCHECK_URL,
        lunchcheck_timeout=_float_or(20.0, os.getenv("LUNCHCHECK_TIMEOUT")),
        scan_concurrency=max(1, _int_or(8, os.getenv("SCAN_CONCURRENCY"))),
    )


@lru_cache(maxsize=1)
def get_env() -> EnvConfig:
    """Return cached environment configuration."""
    return _load_env_values()


def reload_env() -> EnvConfig:
    """Force reloading .env contents and return the new configuration."""
    get_env.cache_clear()
    return get_env()
