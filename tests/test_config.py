import pytest

from saldo_core import config
from saldo_core.config import DEFAULT_CHECK_CRON, DEFAULT_LUNCHCHECK_URL, reload_env

_VARS = (
    "TELEGRAM_BOT_TOKEN",
    "DATA_FILE",
    "CARD_CHECK_CRON",
    "CARD_CHECK_TIME",
    "CARD_CHECK_TIMEZONE",
    "SNAPSHOT_INTERVAL_SECONDS",
    "LUNCHCHECK_URL",
    "LUNCHCHECK_TIMEOUT",
    "SCAN_CONCURRENCY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # Keep a developer's .env out of the picture.
    monkeypatch.setattr(config, "load_dotenv", lambda **kwargs: False)
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    config.get_env.cache_clear()


def test_defaults():
    cfg = reload_env()
    assert cfg.data_file == "data.json"
    assert cfg.check_cron == DEFAULT_CHECK_CRON
    assert cfg.snapshot_interval == 10.0
    assert cfg.lunchcheck_url == DEFAULT_LUNCHCHECK_URL
    assert cfg.scan_concurrency == 8
    assert cfg.check_timezone is None


def test_legacy_check_time_becomes_daily_cron(monkeypatch):
    monkeypatch.setenv("CARD_CHECK_TIME", "16:53")
    assert reload_env().check_cron == "53 16 * * *"


def test_explicit_cron_wins_over_check_time(monkeypatch):
    monkeypatch.setenv("CARD_CHECK_TIME", "16:53")
    monkeypatch.setenv("CARD_CHECK_CRON", "*/30 8-18 * * 1-5")
    assert reload_env().check_cron == "*/30 8-18 * * 1-5"


def test_bad_values_fall_back(monkeypatch):
    monkeypatch.setenv("CARD_CHECK_TIME", "25:99")
    monkeypatch.setenv("SNAPSHOT_INTERVAL_SECONDS", "soon")
    monkeypatch.setenv("SCAN_CONCURRENCY", "0")
    cfg = reload_env()
    assert cfg.check_cron == DEFAULT_CHECK_CRON
    assert cfg.snapshot_interval == 10.0
    assert cfg.scan_concurrency == 1
