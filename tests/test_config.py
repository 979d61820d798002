import pytest

from config import get_crawler_config, get_db_config


def test_crawler_defaults(monkeypatch):
    for name in ("CRAWLER_MAX_RUNTIME", "MAX_PRODUCTS_PER_RUN", "CRAWLER_RECORD_DELAY"):
        monkeypatch.delenv(name, raising=False)
    settings = get_crawler_config()
    assert settings["max_runtime"] == 300
    assert settings["max_products"] == 10
    assert settings["record_delay"] == 1.0


def test_crawler_overrides(monkeypatch):
    monkeypatch.setenv("MAX_PRODUCTS_PER_RUN", "25")
    monkeypatch.setenv("CRAWLER_RECORD_DELAY", "0.2")
    settings = get_crawler_config()
    assert settings["max_products"] == 25
    assert settings["record_delay"] == 0.2


def test_invalid_number(monkeypatch):
    monkeypatch.setenv("CRAWLER_CHECKPOINT_EVERY", "often")
    with pytest.raises(ValueError):
        get_crawler_config()


def test_db_config(monkeypatch):
    monkeypatch.setenv("DB_NAME", "dogfood_test")
    assert get_db_config()["database"] == "dogfood_test"


@pytest.mark.parametrize(
    "name",
    ["CRAWLER_CHECKPOINT_EVERY", "CRAWLER_MAX_CONSECUTIVE_FAILURES", "CRAWLER_MAX_RETRIES", "HTML_PAGE_SIZE"],
)
def test_zero_is_rejected_where_at_least_one_is_needed(monkeypatch, name):
    monkeypatch.setenv(name, "0")
    with pytest.raises(ValueError) as exc_info:
        get_crawler_config()
    assert name in str(exc_info.value)


def test_zero_products_is_allowed(monkeypatch):
    monkeypatch.setenv("MAX_PRODUCTS_PER_RUN", "0")
    assert get_crawler_config()["max_products"] == 0
