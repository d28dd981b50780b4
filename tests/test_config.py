import pytest
from pydantic import ValidationError

from core.config import _ENV_OVERRIDES, ConfigStore, load_config, load_settings
from core.infra.db import Database

from conftest import run


def test_missing_yaml_is_empty(tmp_path):
    assert load_config(str(tmp_path / "nope.yaml")) == {}


def test_settings_from_yaml_with_env_override(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "db_path: data/x.db\n"
        "schedule:\n"
        "  cron: '*/15 * * * *'\n"
        "alerts:\n"
        "  log_path: somewhere.log\n"
    )
    monkeypatch.chdir(tmp_path)
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CRAWL_RANDOMIZE_START", "true")
    monkeypatch.setenv("RAPIDAPI_KEY", "from-env")

    settings = load_settings(str(path))

    assert settings.db_path == "data/x.db"
    assert settings.schedule.cron == "*/15 * * * *"
    assert settings.schedule.randomize_start is True
    assert settings.api_key == "from-env"
    assert settings.alerts.log_path == "somewhere.log"
    assert settings.schedule.timezone == "Asia/Ho_Chi_Minh"


def test_config_store_seeds_default_once(db_path):
    async def scenario():
        async with Database(db_path) as db:
            store = ConfigStore(db, bootstrap_api_key="bootstrap-key")
            await store.ensure_schema()

            first = await store.get()
            assert first.api_key == "bootstrap-key"
            assert first.crawl_settings.max_retries == 3
            assert first.proxy_list == []

            await store.update(api_key="changed")
            again = ConfigStore(db, bootstrap_api_key="other")
            assert (await again.get()).api_key == "changed"
            assert await db.fetch_value("SELECT COUNT(*) FROM crawl_config") == 1

    run(scenario())


def test_config_store_edits(db_path):
    async def scenario():
        async with Database(db_path) as db:
            store = ConfigStore(db)
            await store.ensure_schema()

            config = await store.set_proxies(["http://a:1", " ", "http://b:1 "])
            assert config.proxy_list == ["http://a:1", "http://b:1"]

            config = await store.update_crawl_settings(max_retries=5, max_requests_per_hour=100)
            assert config.crawl_settings.max_retries == 5
            assert (await store.get()).crawl_settings.max_requests_per_hour == 100

            with pytest.raises(ValidationError):
                await store.update_crawl_settings(min_delay=9000, max_delay=10)
            # a rejected edit leaves the stored config alone
            assert (await store.get()).crawl_settings.min_delay == 1000

            await store.update(google_sheet_id="sheet")
            assert (await store.get()).google_sheet_id == "sheet"

    run(scenario())
