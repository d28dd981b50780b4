"""
Configuration: process settings (YAML + environment) and the stored crawl
configuration singleton.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .infra.db import Database
from .models import CrawlConfig, CrawlSettings, utcnow


logger = logging.getLogger(__name__)


class ScheduleSettings(BaseModel):
    enabled: bool = True
    cron: str = "0 2 * * *"
    randomize_start: bool = False
    timezone: str = "Asia/Ho_Chi_Minh"


class AlertSettings(BaseModel):
    log_path: str = "logs/error_alerts.log"
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    discord_webhook_url: Optional[str] = None


class Settings(BaseModel):
    """Process-level settings, read once at start-up."""

    db_path: str = "crawler.db"
    api_key: Optional[str] = None
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)


# env var -> (section, key); section None means top level
_ENV_OVERRIDES = {
    "CRAWLER_DB_PATH": (None, "db_path"),
    "RAPIDAPI_KEY": (None, "api_key"),
    "CRAWL_SCHEDULE": ("schedule", "cron"),
    "CRAWL_SCHEDULE_ENABLED": ("schedule", "enabled"),
    "CRAWL_RANDOMIZE_START": ("schedule", "randomize_start"),
    "SCHEDULER_TIMEZONE": ("schedule", "timezone"),
    "ALERT_LOG_PATH": ("alerts", "log_path"),
    "TELEGRAM_BOT_TOKEN": ("alerts", "telegram_bot_token"),
    "TELEGRAM_CHAT_ID": ("alerts", "telegram_chat_id"),
    "DISCORD_WEBHOOK_URL": ("alerts", "discord_webhook_url"),
}


def load_config(path: str = "config.yaml") -> Dict[str, Any]:
    """Load configuration from YAML file; a missing file is an empty config."""
    config_path = Path(path)
    if not config_path.exists():
        logger.debug(f"Config file not found: {path}, using defaults")
        return {}
    with config_path.open() as f:
        return yaml.safe_load(f) or {}


def load_settings(path: Optional[str] = None) -> Settings:
    """Build :class:`Settings` from ``config.yaml`` with environment overrides."""
    load_dotenv()
    raw = load_config(path or os.getenv("CRAWLER_CONFIG", "config.yaml"))

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        target = raw if section is None else raw.setdefault(section, {})
        target[key] = value

    return Settings.model_validate(raw)


class ConfigStore:
    """Keeps the single :class:`CrawlConfig` row in the database."""

    TABLE = "crawl_config"

    def __init__(self, db: Database, *, bootstrap_api_key: Optional[str] = None):
        self.db = db
        self._bootstrap_api_key = bootstrap_api_key

    async def ensure_schema(self) -> None:
        # id is pinned to 1 so the table can never hold a second config
        await self.db.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE} (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

    async def get(self) -> CrawlConfig:
        """Return the stored config, creating the default one on first use."""
        row = await self.db.fetch_one(f"SELECT payload FROM {self.TABLE} WHERE id = 1")
        if row is not None:
            return CrawlConfig.model_validate(json.loads(row["payload"]))

        config = CrawlConfig(api_key=self._bootstrap_api_key or "")
        await self.save(config)
        logger.info("Created default crawl configuration")
        return config

    async def save(self, config: CrawlConfig) -> CrawlConfig:
        await self.db.upsert(
            self.TABLE,
            {"id": 1, "payload": config.model_dump_json(), "updated_at": utcnow().isoformat()},
            ["id"],
        )
        return config

    async def update(self, **changes: Any) -> CrawlConfig:
        """Apply top-level field changes, re-validating the whole config."""
        current = await self.get()
        merged = current.model_dump()
        merged.update(changes)
        return await self.save(CrawlConfig.model_validate(merged))

    async def update_crawl_settings(self, **changes: Any) -> CrawlConfig:
        current = await self.get()
        settings = current.crawl_settings.model_dump()
        settings.update(changes)
        return await self.update(crawl_settings=CrawlSettings.model_validate(settings).model_dump())

    async def set_proxies(self, proxies: List[str]) -> CrawlConfig:
        cleaned = [p.strip() for p in proxies if p and p.strip()]
        return await self.update(proxy_list=cleaned)
