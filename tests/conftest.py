import asyncio
from typing import Any, Dict, List

import pytest

from core.exceptions import HttpStatusError
from core.models import CrawlConfig, CrawlSettings


class FakeClock:
    """Monotonic clock whose sleep just moves time forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeHttp:
    """Stands in for HttpClient: replays queued responses or raises them."""

    def __init__(self, responses=None):
        self.responses: List[Any] = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def get_json(self, url: str, **kwargs) -> Any:
        self.calls.append({"url": url, **kwargs})
        if not self.responses:
            raise AssertionError("unexpected request")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


class RecordingAlerts:
    def __init__(self):
        self.events: List[tuple] = []

    async def anti_bot_detected(self, product_id, url, status, message=""):
        self.events.append(("anti_bot", product_id, url, status))

    async def api_error(self, message, status=None):
        self.events.append(("api_error", message, status))

    async def crawler_blocked(self, attempts, recent_errors=None):
        self.events.append(("blocked", attempts, list(recent_errors or [])))

    def kinds(self) -> List[str]:
        return [e[0] for e in self.events]


def page(records, has_next_page=False) -> Dict[str, Any]:
    return {"data": {"ratings": records, "has_next_page": has_next_page}}


def record(cmtid, star=5, **extra) -> Dict[str, Any]:
    return {
        "cmtid": cmtid,
        "rating_star": star,
        "comment": f"comment {cmtid}",
        "author_username": f"user{cmtid}",
        "ctime": 1700000000,
        "like_count": 1,
        **extra,
    }


def anti_bot() -> HttpStatusError:
    return HttpStatusError(417, "Expectation Failed", '{"msg": "blocked"}')


def fast_config(**settings) -> CrawlConfig:
    values = dict(min_delay=0, max_delay=0, retry_min_delay=100, retry_max_delay=200)
    values.update(settings)
    return CrawlConfig(api_key="test-key-1234567890", crawl_settings=CrawlSettings(**values))


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "crawler.db")


@pytest.fixture
def clock():
    return FakeClock()
