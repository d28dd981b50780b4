"""
Shopee ratings fetcher - paginated, rate-governed, anti-bot aware.
"""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from core.exceptions import CrawlBlockedError, HttpStatusError, RatingFetchError, RetryExhausted
from core.infra.http import HttpClient
from core.infra.identity import IdentityRotator, random_accept_language, random_user_agent
from core.infra.rate import RateGovernor
from core.infra.retry import RetryPolicy, retry_with_backoff
from core.interfaces import Fetcher
from core.models import CrawlConfig, CrawlSettings

from .parser import parse_ratings_page, to_comment
from .sinks import CommentStore, StoreResult


logger = logging.getLogger(__name__)


ANTI_BOT_STATUS = 417


@dataclass
class _PageState:
    """Mutable per-fetch state: the proxy in use and the page being read."""
    proxy: Optional[str]
    page: int = 1
    requests: int = 0
    new_records: List[Dict[str, Any]] = field(default_factory=list)


class RatingsFetcher(Fetcher):
    """Fetches every rating page for one (product, star) pair.

    Each request waits out a jittered delay, is then admitted by the shared
    :class:`RateGovernor` and sent at once with a freshly drawn browser
    identity. The provider's anti-bot status (417) is retried with a growing
    backoff and a new proxy per attempt; any other failure is terminal for
    the rating.
    """

    name = "RatingsFetcher"

    SITE = "vn"
    PAGE_SIZE = 12  # fixed by the provider
    REQUEST_TIMEOUT = 30.0
    WARMUP_RANGE = (1.0, 3.0)
    EXTRA_JITTER = 0.5
    BACKOFF_MULTIPLIER = 1.5

    def __init__(
        self,
        store: CommentStore,
        governor: RateGovernor,
        rotator: IdentityRotator,
        alerts=None,
        *,
        http: Optional[HttpClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.governor = governor
        self.rotator = rotator
        self.alerts = alerts
        self.http = http or HttpClient(timeout=self.REQUEST_TIMEOUT)
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def close(self) -> None:
        await self.http.close()

    # ------------------------------------------------------------------ #
    def _page_delay(self, settings: CrawlSettings) -> float:
        base = self._rng.uniform(settings.min_delay, settings.max_delay) / 1000
        return base + self._rng.uniform(0, self.EXTRA_JITTER)

    @classmethod
    def retry_policy(cls, settings: CrawlSettings) -> RetryPolicy:
        return RetryPolicy(
            max_retries=settings.max_retries,
            min_delay=settings.retry_min_delay / 1000,
            max_delay=settings.retry_max_delay / 1000,
            multiplier=cls.BACKOFF_MULTIPLIER,
        )

    def _build_request(self, product_id: str, shop_id: str, rating: int, page: int, config: CrawlConfig):
        params = {
            "site": self.SITE,
            "item_id": str(product_id),
            "shop_id": str(shop_id),
            "page": str(page),
            "rate_star": str(rating),
            "_t": str(int(time.time() * 1000)),
            "request_id": uuid.uuid4().hex,
        }
        headers = {
            **config.default_headers,
            "x-rapidapi-key": config.api_key,
            "User-Agent": random_user_agent(),
            "Accept-Language": random_accept_language(),
            "Accept": "application/json",
        }
        return params, headers

    async def _request(self, state: _PageState, product_id: str, shop_id: str, rating: int, config: CrawlConfig) -> Any:
        params, headers = self._build_request(product_id, shop_id, rating, state.page, config)
        state.requests += 1
        return await self.http.get_json(
            config.base_url,
            params=params,
            headers=headers,
            proxy=state.proxy,
            timeout=aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT),
        )

    async def _alert(self, method: str, *args, **kwargs) -> None:
        if self.alerts is None:
            return
        try:
            await getattr(self.alerts, method)(*args, **kwargs)
        except Exception as e:
            logger.error(f"Failed to send {method} alert: {e}")

    # ------------------------------------------------------------------ #
    async def _fetch_page(
        self,
        state: _PageState,
        url: str,
        product_id: str,
        shop_id: str,
        rating: int,
        config: CrawlConfig,
    ) -> Any:
        """One page, with the anti-bot retry protocol around it."""

        async def attempt() -> Any:
            # admitted at send time; retries spend the budget too
            await self.governor.admit(config)
            return await self._request(state, product_id, shop_id, rating, config)

        async def on_anti_bot(exc: BaseException, attempt_no: int) -> None:
            if attempt_no == 0:
                logger.warning(
                    f"Anti-bot protection (HTTP {ANTI_BOT_STATUS}) for product {product_id}, "
                    f"rating {rating}, page {state.page}"
                )
                await self._alert("anti_bot_detected", product_id, url, ANTI_BOT_STATUS, str(exc))
            self.rotator.mark_failed(state.proxy)
            state.proxy = self.rotator.next(config)

        try:
            return await retry_with_backoff(
                attempt,
                self.retry_policy(config.crawl_settings),
                retry_on=(HttpStatusError,),
                should_retry=lambda exc: exc.status == ANTI_BOT_STATUS,
                on_failure=on_anti_bot,
                sleep=self._sleep,
                rng=self._rng,
            )
        except RetryExhausted as exc:
            summaries = [str(err) for err in exc.errors[-5:]]
            await self._alert("crawler_blocked", exc.attempts, summaries)
            raise CrawlBlockedError(
                f"Anti-bot protection: exhausted {exc.attempts} retries "
                f"for rating {rating} on page {state.page}",
                product_id=product_id,
                rating=rating,
                page=state.page,
            ) from exc
        except (HttpStatusError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            status = getattr(exc, "status", None)
            message = str(exc) or type(exc).__name__
            logger.error(f"Error fetching rating {rating} page {state.page} for product {product_id}: {message}")
            await self._alert("api_error", message, status)
            self.rotator.mark_failed(state.proxy)
            state.proxy = self.rotator.next(config)
            raise RatingFetchError(
                f"Failed to fetch rating {rating} page {state.page}: {message}",
                product_id=product_id,
                rating=rating,
                page=state.page,
            ) from exc

    async def fetch(
        self,
        url: str,
        product_id: str,
        shop_id: str,
        rating: int,
        config: CrawlConfig,
    ) -> List[Dict[str, Any]]:
        """Fetch and store all pages; return the raw records that were new."""
        state = _PageState(proxy=self.rotator.next(config))
        logger.info(
            f"Fetching rating {rating} for product {product_id} "
            f"(key {config.masked_key()}, proxy {'yes' if state.proxy else 'direct'})"
        )
        await self._sleep(self._rng.uniform(*self.WARMUP_RANGE))

        seen = 0
        while True:
            await self._sleep(self._page_delay(config.crawl_settings))

            payload = await self._fetch_page(state, url, product_id, shop_id, rating, config)
            records, has_next_page = parse_ratings_page(payload)
            if not records:
                logger.debug(f"Empty page {state.page} for product {product_id}, rating {rating}")
                break

            for record in records:
                if not isinstance(record, dict):
                    logger.warning(
                        f"Skipping malformed record on page {state.page} for product {product_id}: {record!r}"
                    )
                    continue
                try:
                    comment = to_comment(record, product_id=product_id, url=url, rating=rating)
                except ValueError as e:
                    logger.warning(f"Skipping unparseable record on page {state.page} for product {product_id}: {e}")
                    continue
                if await self.store.store(product_id, comment) is StoreResult.INSERTED:
                    state.new_records.append(record)
            seen += len(records)

            if not has_next_page:
                break
            state.page += 1

        logger.info(
            f"Rating {rating} for product {product_id}: {seen} records over {state.page} page(s), "
            f"{len(state.new_records)} new, {state.requests} request(s)"
        )
        return state.new_records
