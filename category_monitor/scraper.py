"""Product-count acquisition through a shared headless browser.

``BrowserSession`` owns one long-lived Chromium instance.  It is launched on
first use, reused while connected and only torn down by ``close()``.  All
Playwright calls run on a single worker thread: the sync API is bound to the
thread that started it, and serializing requests keeps the traffic pattern
quiet towards the target site.

``CountAcquirer`` wraps one fetch + extraction in a tenacity retry loop.
"""

from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PWTimeoutError
from playwright.sync_api import sync_playwright
from tenacity import (Retrying, before_sleep_log, retry_if_exception_type,
                      stop_after_attempt)

from .catalog import Locator, LocatorKind, TrackedEntity
from .config import (BASE_URL, BROWSER_EXECUTABLE_PATH, BROWSER_HEADLESS,
                     BROWSER_TIMEOUT_MS, MAX_RETRIES)
from .errors import AcquisitionError, AcquisitionFailure
from .extractors import CountExtractor

logger = logging.getLogger(__name__)

DEFAULT_CITY_ID = "0c5b2444-70a0-4932-980c-b4dc0d3f02b5"  # Moscow

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# (base, cap) in seconds
INVALID_COUNT_BACKOFF = (1.0, 10.0)
ERROR_BACKOFF = (2.0, 15.0)


@dataclass(frozen=True)
class PageSnapshot:
    body: str
    url: str


@dataclass(frozen=True)
class AcquisitionResult:
    entity_key: str
    count: int
    timestamp: _dt.datetime
    source_url: str
    strategy: str = ""


class PageSource(Protocol):
    def fetch(self, locator: Locator) -> PageSnapshot: ...

    def close(self) -> None: ...


class BrowserSession:
    """Lazily created, shared Playwright browser."""

    def __init__(
        self,
        *,
        headless: bool = BROWSER_HEADLESS,
        timeout_ms: int = BROWSER_TIMEOUT_MS,
        base_url: str = BASE_URL,
        executable_path: Optional[str] = BROWSER_EXECUTABLE_PATH,
        city_id: str = DEFAULT_CITY_ID,
    ) -> None:
        self._headless = headless
        self._timeout_ms = timeout_ms
        self._base_url = base_url
        self._executable_path = executable_path
        self._city_id = city_id
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        # Touched only from the worker thread.
        self._playwright = None
        self._browser = None
        self._context = None
        self._warmed_up = False

    def fetch(self, locator: Locator) -> PageSnapshot:
        return self._submit(self._fetch, locator)

    def close(self) -> None:
        # Held through teardown so a concurrent fetch cannot start a new
        # browser while the old worker is still closing this one.
        with self._lock:
            executor, self._executor = self._executor, None
            if executor is None:
                return
            try:
                executor.submit(self._teardown).result()
            finally:
                executor.shutdown(wait=True)
        logger.info("Browser closed")

    def _submit(self, fn: Callable, *args):
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="browser")
            future = self._executor.submit(fn, *args)
        return future.result()

    # -- worker thread ---------------------------------------------------

    def _ensure_context(self):
        if self._browser is not None and self._browser.is_connected():
            return self._context
        self._teardown()
        logger.info("Launching browser (headless=%s)", self._headless)
        self._playwright = sync_playwright().start()
        launch_kwargs = {
            "headless": self._headless,
            "args": [
                "--no-sandbox",
                "--disable-dev-shm-usage",
                "--disable-blink-features=AutomationControlled",
            ],
        }
        if self._executable_path:
            launch_kwargs["executable_path"] = self._executable_path
        self._browser = self._playwright.chromium.launch(**launch_kwargs)
        self._context = self._browser.new_context(
            user_agent=_USER_AGENT,
            locale="ru-RU",
            viewport={"width": 1920, "height": 1080},
            extra_http_headers={"Accept-Language": "ru-RU,ru;q=0.9,en-US;q=0.8,en;q=0.7"},
        )
        self._warmed_up = False
        return self._context

    def _teardown(self) -> None:
        for name in ("_context", "_browser"):
            obj = getattr(self, name)
            if obj is not None:
                try:
                    obj.close()
                except PlaywrightError:
                    logger.debug("Ignoring error while closing %s", name, exc_info=True)
                setattr(self, name, None)
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except PlaywrightError:
                logger.debug("Ignoring error while stopping Playwright", exc_info=True)
            self._playwright = None

    def _fetch(self, locator: Locator) -> PageSnapshot:
        try:
            context = self._ensure_context()
            if locator.kind is LocatorKind.CATEGORY_ID:
                return self._fetch_catalog_api(context, locator)
            return self._fetch_page(context, locator.url)
        except PWTimeoutError as exc:
            raise AcquisitionError(AcquisitionFailure.TIMEOUT, f"Timed out loading page: {exc}", url=locator.url) from exc
        except PlaywrightError as exc:
            raise AcquisitionError(AcquisitionFailure.TIMEOUT, f"Browser error: {exc}", url=locator.url) from exc

    def _fetch_page(self, context, url: str) -> PageSnapshot:
        page = context.new_page()
        try:
            logger.info("Fetching product count from %s", url)
            page.goto(url, wait_until="networkidle", timeout=self._timeout_ms)
            return PageSnapshot(body=page.content(), url=page.url)
        finally:
            try:
                page.close()
            except PlaywrightError:
                logger.debug("Ignoring error while closing page", exc_info=True)

    def _warm_up(self, context) -> None:
        """Visit the homepage once per context so the API call carries site cookies."""
        if self._warmed_up:
            return
        page = context.new_page()
        try:
            page.goto(self._base_url.rstrip("/") + "/", wait_until="domcontentloaded", timeout=self._timeout_ms)
        except PlaywrightError:
            logger.debug("Warm-up navigation failed (non-fatal).", exc_info=True)
        finally:
            try:
                page.close()
            except PlaywrightError:
                logger.debug("Ignoring error while closing page", exc_info=True)
        self._warmed_up = True

    def _fetch_catalog_api(self, context, locator: Locator) -> PageSnapshot:
        self._warm_up(context)
        payload = {
            "categoryId": locator.category_id,
            "pageNumber": 1,
            "pageSize": 1,
            "filters": [],
            "mode": "dynamic",
            "cityId": self._city_id,
            "cityDistrict": None,
            "geoPolygons": [],
            "regionId": self._city_id,
        }
        logger.info("Fetching product count for category id %s", locator.category_id)
        resp = context.request.post(
            locator.url,
            data=payload,
            headers={
                "Accept": "application/json, text/plain, */*",
                "Referer": self._base_url.rstrip("/") + "/",
            },
            timeout=self._timeout_ms,
        )
        if resp.status in (403, 429):
            raise AcquisitionError(AcquisitionFailure.BLOCKED, f"HTTP {resp.status}", url=locator.url)
        if not resp.ok:
            raise AcquisitionError(AcquisitionFailure.TIMEOUT, f"HTTP {resp.status}", url=locator.url)
        return PageSnapshot(body=resp.text(), url=locator.url)


def _backoff(retry_state) -> float:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, AcquisitionError) and exc.reason is AcquisitionFailure.INVALID_COUNT:
        base, cap = INVALID_COUNT_BACKOFF
    else:
        base, cap = ERROR_BACKOFF
    return min(base * 2 ** (retry_state.attempt_number - 1), cap)


class CountAcquirer:
    """Fetch a validated product count for one entity, retrying with backoff."""

    def __init__(
        self,
        session: Optional[PageSource] = None,
        extractor: Optional[CountExtractor] = None,
        *,
        max_retries: int = MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session if session is not None else BrowserSession()
        self._extractor = extractor or CountExtractor()
        self.max_retries = max(1, int(max_retries))
        self._sleep = sleep

    def acquire(self, entity: TrackedEntity) -> AcquisitionResult:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=_backoff,
            retry=retry_if_exception_type(AcquisitionError),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(self._attempt, entity)
        except AcquisitionError:
            logger.error("All %d attempts failed for %s", self.max_retries, entity.key)
            raise

    def _attempt(self, entity: TrackedEntity) -> AcquisitionResult:
        snapshot = self._session.fetch(entity.locator)
        extraction = self._extractor.extract(snapshot.body)
        if extraction is None:
            raise AcquisitionError(
                AcquisitionFailure.PARSE_FAILURE,
                "Product count marker not found on page",
                url=entity.source_url,
            )
        if extraction.blocked:
            raise AcquisitionError(
                AcquisitionFailure.BLOCKED,
                "Site access is temporarily restricted",
                url=entity.source_url,
            )
        if extraction.count is None or extraction.count <= 0:
            raise AcquisitionError(
                AcquisitionFailure.INVALID_COUNT,
                f"Invalid product count received: {extraction.count}",
                url=entity.source_url,
            )
        logger.info("Got product count %d for %s (via %s)", extraction.count, entity.key, extraction.strategy)
        return AcquisitionResult(
            entity_key=entity.key,
            count=extraction.count,
            timestamp=_dt.datetime.now(_dt.timezone.utc),
            source_url=snapshot.url or entity.source_url,
            strategy=extraction.strategy,
        )

    def close(self) -> None:
        self._session.close()


__all__ = [
    "PageSnapshot",
    "AcquisitionResult",
    "BrowserSession",
    "CountAcquirer",
    "INVALID_COUNT_BACKOFF",
    "ERROR_BACKOFF",
]
