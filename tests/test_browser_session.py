from __future__ import annotations

import threading
import time
from typing import List, Optional

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PWTimeoutError

from category_monitor import scraper
from category_monitor.catalog import category_id_entity, page_entity
from category_monitor.errors import AcquisitionError, AcquisitionFailure
from category_monitor.scraper import BrowserSession

PAGE = page_entity("a", "https://shop.example/brands/a").locator
API = category_id_entity(123, "https://shop.example").locator


class World:
    """Shared state and call log for the fake Playwright objects."""

    def __init__(self) -> None:
        self.launch_delay = 0.0
        self.body = '<div data-category-products-count="42"></div>'
        self.goto_error: Optional[Exception] = None
        self.api_status = 200
        self.api_body = '{"data": {"productCount": 5}}'
        self.browsers: List["FakeBrowser"] = []
        self.gotos: List[str] = []
        self.posts: List[dict] = []
        self.stops = 0
        self.threads: set = set()

    def touch(self) -> None:
        self.threads.add(threading.current_thread().name)


class FakeResponse:
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self._body = body

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self._body


class FakeRequest:
    def __init__(self, world: World) -> None:
        self.world = world

    def post(self, url, data=None, headers=None, timeout=None) -> FakeResponse:
        self.world.touch()
        self.world.posts.append({"url": url, "data": data})
        return FakeResponse(self.world.api_status, self.world.api_body)


class FakePage:
    def __init__(self, world: World) -> None:
        self.world = world
        self.url = ""

    def goto(self, url, wait_until=None, timeout=None) -> None:
        self.world.touch()
        self.world.gotos.append(url)
        if self.world.goto_error is not None:
            raise self.world.goto_error
        self.url = url

    def content(self) -> str:
        return self.world.body

    def close(self) -> None:
        self.world.touch()


class FakeContext:
    def __init__(self, world: World) -> None:
        self.world = world
        self.request = FakeRequest(world)
        self.closed = False

    def new_page(self) -> FakePage:
        self.world.touch()
        return FakePage(self.world)

    def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, world: World) -> None:
        self.world = world
        self.connected = True
        self.closed = False

    def is_connected(self) -> bool:
        return self.connected

    def new_context(self, **kwargs) -> FakeContext:
        return FakeContext(self.world)

    def close(self) -> None:
        self.world.touch()
        self.closed = True
        self.connected = False


class FakeChromium:
    def __init__(self, world: World) -> None:
        self.world = world

    def launch(self, **kwargs) -> FakeBrowser:
        self.world.touch()
        time.sleep(self.world.launch_delay)
        browser = FakeBrowser(self.world)
        self.world.browsers.append(browser)
        return browser


class FakePlaywright:
    def __init__(self, world: World) -> None:
        self.world = world
        self.chromium = FakeChromium(world)

    def stop(self) -> None:
        self.world.stops += 1


class FakeManager:
    def __init__(self, world: World) -> None:
        self.world = world

    def start(self) -> FakePlaywright:
        return FakePlaywright(self.world)


@pytest.fixture()
def world(monkeypatch) -> World:
    w = World()
    monkeypatch.setattr(scraper, "sync_playwright", lambda: FakeManager(w))
    return w


@pytest.fixture()
def session(world):
    s = BrowserSession(headless=True, timeout_ms=1000, base_url="https://shop.example")
    yield s
    s.close()


def test_browser_is_launched_lazily_and_reused(session, world) -> None:
    assert world.browsers == []
    first = session.fetch(PAGE)
    second = session.fetch(PAGE)
    assert first.body == world.body
    assert second.url == PAGE.url
    assert len(world.browsers) == 1


def test_concurrent_callers_share_one_launch(session, world) -> None:
    world.launch_delay = 0.1
    results = []
    threads = [threading.Thread(target=lambda: results.append(session.fetch(PAGE))) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(results) == 5
    assert len(world.browsers) == 1


def test_all_browser_calls_run_on_one_worker_thread(session, world) -> None:
    threads = [threading.Thread(target=session.fetch, args=(PAGE,)) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(world.threads) == 1
    assert next(iter(world.threads)).startswith("browser")


def test_close_tears_down_and_next_fetch_relaunches(session, world) -> None:
    session.fetch(PAGE)
    session.close()
    assert world.browsers[0].closed
    assert world.stops == 1

    session.fetch(PAGE)
    assert len(world.browsers) == 2


def test_close_without_browser_is_noop(session, world) -> None:
    session.close()
    session.close()
    assert world.browsers == []
    assert world.stops == 0


def test_disconnected_browser_is_rebuilt(session, world) -> None:
    session.fetch(PAGE)
    world.browsers[0].connected = False
    session.fetch(PAGE)
    assert len(world.browsers) == 2
    assert world.stops == 1


@pytest.mark.parametrize(
    "error",
    [PWTimeoutError("Timeout 1000ms exceeded"), PlaywrightError("net::ERR_CONNECTION_RESET")],
)
def test_browser_errors_map_to_timeout(session, world, error) -> None:
    world.goto_error = error
    with pytest.raises(AcquisitionError) as excinfo:
        session.fetch(PAGE)
    assert excinfo.value.reason is AcquisitionFailure.TIMEOUT
    assert excinfo.value.url == PAGE.url


def test_catalog_api_returns_body_and_warms_up_once(session, world) -> None:
    assert session.fetch(API).body == world.api_body
    session.fetch(API)
    assert world.gotos == ["https://shop.example/"]
    assert world.posts[0]["url"] == API.url
    assert world.posts[0]["data"]["categoryId"] == 123


@pytest.mark.parametrize(
    "status,reason",
    [
        (403, AcquisitionFailure.BLOCKED),
        (429, AcquisitionFailure.BLOCKED),
        (500, AcquisitionFailure.TIMEOUT),
    ],
)
def test_catalog_api_status_mapping(session, world, status, reason) -> None:
    world.api_status = status
    with pytest.raises(AcquisitionError) as excinfo:
        session.fetch(API)
    assert excinfo.value.reason is reason


def test_close_racing_with_fetches(session, world) -> None:
    errors = []

    def worker() -> None:
        for _ in range(20):
            try:
                session.fetch(PAGE)
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(3)]
    for t in threads:
        t.start()
    for _ in range(20):
        session.close()
    for t in threads:
        t.join()
    assert errors == []
