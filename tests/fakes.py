"""
tests/fakes.py — 테스트용 가짜 HTTP 세션 · 시계 · Playwright 객체
"""

from __future__ import annotations

from typing import Any, Optional, Union

import requests
from playwright.async_api import Error as PlaywrightError


# ─────────────────────────────────────────────────────────────
# HTTP
# ─────────────────────────────────────────────────────────────

class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200, encoding: Optional[str] = "utf-8"):
        self.text              = text
        self.status_code       = status_code
        self.encoding          = encoding
        self.apparent_encoding = "utf-8"
        self.content           = text.encode("utf-8")

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400


Route = Union[FakeResponse, Exception]


class FakeSession:
    """User-Agent 부분 문자열 → 응답 (또는 예외). 일치하는 키가 없으면 default."""

    def __init__(self, routes: Optional[dict[str, Route]] = None, default: Optional[Route] = None):
        self.routes  = routes or {}
        self.default = default
        self.calls: list[tuple[str, str, Any]] = []

    def get(self, url, headers=None, timeout=None, allow_redirects=True):
        user_agent = (headers or {}).get("User-Agent", "")
        self.calls.append((url, user_agent, timeout))

        response = self.default
        for fragment, routed in self.routes.items():
            if fragment in user_agent:
                response = routed
                break

        if response is None:
            raise requests.exceptions.ConnectionError("no route")
        if isinstance(response, Exception):
            raise response
        return response


# ─────────────────────────────────────────────────────────────
# 시계
# ─────────────────────────────────────────────────────────────

class FakeClock:
    """clock() 과 sleep() 을 함께 제공합니다. sleep 은 시계를 전진시킵니다."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, sec: float) -> None:
        self.now += sec

    async def sleep(self, sec: float) -> None:
        self.sleeps.append(sec)
        self.now += sec


# ─────────────────────────────────────────────────────────────
# Playwright 페이지 / 세션
# ─────────────────────────────────────────────────────────────

class FakeMouse:
    def __init__(self):
        self.moves: list[tuple[float, float]] = []

    async def move(self, x: float, y: float) -> None:
        self.moves.append((x, y))


class FakePage:
    def __init__(
        self,
        html: str = "",
        final_url: Optional[str] = None,
        snapshot: Optional[dict] = None,
        selector_found: Optional[str] = None,
        fail_load_state: bool = False,
        fail_goto: bool = False,
    ):
        self.html            = html
        self.url             = "about:blank"
        self.final_url       = final_url
        self.snapshot        = snapshot
        self.selector_found  = selector_found
        self.fail_load_state = fail_load_state
        self.fail_goto       = fail_goto
        self.mouse           = FakeMouse()

        self.goto_calls: list[tuple[str, Optional[str], Optional[int]]] = []
        self.waited: list[float] = []
        self.selectors_tried: list[str] = []
        self.route_handler = None
        self.closed = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append((url, wait_until, timeout))
        if self.fail_goto:
            raise PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        self.url = self.final_url or url

    async def wait_for_load_state(self, state, timeout=None):
        if self.fail_load_state:
            raise PlaywrightError("Timeout exceeded while waiting for networkidle")

    async def wait_for_function(self, expression, timeout=None):
        return True

    async def wait_for_timeout(self, ms):
        self.waited.append(ms)

    async def wait_for_selector(self, selector, timeout=None):
        self.selectors_tried.append(selector)
        if selector == self.selector_found:
            return object()
        raise PlaywrightError(f"Timeout waiting for {selector}")

    async def content(self) -> str:
        return self.html

    async def evaluate(self, script, *args):
        return self.snapshot

    async def route(self, pattern, handler):
        self.route_handler = handler

    async def close(self):
        self.closed = True


class FakeBrowserSession:
    """전략에 주입하는 BrowserSession 대역."""

    def __init__(self, page: FakePage):
        self.page      = page
        self.blocked: list[tuple[tuple[str, ...], tuple[str, ...]]] = []
        self.humanized = 0
        self.closed    = 0

    async def new_page(self) -> FakePage:
        return self.page

    async def install_resource_blocking(self, page, resource_types, url_fragments=()):
        self.blocked.append((tuple(resource_types), tuple(url_fragments)))

    async def simulate_human(self, page):
        self.humanized += 1

    async def close(self):
        self.closed += 1


# ─────────────────────────────────────────────────────────────
# Playwright 드라이버 (BrowserSession 테스트용)
# ─────────────────────────────────────────────────────────────

class FakeContext:
    def __init__(self, options: dict):
        self.options = options
        self.scripts: list[str] = []
        self.pages  = 0
        self.closed = 0

    async def add_init_script(self, script):
        self.scripts.append(script)

    async def new_page(self):
        self.pages += 1
        return FakePage()

    async def close(self):
        self.closed += 1


class FakeBrowser:
    def __init__(self):
        self.handlers: dict[str, Any] = {}
        self.connected = True
        self.contexts: list[FakeContext] = []
        self.closed = 0

    def on(self, event, handler):
        self.handlers[event] = handler

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, **options):
        context = FakeContext(options)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed += 1
        self.connected = False


class FakeChromium:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.launches: list[dict] = []
        self.browsers: list[FakeBrowser] = []

    async def launch(self, **options):
        if self.fail:
            raise PlaywrightError("Executable doesn't exist")
        self.launches.append(options)
        browser = FakeBrowser()
        self.browsers.append(browser)
        return browser


class FakeDriver:
    def __init__(self, chromium: FakeChromium):
        self.chromium = chromium
        self.stopped  = 0

    async def stop(self):
        self.stopped += 1


class FakePlaywrightFactory:
    """async_playwright 대역: factory().start() → FakeDriver."""

    def __init__(self, fail_launch: bool = False):
        self.chromium = FakeChromium(fail_launch)
        self.driver   = FakeDriver(self.chromium)
        self.starts   = 0

    def __call__(self):
        return self

    async def start(self):
        self.starts += 1
        return self.driver


class FakeRequest:
    def __init__(self, resource_type: str, url: str):
        self.resource_type = resource_type
        self.url           = url


class FakeRoute:
    def __init__(self, resource_type: str, url: str = "https://example.com/"):
        self.request  = FakeRequest(resource_type, url)
        self.aborted   = False
        self.continued = False

    async def abort(self):
        self.aborted = True

    async def continue_(self):
        self.continued = True
