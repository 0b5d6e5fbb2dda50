"""
scraper/browser.py — 스텔스 헤드리스 브라우저 세션 (Playwright async)

수명 주기:
    BrowserSession 은 전략 인스턴스 하나가 독점 소유합니다 (전역 싱글턴 아님).
      - 첫 new_page() 호출 시 브라우저 실행 + 컨텍스트 생성 (지연 초기화)
      - 연결이 살아있는 동안 여러 추출에서 컨텍스트 재사용
      - 연결 끊김 감지 시 다음 호출에서 브라우저·컨텍스트 재생성
      - close() 로만 해제 (멱등)

    추출 1건 = 공유 컨텍스트 안의 새 페이지 1개 (네비게이션 상태 경합 없음)

스텔스:
    모든 새 컨텍스트에 init script 를 주입합니다:
    webdriver 플래그 · window.chrome · 플러그인 목록 · languages · permissions ·
    hardwareConcurrency · deviceMemory · cdc_ 아티팩트 · getBattery
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Callable, Iterable, Optional

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Route,
    async_playwright,
)

from core.logger import Phase, log_context
from scraper.engine import BrowserResourceError
from scraper.models import ProxyConfig

# ─────────────────────────────────────────────────────────────
# 프로필 풀
# ─────────────────────────────────────────────────────────────

USER_AGENTS: list[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:123.0) Gecko/20100101 Firefox/123.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36 Edg/122.0.0.0",
]

VIEWPORTS: list[dict[str, int]] = [
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1280, "height": 720},
]

LAUNCH_ARGS: list[str] = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=VizDisplayCompositor",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-web-security",
    "--disable-features=site-per-process",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-default-apps",
    "--disable-popup-blocking",
    "--disable-translate",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-backgrounding-occluded-windows",
    "--disable-ipc-flooding-protection",
    "--disable-extensions",
    "--disable-plugins",
]

REALISTIC_HEADERS: dict[str, str] = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language":           "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
    "DNT":                       "1",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest":            "document",
    "Sec-Fetch-Mode":            "navigate",
    "Sec-Fetch-Site":            "none",
    "Sec-Fetch-User":            "?1",
    "Cache-Control":             "max-age=0",
    "sec-ch-ua":                 '"Google Chrome";v="123", "Not:A-Brand";v="8", "Chromium";v="123"',
    "sec-ch-ua-mobile":          "?0",
    "sec-ch-ua-platform":        '"Windows"',
}

STEALTH_SCRIPT = """
(() => {
    // webdriver 플래그 숨기기
    Object.defineProperty(navigator, 'webdriver', { get: () => false });

    // ChromeDriver cdc_ 아티팩트 제거
    for (const key of Object.keys(window)) {
        if (key.startsWith('cdc_')) {
            try { delete window[key]; } catch (e) {}
        }
    }

    // Chrome 런타임 위장
    window.chrome = {
        runtime: {},
        app: {},
        loadTimes: () => {
            const now = Date.now() / 1000;
            return {
                commitLoadTime: now - Math.random(),
                finishDocumentLoadTime: now - Math.random(),
                finishLoadTime: now - Math.random(),
                firstPaintAfterLoadTime: 0,
                firstPaintTime: now - Math.random(),
                navigationType: 'Other',
                numTabsInSession: Math.floor(Math.random() * 10) + 1,
                requestTime: now - Math.random(),
                startLoadTime: now - Math.random(),
            };
        },
        csi: () => ({
            onloadT: Date.now(),
            pageT: Math.random() * 1000,
            tran: Math.floor(Math.random() * 20),
        }),
    };

    // plugins 위장
    Object.defineProperty(navigator, 'plugins', {
        get: () => [
            { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer',
              description: 'Portable Document Format' },
            { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai',
              description: 'Portable Document Format' },
            { name: 'Native Client', filename: 'internal-nacl-plugin',
              description: 'Native Client' },
        ],
    });

    // languages 위장
    Object.defineProperty(navigator, 'languages', {
        get: () => ['ko-KR', 'ko', 'en-US', 'en'],
    });

    // permissions 위장
    if (navigator.permissions && navigator.permissions.query) {
        const originalQuery = navigator.permissions.query.bind(navigator.permissions);
        navigator.permissions.query = (parameters) => (
            parameters && parameters.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : originalQuery(parameters)
        );
    }

    // getBattery 제거
    if ('getBattery' in navigator) {
        try { delete Navigator.prototype.getBattery; } catch (e) {}
    }

    // 하드웨어 위장
    Object.defineProperty(navigator, 'hardwareConcurrency', {
        get: () => 4 + Math.floor(Math.random() * 4),
    });
    if ('deviceMemory' in navigator) {
        Object.defineProperty(navigator, 'deviceMemory', {
            get: () => [4, 8, 16][Math.floor(Math.random() * 3)],
        });
    }
})();
"""


def pick_profile(rng: random.Random | None = None) -> dict[str, Any]:
    """컨텍스트 생성 옵션 (랜덤 뷰포트·User-Agent + 고정 로케일/타임존)."""
    rng = rng or random
    viewport = dict(rng.choice(VIEWPORTS))
    return {
        "viewport":            viewport,
        "screen":              dict(viewport),
        "user_agent":          rng.choice(USER_AGENTS),
        "locale":              "ko-KR",
        "timezone_id":         "Asia/Seoul",
        "device_scale_factor": 1 if rng.random() > 0.5 else 2,
        "color_scheme":        "light",
        "java_script_enabled": True,
        "accept_downloads":    False,
        "extra_http_headers":  dict(REALISTIC_HEADERS),
    }


# ─────────────────────────────────────────────────────────────
# BrowserSession
# ─────────────────────────────────────────────────────────────

class BrowserSession:
    """
    브라우저 프로세스 1개 + (지연 생성) 컨텍스트 1개.

    Args:
        headless:       헤드리스 여부 (기본: Settings.BROWSER_HEADLESS)
        proxy:          ProxyConfig (선택)
        driver_factory: Playwright 드라이버 팩토리 (테스트 주입용)
    """

    def __init__(
        self,
        headless: Optional[bool] = None,
        proxy:    Optional[ProxyConfig] = None,
        driver_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        if headless is None:
            from core.config import get_settings
            headless = get_settings().BROWSER_HEADLESS

        self.headless = headless
        self.proxy    = proxy
        self._driver_factory = driver_factory

        self._driver:  Any = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._lock = asyncio.Lock()

        self.log = structlog.get_logger(self.__class__.__name__)

    @property
    def is_alive(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    # ── 생성 / 재사용 ────────────────────────────────────────

    def _on_disconnected(self, *_: Any) -> None:
        self.log.warning("browser_disconnected")
        self._browser = None
        self._context = None

    async def _ensure_browser(self) -> Browser:
        if self.is_alive:
            return self._browser

        if self._browser is not None:
            # 연결 끊긴 브라우저는 재사용하지 않음
            await self._safe_close(self._browser, "stale_browser")
            self._browser = None
            self._context = None

        viewport = random.choice(VIEWPORTS)
        launch: dict[str, Any] = {
            "headless": self.headless,
            "args": LAUNCH_ARGS + [f"--window-size={viewport['width']},{viewport['height']}"],
        }
        if self.proxy is not None:
            launch["proxy"] = self.proxy.to_playwright()

        with log_context(phase=Phase.INIT):
            try:
                if self._driver is None:
                    self._driver = await self._driver_factory().start()
                browser = await self._driver.chromium.launch(**launch)
            except PlaywrightError as exc:
                self.log.error("browser_launch_failed", error=str(exc))
                raise BrowserResourceError(f"브라우저 실행 실패: {exc}") from exc

            browser.on("disconnected", self._on_disconnected)
            self._browser = browser
            self.log.info(
                "browser_launched",
                headless=self.headless,
                proxy=self.proxy.server if self.proxy else None,
            )
        return browser

    async def context(self) -> BrowserContext:
        """살아있는 공유 컨텍스트를 반환합니다 (필요 시 생성)."""
        async with self._lock:
            browser = await self._ensure_browser()
            if self._context is not None:
                return self._context

            profile = pick_profile()
            try:
                context = await browser.new_context(**profile)
                await context.add_init_script(STEALTH_SCRIPT)
            except PlaywrightError as exc:
                raise BrowserResourceError(f"브라우저 컨텍스트 생성 실패: {exc}") from exc

            self._context = context
            self.log.debug(
                "context_created",
                viewport=profile["viewport"],
                user_agent=profile["user_agent"][:60],
            )
            return context

    async def new_page(self) -> Page:
        """공유 컨텍스트 안에 새 페이지를 엽니다 (추출 1건당 1개)."""
        context = await self.context()
        try:
            return await context.new_page()
        except PlaywrightError as exc:
            # 컨텍스트가 죽었으면 다음 호출에서 재생성
            self._context = None
            raise BrowserResourceError(f"페이지 생성 실패: {exc}") from exc

    # ── 페이지 조작 ──────────────────────────────────────────

    @staticmethod
    async def install_resource_blocking(
        page: Page,
        resource_types: Iterable[str],
        url_fragments: Iterable[str] = (),
    ) -> None:
        """리소스 타입 또는 URL 부분 문자열이 일치하는 요청을 abort 합니다."""
        blocked_types = frozenset(resource_types)
        fragments     = tuple(url_fragments)

        async def _route(route: Route) -> None:
            request = route.request
            if request.resource_type in blocked_types or any(
                frag in request.url for frag in fragments
            ):
                await route.abort()
            else:
                await route.continue_()

        await page.route("**/*", _route)

    @staticmethod
    async def simulate_human(page: Page) -> None:
        """마우스 이동 + 스크롤 + 랜덤 대기 (1~3초)."""
        await page.mouse.move(random.random() * 200 + 100, random.random() * 200 + 100)
        await page.evaluate("(y) => window.scrollTo(0, y)", random.random() * 500)
        await page.wait_for_timeout(1000 + random.random() * 2000)

    # ── 해제 ─────────────────────────────────────────────────

    async def _safe_close(self, target: Any, what: str) -> None:
        try:
            await target.close()
        except PlaywrightError as exc:
            self.log.warning("close_failed", target=what, error=str(exc))

    async def close(self) -> None:
        """컨텍스트 → 브라우저 → 드라이버 순으로 해제합니다. 멱등."""
        if self._driver is None and self._browser is None and self._context is None:
            return

        with log_context(phase=Phase.CLEANUP):
            context, browser, driver = self._context, self._browser, self._driver
            self._context = None
            self._browser = None
            self._driver  = None

            if context is not None:
                await self._safe_close(context, "context")
            if browser is not None:
                await self._safe_close(browser, "browser")
            if driver is not None:
                try:
                    await driver.stop()
                except PlaywrightError as exc:
                    self.log.warning("close_failed", target="driver", error=str(exc))
            self.log.info("browser_closed")
