"""Headless Chromium renderer for script-generated origin pages.

Every render launches its own browser (no pooling), blocks heavy
sub-resources, waits for the network to go idle and returns page HTML.
Transient navigation failures are retried with exponential backoff, and a
circuit breaker stops hammering the origin after repeated failures.
"""

import logging
import random
from typing import Any, Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import Route, async_playwright
from pybreaker import CircuitBreaker, CircuitBreakerError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from fixtures_service.errors import CircuitOpenError, RenderError
from fixtures_service.scraper.breaker import create_render_breaker

logger = logging.getLogger("scraper.renderer")

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:120.0) Gecko/20100101 Firefox/120.0",
]

ACCEPT_LANGUAGE = "en-US,en;q=0.9"

# Restricted hosts (containers, PaaS dynos) cannot use Chromium's sandbox
BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

BLOCKED_RESOURCE_TYPES = {"image", "stylesheet", "font", "media"}

VIEWPORT = {"width": 1200, "height": 900}

NAVIGATION_TIMEOUT_MS = 30000
SELECTOR_TIMEOUT_MS = 5000
MAX_ATTEMPTS = 3


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, RenderError) and exc.transient


async def _block_heavy_resources(route: Route) -> None:
    """Abort images, stylesheets, fonts and media; let everything else through."""
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserRenderer:
    """
    Renders a URL to HTML with a fresh headless browser per call.

    Usage:
        renderer = BrowserRenderer()
        html = await renderer.render("https://ablefast.com/", wait_selector="select option")
    """

    def __init__(
        self,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        selector_timeout_ms: int = SELECTOR_TIMEOUT_MS,
        max_attempts: int = MAX_ATTEMPTS,
        breaker: Optional[CircuitBreaker] = None,
        retry_wait: Any = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        """
        Args:
            navigation_timeout_ms: Hard timeout for page.goto
            selector_timeout_ms: Timeout for the optional selector wait
            max_attempts: Render attempts per call for transient failures
            breaker: Shared circuit breaker (one per process)
            retry_wait: tenacity wait strategy between attempts
            playwright_factory: Returns an async context manager yielding Playwright
        """
        self.navigation_timeout_ms = navigation_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms
        self.max_attempts = max_attempts
        self.breaker = breaker or create_render_breaker()
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self._playwright_factory = playwright_factory

    async def render(self, url: str, wait_selector: Optional[str] = None) -> str:
        """
        Return fully rendered HTML for url.

        Raises:
            CircuitOpenError: If renders are currently suspended
            RenderError: On driver or launch failure, navigation timeout or automation fault
        """
        try:
            with self.breaker.calling():
                return await self._render_with_retry(url, wait_selector)
        except CircuitBreakerError as e:
            raise CircuitOpenError(f"Renders suspended by circuit breaker: {e}", url=url) from e

    async def _render_with_retry(self, url: str, wait_selector: Optional[str]) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_transient),
            before_sleep=lambda state: logger.warning(
                f"Render attempt {state.attempt_number} failed for {url}: "
                f"{state.outcome.exception()} - retrying"
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._render_once(url, wait_selector)

    async def _render_once(self, url: str, wait_selector: Optional[str]) -> str:
        try:
            async with self._playwright_factory() as p:
                return await self._render_page(p, url, wait_selector)
        except RenderError:
            raise
        except Exception as e:
            # Driver start/stop happens outside the page-level handlers
            logger.error(f"Playwright driver failed for {url}: {e}")
            raise RenderError(f"Playwright driver failed: {e}", url=url) from e

    async def _render_page(self, p: Any, url: str, wait_selector: Optional[str]) -> str:
        try:
            browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
        except PlaywrightError as e:
            logger.error(f"Browser launch failed: {e}")
            raise RenderError(f"Browser launch failed: {e}", url=url) from e

        try:
            context = await browser.new_context(
                user_agent=random_user_agent(),
                viewport=VIEWPORT,
                extra_http_headers={"Accept-Language": ACCEPT_LANGUAGE},
            )
            page = await context.new_page()
            await page.route("**/*", _block_heavy_resources)

            try:
                await page.goto(
                    url,
                    wait_until="networkidle",
                    timeout=self.navigation_timeout_ms,
                )
            except PlaywrightTimeoutError as e:
                raise RenderError(
                    f"Navigation to {url} timed out after {self.navigation_timeout_ms}ms",
                    url=url,
                    transient=True,
                ) from e
            except PlaywrightError as e:
                raise RenderError(f"Navigation to {url} failed: {e}", url=url, transient=True) from e

            if wait_selector:
                try:
                    await page.wait_for_selector(wait_selector, timeout=self.selector_timeout_ms)
                except PlaywrightTimeoutError:
                    logger.warning(
                        f"Selector '{wait_selector}' not found on {url} within "
                        f"{self.selector_timeout_ms}ms - using page as rendered"
                    )

            html = await page.content()
            await page.close()
            return html
        except PlaywrightError as e:
            logger.error(f"Browser automation fault on {url}: {e}")
            raise RenderError(f"Browser automation fault: {e}", url=url) from e
        finally:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.debug(f"Browser close failed for {url}: {e}")
