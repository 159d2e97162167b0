from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional

from loguru import logger
from playwright.async_api import async_playwright

from paysim.payment.errors import BrowserAutomationError
from paysim.payment.models import BrowserEnv

# Sandbox off and web security relaxed so the checkout page's cross-origin
# widget frames can be inspected. Only run against a trusted host.
LAUNCH_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-dev-shm-usage",
]


@dataclass
class BrowserSession:
    page: Any
    environment: BrowserEnv
    context: Any = None
    browser: Any = None
    driver: Any = None


class BrowserSessionManager:
    """
    Scoped acquisition of one isolated browser page per request.

    `session()` yields a BrowserSession and releases it exactly once, whether
    the body returns, raises, or is cancelled by a caller-side timeout.
    """

    def __init__(self, headless: bool = True, launch_args: Optional[List[str]] = None):
        self.headless = headless
        self.launch_args = list(launch_args if launch_args is not None else LAUNCH_ARGS)
        self.acquired = 0
        self.released = 0

    @property
    def active(self) -> int:
        return self.acquired - self.released

    async def _open(self, environment: BrowserEnv) -> BrowserSession:
        driver = await async_playwright().start()
        browser = None
        try:
            browser = await driver.chromium.launch(headless=self.headless, args=self.launch_args)
            context = await browser.new_context(
                user_agent=environment.userAgent,
                viewport={"width": environment.viewport.width, "height": environment.viewport.height},
                ignore_https_errors=True,
            )
            page = await context.new_page()
        except BaseException as e:
            # Also reached when a caller-side timeout cancels the launch.
            if browser is not None:
                await browser.close()
            await driver.stop()
            if isinstance(e, Exception):
                raise BrowserAutomationError(f"Failed to launch browser: {e}") from e
            raise
        return BrowserSession(page=page, environment=environment, context=context,
                              browser=browser, driver=driver)

    async def _close(self, session: BrowserSession) -> None:
        try:
            if session.browser is not None:
                await session.browser.close()
        finally:
            if session.driver is not None:
                await session.driver.stop()

    @asynccontextmanager
    async def session(self, environment: BrowserEnv) -> AsyncIterator[BrowserSession]:
        opened = await self._open(environment)
        self.acquired += 1
        logger.bind(event="browser_session_acquired").debug("Browser session acquired")
        try:
            yield opened
        finally:
            self.released += 1
            try:
                await self._close(opened)
            except Exception as e:
                logger.bind(event="browser_session_close_failed").warning(f"Browser close failed: {e}")
            logger.bind(event="browser_session_released").debug("Browser session released")
