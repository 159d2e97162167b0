import asyncio
from typing import Any, Dict, List, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeout

from paysim.browser.session import BrowserSession, BrowserSessionManager

API_KEY = "test-key-0123456789abcdef"
STRIPE_FRAME_URL = "https://js.stripe.com/v3/elements-inner-card-8a2b.html#componentName=card"


class FakeLocator:
    def __init__(self, frame: "FakeFrame", selector: str):
        self.frame = frame
        self.selector = selector

    async def fill(self, value: str) -> None:
        self.frame.typed[self.selector] = value

    async def press_sequentially(self, value: str, delay: float = 0) -> None:
        if self.frame.fail_typing > 0:
            self.frame.fail_typing -= 1
            raise RuntimeError("Element is not attached to the DOM")
        self.frame.typed[self.selector] = self.frame.typed.get(self.selector, "") + value


class FakeFrame:
    def __init__(self, url: str, fail_typing: int = 0):
        self.url = url
        self.fail_typing = fail_typing
        self.typed: Dict[str, str] = {}

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)


class FakePage:
    """Just enough of a Playwright page for the orchestrator."""

    def __init__(self, results: Optional[List[Any]] = None, form_present: bool = True,
                 frame_present: bool = True, card_frame: Optional[FakeFrame] = None):
        self.results = list(results) if results is not None else [
            {"success": {"paymentIntentId": "pi_test_123", "status": "succeeded", "amount": 1000,
                         "currency": "usd"}}
        ]
        self.form_present = form_present
        self.frame_present = frame_present
        self.card_frame = card_frame or FakeFrame(STRIPE_FRAME_URL)
        self.visited: List[str] = []
        self.filled: Dict[str, str] = {}
        self.evaluations: List[Any] = []

    async def goto(self, url: str, wait_until: str = "load") -> None:
        self.visited.append(url)

    async def wait_for_selector(self, selector: str, timeout: float = 0) -> None:
        if selector == "#payment-form" and not self.form_present:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")
        if selector.startswith("iframe") and not self.frame_present:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def fill(self, selector: str, value: str) -> None:
        self.filled[selector] = value

    @property
    def frames(self) -> List[FakeFrame]:
        main = FakeFrame("http://localhost:3000/payment-test.html")
        return [main, self.card_frame] if self.frame_present else [main]

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluations.append((script, arg))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeSessionManager(BrowserSessionManager):
    def __init__(self, page_factory=FakePage):
        super().__init__(headless=True)
        self.page_factory = page_factory
        self.pages: List[FakePage] = []
        self.environments = []

    async def _open(self, environment):
        page = self.page_factory()
        self.pages.append(page)
        self.environments.append(environment)
        return BrowserSession(page=page, environment=environment)

    async def _close(self, session):
        session.page.closed = True


class FakeChromium:
    def __init__(self, hang: bool):
        self.hang = hang

    async def launch(self, headless: bool = True, args=None):
        if self.hang:
            await asyncio.Event().wait()
        raise RuntimeError("Executable doesn't exist")


class FakeDriver:
    """Stands in for a started Playwright driver whose Chromium never comes up."""

    def __init__(self, hang: bool = True):
        self.chromium = FakeChromium(hang)
        self.stopped = False

    async def start(self) -> "FakeDriver":
        return self

    async def stop(self) -> None:
        self.stopped = True


async def no_sleep(_delay: float) -> None:
    return None
