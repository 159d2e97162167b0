from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeout

from paysim.payment.errors import WidgetFrameNotFound

# Tied to how Stripe Elements currently mounts its card frame. Update both
# values together if the widget implementation changes.
CARD_FRAME_ORIGIN = "https://js.stripe.com"
CARD_FRAME_SELECTOR = f'iframe[src^="{CARD_FRAME_ORIGIN}"]'


def _matches(frame: Any) -> bool:
    return (frame.url or "").startswith(CARD_FRAME_ORIGIN)


async def locate_embedded_card_frame(page: Any, timeout_ms: int = 15000) -> Any:
    """Return the widget's card-entry frame, or raise WidgetFrameNotFound."""
    try:
        await page.wait_for_selector(CARD_FRAME_SELECTOR, timeout=timeout_ms)
    except PlaywrightTimeout:
        raise WidgetFrameNotFound(f"Stripe iframe not found within {timeout_ms}ms")

    for frame in page.frames:
        if _matches(frame):
            return frame
    raise WidgetFrameNotFound("Stripe iframe not found among page frames")
