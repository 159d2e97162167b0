import time
from typing import Any, Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from paysim.audit.logger import StructuredLogger
from paysim.browser.frames import locate_embedded_card_frame
from paysim.browser.retry import FILL_ATTEMPTS, SUBMIT_ATTEMPTS, with_retry
from paysim.browser.session import BrowserSession
from paysim.payment.errors import (
    BrowserAutomationError,
    ErrorKind,
    FormNotFound,
    decline_message,
)
from paysim.payment.models import (
    CardInfo,
    PaymentFailure,
    PaymentInfo,
    PaymentResult,
    PaymentSuccess,
    SimulationMode,
)

# Checkout page contract.
FORM_SELECTOR = "#payment-form"
AMOUNT_SELECTOR = "#amount"
DESCRIPTION_SELECTOR = "#description"
CARDHOLDER_SELECTOR = "#card-name"

# Inputs inside the widget's card frame.
CARD_NUMBER_INPUT = 'input[name="cardnumber"]'
CARD_EXPIRY_INPUT = 'input[name="exp-date"]'
CARD_CVC_INPUT = 'input[name="cvc"]'
CARD_POSTAL_INPUT = 'input[name="postal"]'

SUBMIT_TOKEN_SCRIPT = "([token, name]) => window.triggerStripePaymentWithToken(token, name)"
SUBMIT_CARD_SCRIPT = "(options) => window.triggerStripePayment(options)"

TYPING_DELAY_MS = 30


class PaymentOrchestrator:
    """
    Drives the local checkout page through token or direct card entry.

    Field population and submission are retried with a linearly growing
    delay. A decline reported by the widget is returned as a failure result
    and never retried.
    """

    def __init__(self, checkout_url: str, audit: StructuredLogger,
                 form_timeout_ms: int = 10000, frame_timeout_ms: int = 15000,
                 base_delay_s: float = 1.0, sleep=None):
        self.checkout_url = checkout_url
        self.audit = audit
        self.form_timeout_ms = form_timeout_ms
        self.frame_timeout_ms = frame_timeout_ms
        self.base_delay_s = base_delay_s
        self._retry_kwargs = {"sleep": sleep} if sleep is not None else {}

    async def _open_checkout(self, page: Any) -> None:
        try:
            await page.goto(self.checkout_url, wait_until="networkidle")
        except PlaywrightTimeout as e:
            raise BrowserAutomationError(f"Navigation to checkout page timed out: {e}") from e
        except PlaywrightError as e:
            raise BrowserAutomationError(f"Navigation to checkout page failed: {e}") from e
        try:
            await page.wait_for_selector(FORM_SELECTOR, timeout=self.form_timeout_ms)
        except PlaywrightTimeout:
            raise FormNotFound(f"Payment form {FORM_SELECTOR} not found within {self.form_timeout_ms}ms")

    async def _fill_page_fields(self, page: Any, payment_info: PaymentInfo,
                                cardholder_name: Optional[str]) -> None:
        async def fill():
            if payment_info.amount is not None:
                await page.fill(AMOUNT_SELECTOR, f"{payment_info.amount:.2f}")
            if payment_info.description:
                await page.fill(DESCRIPTION_SELECTOR, payment_info.description)
            if cardholder_name:
                await page.fill(CARDHOLDER_SELECTOR, cardholder_name)

        if payment_info.amount is None and not payment_info.description and not cardholder_name:
            return
        await with_retry(fill, FILL_ATTEMPTS, self.base_delay_s, "fill checkout fields", **self._retry_kwargs)

    async def _type_card(self, frame: Any, card: CardInfo) -> None:
        fields = [
            (CARD_NUMBER_INPUT, card.number),
            (CARD_EXPIRY_INPUT, card.expiry),
            (CARD_CVC_INPUT, card.cvv),
        ]
        if card.postalCode:
            fields.append((CARD_POSTAL_INPUT, card.postalCode))

        async def fill():
            for selector, value in fields:
                field = frame.locator(selector)
                await field.fill("")
                await field.press_sequentially(value, delay=TYPING_DELAY_MS)

        await with_retry(fill, FILL_ATTEMPTS, self.base_delay_s, "fill card frame", **self._retry_kwargs)

    async def _submit(self, page: Any, script: str, arg: Any, label: str) -> Dict[str, Any]:
        async def submit():
            result = await page.evaluate(script, arg)
            if not isinstance(result, dict) or ("success" not in result and "error" not in result):
                raise BrowserAutomationError(f"{label}: checkout page returned no result", retryable=True)
            return result

        return await with_retry(submit, SUBMIT_ATTEMPTS, self.base_delay_s, label, **self._retry_kwargs)

    def _to_result(self, outcome: Dict[str, Any], mode: SimulationMode, request_id: Optional[str],
                   real_transaction: bool, last4: Optional[str] = None,
                   cardholder_name: Optional[str] = None) -> PaymentResult:
        if outcome.get("error") is not None:
            error = outcome["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            code = outcome.get("decline_code") or outcome.get("code")
            if isinstance(error, dict):
                code = code or error.get("decline_code") or error.get("code")
            return PaymentFailure(
                error=decline_message(code, message or "Payment failed"),
                type=ErrorKind.STRIPE.value,
                retryable=False,
                code=code,
                real_transaction=real_transaction or None,
                requestId=request_id,
            )

        success = outcome.get("success") or {}
        if not isinstance(success, dict):
            success = {}
        return PaymentSuccess(
            mode=mode.value,
            real_transaction=real_transaction,
            paymentIntentId=success.get("paymentIntentId"),
            paymentMethodId=success.get("paymentMethodId") or success.get("tokenId"),
            status=success.get("status"),
            amount=success.get("amount"),
            currency=success.get("currency"),
            last4=success.get("last4") or last4,
            brand=success.get("brand"),
            cardholderName=success.get("cardholderName") or cardholder_name,
            requestId=request_id,
        )

    def _record(self, result: PaymentResult, started: float, mode: SimulationMode,
                request_id: Optional[str]) -> None:
        context = {"requestId": request_id}
        duration_ms = (time.perf_counter() - started) * 1000
        if isinstance(result, PaymentSuccess):
            self.audit.payment_request("Browser payment completed", context, mode=mode.value,
                                       outcome="success", status=result.status, last4=result.last4)
        else:
            self.audit.payment_request("Browser payment declined", context, mode=mode.value,
                                       outcome="declined", code=result.code, error=result.error)
        self.audit.performance_metrics(f"{mode.value}_mode_payment", duration_ms, context)

    async def run_token_mode(self, session: BrowserSession, token: str, cardholder_name: Optional[str],
                             payment_info: PaymentInfo, request_id: Optional[str] = None) -> PaymentResult:
        started = time.perf_counter()
        page = session.page
        self.audit.payment_request("Starting token mode payment", {"requestId": request_id},
                                   mode=SimulationMode.TOKEN.value, token=token,
                                   hasCardholderName=bool(cardholder_name))
        await self._open_checkout(page)
        await self._fill_page_fields(page, payment_info, cardholder_name)
        outcome = await self._submit(page, SUBMIT_TOKEN_SCRIPT, [token, cardholder_name], "submit token payment")
        result = self._to_result(outcome, SimulationMode.TOKEN, request_id, real_transaction=False,
                                 cardholder_name=cardholder_name)
        self._record(result, started, SimulationMode.TOKEN, request_id)
        return result

    async def run_direct_mode(self, session: BrowserSession, card: CardInfo, payment_info: PaymentInfo,
                              request_id: Optional[str] = None, real_transaction: bool = False) -> PaymentResult:
        started = time.perf_counter()
        page = session.page
        self.audit.payment_request("Starting direct mode payment", {"requestId": request_id},
                                   mode=SimulationMode.DIRECT.value, card=card.summary(),
                                   realTransaction=real_transaction)
        await self._open_checkout(page)
        await self._fill_page_fields(page, payment_info, card.name)
        frame = await locate_embedded_card_frame(page, self.frame_timeout_ms)
        await self._type_card(frame, card)
        outcome = await self._submit(page, SUBMIT_CARD_SCRIPT, {"realTransaction": real_transaction},
                                     "submit card payment")
        result = self._to_result(outcome, SimulationMode.DIRECT, request_id, real_transaction,
                                 last4=card.last4, cardholder_name=card.name)
        self._record(result, started, SimulationMode.DIRECT, request_id)
        return result
