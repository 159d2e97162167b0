import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import stripe
from playwright.async_api import TimeoutError as PlaywrightTimeout


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INVALID_REQUEST_SHAPE = "invalid_request_shape"
    INVALID_TOKEN_FORMAT = "invalid_token_format"
    INVALID_CARD_NUMBER = "invalid_card_number"
    MISSING_FIELD = "missing_field"
    REAL_TRANSACTIONS_DISABLED = "real_transactions_disabled"
    FORM_NOT_FOUND = "form_not_found"
    IFRAME = "iframe_error"
    TIMEOUT = "timeout_error"
    STRIPE = "stripe_error"
    BROWSER = "browser_error"
    GENERAL = "general_error"


class PaySimError(Exception):
    kind = ErrorKind.GENERAL
    status_code = 500
    retryable = False

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class Unauthenticated(PaySimError):
    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401


class Unauthorized(PaySimError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401


class RateLimitExceeded(PaySimError):
    kind = ErrorKind.RATE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class RealTransactionsDisabled(PaySimError):
    kind = ErrorKind.REAL_TRANSACTIONS_DISABLED
    status_code = 403


class InvalidRequest(PaySimError):
    """Base for request validation failures (always 400)."""
    kind = ErrorKind.INVALID_REQUEST_SHAPE
    status_code = 400


class InvalidRequestShape(InvalidRequest):
    pass


class InvalidTokenFormat(InvalidRequest):
    kind = ErrorKind.INVALID_TOKEN_FORMAT


class InvalidCardNumber(InvalidRequest):
    kind = ErrorKind.INVALID_CARD_NUMBER


class MissingField(InvalidRequest):
    kind = ErrorKind.MISSING_FIELD

    def __init__(self, fields: Sequence[str], context: str = "cardInfo"):
        self.fields = list(fields)
        super().__init__(f"Missing required {context} fields: {', '.join(self.fields)}")


class FormNotFound(PaySimError):
    kind = ErrorKind.FORM_NOT_FOUND


class WidgetFrameNotFound(PaySimError):
    kind = ErrorKind.IFRAME
    retryable = True


class AutomationTimeout(PaySimError):
    kind = ErrorKind.TIMEOUT
    retryable = True


class BrowserAutomationError(PaySimError):
    kind = ErrorKind.BROWSER


class ProcessorApiError(PaySimError):
    kind = ErrorKind.STRIPE

    def __init__(self, message: str, code: Optional[str] = None, decline_code: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.decline_code = decline_code
        self.real_transaction = True


class GeneralProcessingError(PaySimError):
    kind = ErrorKind.GENERAL


# Customer-facing messages keyed by processor decline/error code.
DECLINE_MESSAGES: Dict[str, str] = {
    "card_declined": "Your card was declined.",
    "generic_decline": "Your card was declined.",
    "insufficient_funds": "Your card has insufficient funds.",
    "lost_card": "Your card was declined.",
    "stolen_card": "Your card was declined.",
    "expired_card": "Your card has expired.",
    "incorrect_cvc": "Your card's security code is incorrect.",
    "invalid_cvc": "Your card's security code is invalid.",
    "incorrect_number": "Your card number is incorrect.",
    "invalid_number": "Your card number is invalid.",
    "invalid_expiry_month": "Your card's expiration month is invalid.",
    "invalid_expiry_year": "Your card's expiration year is invalid.",
    "processing_error": "An error occurred while processing your card. Try again in a little bit.",
    "do_not_honor": "Your card was declined.",
    "fraudulent": "Your card was declined.",
    "authentication_required": "Your card requires authentication.",
}


def decline_message(code: Optional[str], fallback: str) -> str:
    if code and code in DECLINE_MESSAGES:
        return DECLINE_MESSAGES[code]
    return fallback


@dataclass
class ErrorClassification:
    type: ErrorKind
    message: str
    retryable: Optional[bool] = None


# Ordered (substrings, kind, retryable). First match wins. This is a
# heuristic over free-text messages; it only drives log category and retry
# hints, never control flow that affects correctness.
CLASSIFICATION_RULES: List[Tuple[Tuple[str, ...], ErrorKind, Optional[bool]]] = [
    (("timeout", "timed out"), ErrorKind.TIMEOUT, True),
    (("iframe", "frame not found", "widget frame"), ErrorKind.IFRAME, True),
    (("stripe", "card_declined", "your card", "payment_intent", "payment method"), ErrorKind.STRIPE, False),
    (("browser", "page", "navigation", "target closed", "protocol error", "selector", "playwright"), ErrorKind.BROWSER, None),
]


def classify_error(error: BaseException) -> ErrorClassification:
    """Map any failure onto the error taxonomy (best effort)."""
    if isinstance(error, ProcessorApiError):
        return ErrorClassification(ErrorKind.STRIPE,
                                   decline_message(error.decline_code or error.code, error.message), False)
    if isinstance(error, PaySimError):
        retryable = error.retryable if error.retryable else None
        return ErrorClassification(error.kind, error.message, retryable)
    if isinstance(error, stripe.StripeError):
        code = getattr(error, "code", None)
        decline = getattr(error, "decline_code", None) if isinstance(error, stripe.CardError) else None
        return ErrorClassification(ErrorKind.STRIPE,
                                   decline_message(decline or code, error.user_message or str(error)), False)
    if isinstance(error, (asyncio.TimeoutError, PlaywrightTimeout)):
        return ErrorClassification(ErrorKind.TIMEOUT, str(error) or "Operation timed out", True)

    message = str(error) or type(error).__name__
    lowered = message.lower()
    for needles, kind, retryable in CLASSIFICATION_RULES:
        if any(n in lowered for n in needles):
            return ErrorClassification(kind, message, retryable)
    return ErrorClassification(ErrorKind.GENERAL, message, None)


def as_paysim_error(error: BaseException) -> PaySimError:
    """Wrap an arbitrary failure so it renders like any other PaySimError (500)."""
    if isinstance(error, PaySimError):
        return error
    classification = classify_error(error)
    if classification.type is ErrorKind.GENERAL:
        message = "Payment processing failed"
    else:
        lines = classification.message.splitlines() or [""]
        message = lines[0][:200]
    wrapped = PaySimError(message, retryable=bool(classification.retryable))
    wrapped.kind = classification.type
    return wrapped
