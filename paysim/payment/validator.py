import json
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from paysim.payment.errors import (
    InvalidCardNumber,
    InvalidRequestShape,
    InvalidTokenFormat,
    MissingField,
)
from paysim.payment.models import (
    BrowserEnv,
    CardInfo,
    MAX_AMOUNT_MINOR,
    ClassifiedRequest,
    DirectRequest,
    PaymentInfo,
    TokenRequest,
)

TOKEN_PATTERN = re.compile(r"^tok_\w+$")
PAYMENT_METHOD_PATTERN = re.compile(r"^pm_\w+$")

# Sentinel ids a JSON token may carry instead of a processor id.
EMBEDDED_CARD_SENTINEL = "embedded_card_data"
PAYMENT_METHOD_SENTINEL = "payment_method"
SENTINELS = (EMBEDDED_CARD_SENTINEL, PAYMENT_METHOD_SENTINEL)

REQUIRED_CARD_FIELDS = ("name", "number", "expMonth", "expYear", "cvv")
MIN_CARD_DIGITS = 13
MAX_CARD_DIGITS = 19
MONTH_PATTERN = re.compile(r"^\d{1,2}$")
YEAR_PATTERN = re.compile(r"^(\d{2}|\d{4})$")


def is_prefixed_id(value: Any) -> bool:
    return isinstance(value, str) and bool(TOKEN_PATTERN.match(value) or PAYMENT_METHOD_PATTERN.match(value))


def parse_token_payload(token: str) -> Optional[Dict[str, Any]]:
    """Decode a JSON-encoded token. Returns None for raw prefixed ids.

    Raises InvalidTokenFormat for anything that is neither.
    """
    if is_prefixed_id(token):
        return None
    try:
        data = json.loads(token)
    except (TypeError, ValueError) as e:
        raise InvalidTokenFormat(f"Invalid token format: not a recognized token id and not valid JSON ({e})")
    if not isinstance(data, dict):
        raise InvalidTokenFormat("Invalid token format: structured token must be a JSON object")

    token_id = data.get("id")
    if is_prefixed_id(token_id) or token_id in SENTINELS:
        return data
    if data.get("hasCardData") is True or data.get("isTestToken") is True:
        return data
    raise InvalidTokenFormat("Invalid token format: structured token has no recognized id or marker")


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _validate_card(raw: Any) -> CardInfo:
    if not isinstance(raw, dict):
        raise InvalidRequestShape("cardInfo must be an object")
    missing: List[str] = [f for f in REQUIRED_CARD_FIELDS if not _present(raw.get(f))]
    if missing:
        raise MissingField(missing)

    number = re.sub(r"[\s-]", "", str(raw["number"]))
    if not number.isdigit() or not (MIN_CARD_DIGITS <= len(number) <= MAX_CARD_DIGITS):
        raise InvalidCardNumber(
            f"Invalid card number length: must be {MIN_CARD_DIGITS}-{MAX_CARD_DIGITS} digits"
        )

    month = str(raw["expMonth"]).strip()
    if not MONTH_PATTERN.match(month) or not 1 <= int(month) <= 12:
        raise InvalidRequestShape("cardInfo.expMonth must be a month number between 1 and 12")
    year = str(raw["expYear"]).strip()
    if not YEAR_PATTERN.match(year):
        raise InvalidRequestShape("cardInfo.expYear must be a 2 or 4 digit year")

    postal = raw.get("postalCode")
    return CardInfo(
        name=str(raw["name"]).strip(),
        number=number,
        expMonth=month,
        expYear=year,
        cvv=str(raw["cvv"]).strip(),
        postalCode=str(postal).strip() if _present(postal) else None,
    )


def _validate_browser_env(raw: Any) -> BrowserEnv:
    if not isinstance(raw, dict):
        raise InvalidRequestShape("Missing browserEnv in request body")
    user_agent = raw.get("userAgent")
    if not isinstance(user_agent, str) or not user_agent.strip():
        raise InvalidRequestShape("browserEnv.userAgent must be a non-empty string")
    if not isinstance(raw.get("viewport"), dict):
        raise InvalidRequestShape("browserEnv.viewport must be an object with width and height")
    try:
        return BrowserEnv.model_validate(raw)
    except ValidationError:
        raise InvalidRequestShape("browserEnv.viewport width and height must be positive integers")


def _validate_payment_info(raw: Any, require_amount: bool) -> PaymentInfo:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidRequestShape("paymentInfo must be an object")
    if require_amount and raw.get("amount") is None:
        raise MissingField(["amount"], context="paymentInfo")
    amount = raw.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, (int, float))):
        raise InvalidRequestShape("paymentInfo.amount must be a number")
    try:
        info = PaymentInfo.model_validate(raw)
    except ValidationError:
        raise InvalidRequestShape("paymentInfo.amount must be a positive number")
    if info.amount is not None and info.amount > MAX_AMOUNT_MINOR / 100:
        raise InvalidRequestShape(f"paymentInfo.amount must not exceed {MAX_AMOUNT_MINOR / 100:.2f}")
    return info


def validate_payment_request(body: Any, require_browser_env: bool = True,
                             require_amount: bool = False) -> ClassifiedRequest:
    """
    Classify an inbound payment body into exactly one mode.

    - both or neither of `stripeToken` / `cardInfo` -> InvalidRequestShape
    - token mode: prefixed id, or JSON with an accepted id/marker
    - direct mode: all card fields present, 13-19 digit number
    """
    if not isinstance(body, dict):
        raise InvalidRequestShape("Request body must be a JSON object")

    has_token = _present(body.get("stripeToken"))
    has_card = body.get("cardInfo") is not None
    if has_token and has_card:
        raise InvalidRequestShape("Provide either stripeToken or cardInfo, not both")
    if not has_token and not has_card:
        raise InvalidRequestShape("Missing payment data: provide stripeToken or cardInfo")

    browser_env = _validate_browser_env(body.get("browserEnv")) if require_browser_env else None
    payment_info = _validate_payment_info(body.get("paymentInfo"), require_amount)

    if has_token:
        token = body["stripeToken"]
        if not isinstance(token, str):
            raise InvalidTokenFormat("Invalid token format: stripeToken must be a string")
        parse_token_payload(token)
        name = body.get("cardholderName")
        return TokenRequest(
            token=token,
            cardholderName=str(name) if _present(name) else None,
            paymentInfo=payment_info,
            browserEnv=browser_env,
        )

    return DirectRequest(
        cardInfo=_validate_card(body["cardInfo"]),
        paymentInfo=payment_info,
        browserEnv=browser_env,
    )
