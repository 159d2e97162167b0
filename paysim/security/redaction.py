import re
from typing import Any, Optional

REDACTED = "[REDACTED]"

# Keys are compared lowercased with '-' and '_' removed.
_CARD_NUMBER_KEYS = {"number", "cardnumber", "pan"}
_DROP_KEYS = {"cvv", "cvc", "cvv2", "securitycode", "password"}
_TOKEN_KEYS = {"token", "stripetoken", "paymentmethodid", "clientsecret"}
_SECRET_KEYS = {"apikey", "xapikey", "secret", "secretkey", "stripesecretkey", "authorization"}
_PASS_KEYS = {"requestid", "timestamp", "@timestamp", "paymentintentid"}

_PAN_PATTERN = re.compile(r"\b(?:\d[ -]?){12,18}\d\b")


def mask_card(card_number: str) -> str:
    """
    Return masked PAN, keeping last 4 digits visible (e.g., **** **** **** 1234).
    """
    digits = re.sub(r"\D", "", card_number or "")
    last4 = digits[-4:] if len(digits) >= 4 else digits
    return f"**** **** **** {last4}"


def last4(card_number: Optional[str]) -> Optional[str]:
    if not card_number:
        return None
    digits = re.sub(r"\D", "", card_number)
    return digits[-4:] or None


def truncate_key(value: Optional[str], keep: int = 8) -> Optional[str]:
    """First `keep` characters followed by an ellipsis; short values are fully hidden."""
    if not value:
        return None
    if len(value) <= keep:
        return "*" * len(value)
    return value[:keep] + "..."


def mask_token(value: Optional[str]) -> Optional[str]:
    """Prefix and suffix of a token, never the middle."""
    if not value:
        return None
    if len(value) <= 12:
        return value[:4] + "..."
    return f"{value[:8]}...{value[-4:]}"


def _scrub_string(value: str) -> str:
    return _PAN_PATTERN.sub(lambda m: mask_card(m.group(0)), value)


def _normalise(key: str) -> str:
    return key.lower().replace("-", "").replace("_", "")


def redact(value: Any) -> Any:
    """Recursively copy `value` with sensitive fields masked.

    Card numbers keep their last 4, CVVs are dropped, tokens keep a prefix and
    suffix, secrets keep their first 8 characters. Free-text strings are
    scanned for anything that looks like a PAN.
    """
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            norm = _normalise(str(key))
            if norm in _PASS_KEYS and isinstance(item, str):
                out[key] = item
            elif item is None or isinstance(item, bool):
                out[key] = item
            elif norm in _DROP_KEYS:
                out[key] = REDACTED
            elif norm in _CARD_NUMBER_KEYS and isinstance(item, (str, int)):
                out[key] = mask_card(str(item))
            elif norm in _TOKEN_KEYS and isinstance(item, str):
                out[key] = mask_token(item)
            elif norm in _SECRET_KEYS and isinstance(item, str):
                out[key] = truncate_key(item)
            else:
                out[key] = redact(item)
        return out
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    if isinstance(value, str):
        return _scrub_string(value)
    return value
