import asyncio
import uuid
from typing import Any, Dict, List, Optional

from paysim.payment.errors import ProcessorApiError

# Stripe's published test numbers that decline, keyed to their decline code.
DECLINING_NUMBERS = {
    "4000000000000002": "card_declined",
    "4000000000009995": "insufficient_funds",
    "4000000000000069": "expired_card",
    "4000000000000127": "incorrect_cvc",
}

_BRANDS = {"4": "visa", "5": "mastercard", "3": "amex", "6": "discover"}


class MockGatewayClient:
    """In-process stand-in for the processor API; records every call."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.calls: List[Dict[str, Any]] = []

    async def create_payment_method(self, card: Optional[Dict[str, Any]] = None,
                                    token: Optional[str] = None,
                                    billing_name: Optional[str] = None) -> Dict[str, Any]:
        await asyncio.sleep(self.latency)
        self.calls.append({"op": "create_payment_method", "token": token, "has_card": card is not None})
        number = str((card or {}).get("number", "4242424242424242"))
        decline = DECLINING_NUMBERS.get(number)
        if decline:
            raise ProcessorApiError("Your card was declined.", code="card_declined", decline_code=decline)
        return {
            "id": f"pm_mock_{uuid.uuid4().hex[:16]}",
            "object": "payment_method",
            "billing_details": {"name": billing_name},
            "card": {"last4": number[-4:], "brand": _BRANDS.get(number[:1], "unknown")},
        }

    async def create_and_confirm_intent(self, amount_minor: int, currency: str, payment_method_id: str,
                                        description: str, metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        await asyncio.sleep(self.latency)
        self.calls.append({"op": "create_and_confirm_intent", "payment_method": payment_method_id,
                           "amount": amount_minor, "currency": currency})
        return {
            "id": f"pi_mock_{uuid.uuid4().hex[:16]}",
            "object": "payment_intent",
            "status": "succeeded",
            "amount": amount_minor,
            "currency": currency,
            "description": description,
            "payment_method": payment_method_id,
        }
