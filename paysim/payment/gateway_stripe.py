import asyncio
from typing import Any, Dict, Optional

import stripe
from loguru import logger

from paysim.payment.errors import ProcessorApiError


def _as_dict(obj: Any) -> Dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGatewayClient:
    """
    Stripe API client for server-to-server transactions. The SDK is
    blocking, so calls run in a worker thread.
    """

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def _call(self, fn, **params) -> Dict[str, Any]:
        try:
            obj = await asyncio.to_thread(fn, api_key=self.api_key, **params)
        except stripe.CardError as e:
            logger.bind(event="stripe_card_error").warning(f"Stripe card error: {e.code}")
            raise ProcessorApiError(e.user_message or str(e), code=e.code,
                                    decline_code=getattr(e, "decline_code", None)) from e
        except stripe.StripeError as e:
            logger.bind(event="stripe_error").error(f"Stripe error: {type(e).__name__}")
            raise ProcessorApiError(e.user_message or str(e), code=getattr(e, "code", None)) from e
        return _as_dict(obj)

    async def create_payment_method(self, card: Optional[Dict[str, Any]] = None,
                                    token: Optional[str] = None,
                                    billing_name: Optional[str] = None) -> Dict[str, Any]:
        if token:
            card_params: Dict[str, Any] = {"token": token}
        else:
            card_params = dict(card or {})
        params: Dict[str, Any] = {"type": "card", "card": card_params}
        if billing_name:
            params["billing_details"] = {"name": billing_name}
        return await self._call(stripe.PaymentMethod.create, **params)

    async def create_and_confirm_intent(self, amount_minor: int, currency: str, payment_method_id: str,
                                        description: str, metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return await self._call(
            stripe.PaymentIntent.create,
            amount=amount_minor,
            currency=currency,
            payment_method=payment_method_id,
            description=description,
            confirm=True,
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            metadata=metadata or {},
        )
