from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from paysim.payment.errors import GeneralProcessingError, InvalidTokenFormat, PaySimError, ProcessorApiError
from paysim.payment.models import CardInfo, PaymentInfo, PaymentSuccess
from paysim.payment.validator import (
    EMBEDDED_CARD_SENTINEL,
    PAYMENT_METHOD_PATTERN,
    PAYMENT_METHOD_SENTINEL,
    TOKEN_PATTERN,
    parse_token_payload,
)


@dataclass
class ResolvedToken:
    kind: str  # 'payment_method' | 'token' | 'card'
    payment_method_id: Optional[str] = None
    token: Optional[str] = None
    card: Optional[Dict[str, Any]] = None


def resolve_token(token: str) -> ResolvedToken:
    """
    Work out which processor path a token takes:
    - pm_ id, or the payment_method sentinel -> existing payment method
    - tok_ id, or a test-token marker -> token-backed payment method
    - embedded_card_data sentinel / hasCardData -> card data carried in the token
    """
    if PAYMENT_METHOD_PATTERN.match(token):
        return ResolvedToken("payment_method", payment_method_id=token)
    if TOKEN_PATTERN.match(token):
        return ResolvedToken("token", token=token)

    data = parse_token_payload(token) or {}
    token_id = data.get("id")
    if isinstance(token_id, str) and PAYMENT_METHOD_PATTERN.match(token_id):
        return ResolvedToken("payment_method", payment_method_id=token_id)
    if token_id == PAYMENT_METHOD_SENTINEL:
        pm_id = data.get("paymentMethodId")
        if not isinstance(pm_id, str) or not PAYMENT_METHOD_PATTERN.match(pm_id):
            raise InvalidTokenFormat("Invalid token format: payment_method token needs a pm_ paymentMethodId")
        return ResolvedToken("payment_method", payment_method_id=pm_id)
    if token_id == EMBEDDED_CARD_SENTINEL or data.get("hasCardData") is True:
        card = data.get("card")
        if not isinstance(card, dict) or not card.get("number"):
            raise InvalidTokenFormat("Invalid token format: embedded card token carries no card data")
        return ResolvedToken("card", card=card)
    if isinstance(token_id, str) and TOKEN_PATTERN.match(token_id):
        return ResolvedToken("token", token=token_id)
    if data.get("isTestToken") is True:
        test_id = data.get("tokenId") or token_id
        if isinstance(test_id, str) and TOKEN_PATTERN.match(test_id):
            return ResolvedToken("token", token=test_id)
        return ResolvedToken("token", token="tok_visa")
    raise InvalidTokenFormat("Invalid token format: unrecognized token shape")


def _card_params(card: Dict[str, Any]) -> Dict[str, Any]:
    params = {
        "number": str(card.get("number", "")).replace(" ", ""),
        "exp_month": int(card.get("expMonth") or card.get("exp_month")),
        "exp_year": int(card.get("expYear") or card.get("exp_year")),
        "cvc": str(card.get("cvv") or card.get("cvc") or ""),
    }
    return params


class PaymentProcessor:
    """
    Server-to-server payments: create a payment method, then create and
    confirm a payment intent against it. Processor errors are final and
    surface with `real_transaction` set.
    """

    def __init__(self, gateway_client: Any, currency: str = "usd"):
        self.gateway = gateway_client
        self.currency = currency

    async def _charge(self, mode: str, payment_method: Dict[str, Any], payment_info: PaymentInfo,
                      request_id: Optional[str], cardholder_name: Optional[str]) -> PaymentSuccess:
        amount = payment_info.amount_minor()
        logger.bind(event="payment_intent_create").info(f"Creating payment intent ({mode}, {amount})")
        intent = await self.gateway.create_and_confirm_intent(
            amount,
            self.currency,
            payment_method["id"],
            payment_info.description_or_default(),
            metadata={"requestId": request_id or "", "mode": mode},
        )
        card = payment_method.get("card") or {}
        return PaymentSuccess(
            mode=mode,
            real_transaction=True,
            paymentIntentId=intent.get("id"),
            paymentMethodId=payment_method["id"],
            status=intent.get("status"),
            amount=intent.get("amount", amount),
            currency=intent.get("currency", self.currency),
            last4=card.get("last4"),
            brand=card.get("brand"),
            cardholderName=cardholder_name,
            requestId=request_id,
        )

    async def _guarded(self, coro):
        try:
            return await coro
        except PaySimError:
            raise
        except Exception as e:
            raise ProcessorApiError(f"Payment processing failed: {e}") from e

    async def process_card(self, card: CardInfo, payment_info: PaymentInfo,
                           request_id: Optional[str] = None) -> PaymentSuccess:
        logger.bind(event="payment_method_create").info("Creating payment method from card data")

        async def run():
            pm = await self.gateway.create_payment_method(card=_card_params(card.model_dump()),
                                                          billing_name=card.name)
            return await self._charge("real_direct", pm, payment_info, request_id, card.name)

        return await self._guarded(run())

    async def process_token(self, token: str, cardholder_name: Optional[str], payment_info: PaymentInfo,
                            request_id: Optional[str] = None) -> PaymentSuccess:
        resolved = resolve_token(token)
        logger.bind(event="payment_token_resolve").info(f"Resolved token as {resolved.kind}")

        async def run():
            if resolved.kind == "payment_method":
                pm = {"id": resolved.payment_method_id}
                return await self._charge("real_token", pm, payment_info, request_id, cardholder_name)
            if resolved.kind == "token":
                pm = await self.gateway.create_payment_method(token=resolved.token, billing_name=cardholder_name)
                return await self._charge("real_token", pm, payment_info, request_id, cardholder_name)
            if resolved.kind == "card":
                try:
                    params = _card_params(resolved.card)
                except (TypeError, ValueError):
                    raise InvalidTokenFormat("Invalid token format: embedded card data is incomplete")
                name = cardholder_name or resolved.card.get("name")
                pm = await self.gateway.create_payment_method(card=params, billing_name=name)
                return await self._charge("real_embedded_card", pm, payment_info, request_id, name)
            raise GeneralProcessingError(f"Unhandled token kind: {resolved.kind}")

        return await self._guarded(run())
