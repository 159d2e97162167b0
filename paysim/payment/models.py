from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

DEFAULT_AMOUNT_MINOR = 1000
MAX_AMOUNT_MINOR = 99_999_999
DEFAULT_DESCRIPTION = "Test Payment Transaction"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SimulationMode(str, Enum):
    TOKEN = "token"
    DIRECT = "direct"


class Viewport(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class BrowserEnv(BaseModel):
    userAgent: str = Field(min_length=1)
    viewport: Viewport


class CardInfo(BaseModel):
    """
    Raw card fields. Never persisted or logged; use `summary()` for anything
    that leaves the request.
    """
    name: str
    number: str
    expMonth: str
    expYear: str
    cvv: str
    postalCode: Optional[str] = None

    @property
    def last4(self) -> str:
        return self.number[-4:]

    @property
    def expiry(self) -> str:
        """MMYY, the shape the card widget's expiry input expects."""
        return f"{self.expMonth.zfill(2)}{self.expYear[-2:]}"

    def summary(self) -> Dict[str, Any]:
        return {
            "hasName": bool(self.name),
            "last4": self.last4,
            "hasCvv": bool(self.cvv),
            "hasPostalCode": bool(self.postalCode),
        }


class PaymentInfo(BaseModel):
    amount: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    description: Optional[str] = None

    def amount_minor(self, default: int = DEFAULT_AMOUNT_MINOR) -> int:
        if self.amount is None:
            return default
        cents = Decimal(str(self.amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return int(cents * 100)

    def description_or_default(self) -> str:
        return self.description or DEFAULT_DESCRIPTION


class TokenRequest(BaseModel):
    mode: Literal[SimulationMode.TOKEN] = SimulationMode.TOKEN
    token: str
    cardholderName: Optional[str] = None
    paymentInfo: PaymentInfo = Field(default_factory=PaymentInfo)
    browserEnv: Optional[BrowserEnv] = None

    model_config = {"frozen": True}

    def log_view(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "hasCardholderName": bool(self.cardholderName),
            "amount": self.paymentInfo.amount,
            "hasBrowserEnv": self.browserEnv is not None,
        }


class DirectRequest(BaseModel):
    mode: Literal[SimulationMode.DIRECT] = SimulationMode.DIRECT
    cardInfo: CardInfo
    paymentInfo: PaymentInfo = Field(default_factory=PaymentInfo)
    browserEnv: Optional[BrowserEnv] = None

    model_config = {"frozen": True}

    def log_view(self) -> Dict[str, Any]:
        return {
            "card": self.cardInfo.summary(),
            "amount": self.paymentInfo.amount,
            "hasBrowserEnv": self.browserEnv is not None,
        }


ClassifiedRequest = Union[TokenRequest, DirectRequest]


class PaymentSuccess(BaseModel):
    mode: str
    real_transaction: bool = False
    paymentIntentId: Optional[str] = None
    paymentMethodId: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    last4: Optional[str] = None
    brand: Optional[str] = None
    cardholderName: Optional[str] = None
    timestamp: str = Field(default_factory=utc_timestamp)
    requestId: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {"success": self.model_dump(exclude_none=True)}


class PaymentFailure(BaseModel):
    error: str
    type: str
    retryable: Optional[bool] = None
    code: Optional[str] = None
    real_transaction: Optional[bool] = None
    timestamp: str = Field(default_factory=utc_timestamp)
    requestId: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


PaymentResult = Union[PaymentSuccess, PaymentFailure]
