import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from dotenv import load_dotenv


class ConfigError(RuntimeError):
    pass


def _flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """
    Process-wide configuration, read once at startup.
    - api_keys: allow-list checked by the key authenticator
    - enable_real_transactions: gates the real-payment and card-to-payment routes
    - processor_backend: 'stripe' talks to the processor API, 'mock' stays in-process
    """
    api_keys: FrozenSet[str] = field(default_factory=frozenset)
    enable_real_transactions: bool = False
    stripe_secret_key: Optional[str] = None
    processor_backend: str = "stripe"
    currency: str = "usd"
    port: int = 3000
    checkout_url: Optional[str] = None
    headless: bool = True
    form_timeout_ms: int = 10000
    frame_timeout_ms: int = 15000
    payment_timeout_s: float = 60.0
    retry_base_delay_ms: int = 1000
    rate_limit_window_ms: int = 900000
    rate_limit_max: int = 100
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    service_name: str = "checkout-simulator"
    environment: str = "development"
    version: str = "1.0.0"

    @property
    def checkout_page_url(self) -> str:
        return self.checkout_url or f"http://localhost:{self.port}/payment-test.html"


def load_settings(env_path: Optional[str] = None) -> Settings:
    """Load `.env` (if present) and build Settings from the environment.

    Raises ConfigError when a required value is missing.
    """
    if env_path:
        load_dotenv(dotenv_path=env_path, override=False)

    keys = frozenset(k.strip() for k in os.getenv("API_KEYS", "").split(",") if k.strip())
    if not keys:
        raise ConfigError("API_KEYS is not set. Configure at least one API key in .env.")

    backend = os.getenv("PROCESSOR_BACKEND", "stripe").strip().lower()
    if backend not in ("stripe", "mock"):
        raise ConfigError(f"PROCESSOR_BACKEND must be 'stripe' or 'mock', got {backend!r}")

    real = _flag("ENABLE_REAL_TRANSACTIONS")
    secret = os.getenv("STRIPE_SECRET_KEY") or None
    if real and backend == "stripe" and not secret:
        raise ConfigError("STRIPE_SECRET_KEY is required when ENABLE_REAL_TRANSACTIONS is on.")

    try:
        payment_timeout = float(os.getenv("PAYMENT_TIMEOUT_S", "60"))
    except ValueError:
        raise ConfigError("PAYMENT_TIMEOUT_S must be a number")

    return Settings(
        api_keys=keys,
        enable_real_transactions=real,
        stripe_secret_key=secret,
        processor_backend=backend,
        currency=os.getenv("CURRENCY", "usd").lower(),
        port=_int("PORT", 3000),
        checkout_url=os.getenv("CHECKOUT_URL") or None,
        headless=_flag("HEADLESS", True),
        form_timeout_ms=_int("FORM_TIMEOUT_MS", 10000),
        frame_timeout_ms=_int("FRAME_TIMEOUT_MS", 15000),
        payment_timeout_s=payment_timeout,
        retry_base_delay_ms=_int("RETRY_BASE_DELAY_MS", 1000),
        rate_limit_window_ms=_int("RATE_LIMIT_WINDOW_MS", 900000),
        rate_limit_max=_int("RATE_LIMIT_MAX", 100),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=os.getenv("LOG_DIR") or None,
        service_name=os.getenv("SERVICE_NAME", "checkout-simulator"),
        environment=os.getenv("APP_ENV", "development"),
    )
