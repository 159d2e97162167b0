import time
from dataclasses import dataclass, field
from typing import Any

from paysim.audit.logger import StructuredLogger
from paysim.browser.orchestrator import PaymentOrchestrator
from paysim.browser.session import BrowserSessionManager
from paysim.config import Settings
from paysim.payment.gateway_mock import MockGatewayClient
from paysim.payment.gateway_stripe import StripeGatewayClient
from paysim.payment.processor import PaymentProcessor
from paysim.security.auth import KeyAuthenticator
from paysim.security.rate_limit import SlidingWindowRateLimiter


@dataclass
class AppContext:
    """Everything a request handler needs, built once per process."""
    settings: Settings
    audit: StructuredLogger
    authenticator: KeyAuthenticator
    rate_limiter: SlidingWindowRateLimiter
    sessions: BrowserSessionManager
    orchestrator: PaymentOrchestrator
    processor: PaymentProcessor
    started_at: float = field(default_factory=time.time)

    @property
    def uptime(self) -> float:
        return round(time.time() - self.started_at, 3)


def build_gateway(settings: Settings) -> Any:
    if settings.processor_backend == "mock" or not settings.stripe_secret_key:
        return MockGatewayClient()
    return StripeGatewayClient(settings.stripe_secret_key)


def build_context(settings: Settings, audit: StructuredLogger = None, sessions: BrowserSessionManager = None,
                  gateway: Any = None, orchestrator: PaymentOrchestrator = None) -> AppContext:
    audit = audit or StructuredLogger(service=settings.service_name)
    return AppContext(
        settings=settings,
        audit=audit,
        authenticator=KeyAuthenticator(settings.api_keys, audit),
        rate_limiter=SlidingWindowRateLimiter(settings.rate_limit_window_ms, settings.rate_limit_max),
        sessions=sessions or BrowserSessionManager(headless=settings.headless),
        orchestrator=orchestrator or PaymentOrchestrator(
            settings.checkout_page_url,
            audit,
            form_timeout_ms=settings.form_timeout_ms,
            frame_timeout_ms=settings.frame_timeout_ms,
            base_delay_s=settings.retry_base_delay_ms / 1000.0,
        ),
        processor=PaymentProcessor(gateway or build_gateway(settings), currency=settings.currency),
    )
