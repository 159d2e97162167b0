import pytest

from paysim.config import ConfigError, load_settings
from paysim.context import build_context, build_gateway
from paysim.payment.gateway_mock import MockGatewayClient

ENV_NAMES = ("API_KEYS", "ENABLE_REAL_TRANSACTIONS", "STRIPE_SECRET_KEY", "PROCESSOR_BACKEND", "PORT",
             "CHECKOUT_URL", "RATE_LIMIT_MAX", "PAYMENT_TIMEOUT_S", "LOG_LEVEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_api_keys_are_required():
    with pytest.raises(ConfigError, match="API_KEYS"):
        load_settings()


def test_defaults(monkeypatch):
    monkeypatch.setenv("API_KEYS", "alpha-key-123, beta-key-456 ,")
    settings = load_settings()
    assert settings.api_keys == frozenset({"alpha-key-123", "beta-key-456"})
    assert settings.enable_real_transactions is False
    assert settings.rate_limit_max == 100
    assert settings.rate_limit_window_ms == 900000
    assert settings.checkout_page_url == "http://localhost:3000/payment-test.html"


def test_real_transactions_need_secret(monkeypatch):
    monkeypatch.setenv("API_KEYS", "alpha-key-123")
    monkeypatch.setenv("ENABLE_REAL_TRANSACTIONS", "true")
    with pytest.raises(ConfigError, match="STRIPE_SECRET_KEY"):
        load_settings()
    monkeypatch.setenv("PROCESSOR_BACKEND", "mock")
    assert load_settings().enable_real_transactions is True


@pytest.mark.parametrize("name,value", [("PORT", "eighty"), ("PROCESSOR_BACKEND", "paypal"),
                                        ("PAYMENT_TIMEOUT_S", "soon")])
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv("API_KEYS", "alpha-key-123")
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        load_settings()


def test_mock_backend_selected_without_secret(monkeypatch):
    monkeypatch.setenv("API_KEYS", "alpha-key-123")
    monkeypatch.setenv("CHECKOUT_URL", "http://checkout.local/pay.html")
    settings = load_settings()
    assert isinstance(build_gateway(settings), MockGatewayClient)
    context = build_context(settings)
    assert context.orchestrator.checkout_url == "http://checkout.local/pay.html"
    assert context.rate_limiter.max_requests == 100
