from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient
from loguru import logger

from app import app
from paysim.audit.logger import StructuredLogger, format_entry
from paysim.config import Settings
from paysim.context import build_context
from paysim.payment.gateway_mock import MockGatewayClient
from tests.fakes import API_KEY, FakeSessionManager


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_keys=frozenset({API_KEY}),
        enable_real_transactions=True,
        processor_backend="mock",
        retry_base_delay_ms=0,
        payment_timeout_s=5,
    )


@pytest.fixture
def sessions() -> FakeSessionManager:
    return FakeSessionManager()


@pytest.fixture
def gateway() -> MockGatewayClient:
    return MockGatewayClient()


@pytest.fixture
def context(settings, sessions, gateway):
    return build_context(settings, audit=StructuredLogger(service="test"), sessions=sessions, gateway=gateway)


@pytest.fixture(name="client")
def client_fixture(context):
    app.state.context = context
    client = TestClient(app)
    yield client
    del app.state.context


@pytest.fixture
def log_lines():
    lines: List[str] = []
    handler_id = logger.add(lambda message: lines.append(str(message)), format=format_entry, level="DEBUG")
    yield lines
    logger.remove(handler_id)


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"x-api-key": API_KEY}


@pytest.fixture
def browser_env() -> Dict[str, Any]:
    return {"userAgent": "UA", "viewport": {"width": 1280, "height": 800}}


@pytest.fixture
def card_info() -> Dict[str, str]:
    return {"name": "Jane Doe", "number": "4242424242424242", "expMonth": "12", "expYear": "2030", "cvv": "123"}
