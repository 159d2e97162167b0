import asyncio
import os
import sys
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from paysim.audit.logger import StructuredLogger, configure_logging
from paysim.config import ConfigError, load_settings
from paysim.context import AppContext, build_context
from paysim.payment.errors import (
    AutomationTimeout,
    InvalidRequestShape,
    MissingField,
    PaySimError,
    ProcessorApiError,
    RateLimitExceeded,
    RealTransactionsDisabled,
    Unauthenticated,
    Unauthorized,
    as_paysim_error,
)
from paysim.payment.models import ClassifiedRequest, PaymentFailure, PaymentResult, SimulationMode
from paysim.payment.validator import validate_payment_request
from paysim.security.auth import ApiKeyIdentity
from paysim.security.rate_limit import RateDecision

VERSION = "1.0.0"

app = FastAPI(
    title="Checkout Simulator API",
    description="Drives a local checkout page through a headless browser to exercise the payment widget.",
    version=VERSION,
)


def _announce_start(context: AppContext) -> None:
    settings = context.settings
    context.audit.system_event(
        "server_started",
        port=settings.port,
        environment=settings.environment,
        realTransactionsEnabled=settings.enable_real_transactions,
        processorBackend=settings.processor_backend,
    )


@app.on_event("startup")
def _startup():
    if getattr(app.state, "context", None) is not None:
        return
    env_path = os.path.join(os.path.dirname(__file__), ".env")
    load_dotenv(dotenv_path=env_path, override=False)
    try:
        settings = load_settings()
    except ConfigError as e:
        configure_logging()
        StructuredLogger().fatal(e, phase="startup")
        raise
    configure_logging(settings.log_level, settings.log_dir, settings.service_name)
    app.state.context = build_context(settings)
    _announce_start(app.state.context)


@app.on_event("shutdown")
def _shutdown():
    context = getattr(app.state, "context", None)
    if context is not None:
        context.audit.system_event("server_shutdown", reason="graceful", uptime=context.uptime)


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _request_info(request: Request) -> Dict[str, Any]:
    return {
        "requestId": getattr(request.state, "request_id", None),
        "method": request.method,
        "path": request.url.path,
        "ip": request.client.host if request.client else None,
        "userAgent": request.headers.get("user-agent"),
    }


@app.middleware("http")
async def request_tracking(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    decision = getattr(request.state, "rate_decision", None)
    if decision is not None:
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    context = getattr(request.app.state, "context", None)
    if context is not None:
        context.audit.api_access(request.method, request.url.path, response.status_code,
                                 (time.perf_counter() - started) * 1000, _request_info(request))
    return response


@app.exception_handler(PaySimError)
async def paysim_error_handler(request: Request, exc: PaySimError):
    request_id = getattr(request.state, "request_id", None)
    failure = PaymentFailure(
        error=exc.message,
        type=exc.kind.value,
        retryable=True if exc.retryable else None,
        requestId=request_id,
    )
    body = failure.to_response()
    headers: Dict[str, str] = {}
    if isinstance(exc, RateLimitExceeded):
        body["retryAfter"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)
    elif isinstance(exc, MissingField):
        body["missingFields"] = exc.fields
    elif isinstance(exc, ProcessorApiError):
        body["real_transaction"] = True
        if exc.decline_code or exc.code:
            body["code"] = exc.decline_code or exc.code

    context = getattr(request.app.state, "context", None)
    if context is not None and exc.status_code >= 500:
        context.audit.application_error(exc, _request_info(request), type=exc.kind.value)
    elif context is not None and exc.status_code == 400:
        context.audit.payment_request("Payment request rejected", _request_info(request),
                                      outcome="rejected", type=exc.kind.value, reason=exc.message)
    return JSONResponse(body, status_code=exc.status_code, headers=headers)


@dataclass
class Admission:
    identity: ApiKeyIdentity
    decision: RateDecision
    request: Dict[str, Any]

    @property
    def request_id(self) -> str:
        return self.request["requestId"]


async def _enforce_rate(context: AppContext, key: str, request: Request, info: Dict[str, Any]) -> RateDecision:
    decision = await context.rate_limiter.hit(key)
    request.state.rate_decision = decision
    if not decision.allowed:
        context.audit.rate_limit(key, decision.count, decision.limit, info, retryAfter=decision.retry_after)
        context.audit.security_event("rate_limit_exceeded", info, severity="high",
                                     keyId=key, count=decision.count)
        raise RateLimitExceeded("Too many requests from this API key, please try again later.",
                                retry_after=decision.retry_after)
    return decision


async def admit(request: Request, context: AppContext = Depends(get_context)) -> Admission:
    """Authenticate, then count the request against the caller's window."""
    info = _request_info(request)
    presented = request.headers.get("x-api-key") or request.query_params.get("apiKey")
    try:
        identity = context.authenticator.authenticate(presented, info)
    except (Unauthenticated, Unauthorized):
        # Failed attempts are counted per client so key guessing is throttled too.
        await _enforce_rate(context, f"ip:{info['ip']}", request, info)
        raise
    decision = await _enforce_rate(context, identity.id, request, info)
    info["apiKeyId"] = identity.id
    return Admission(identity=identity, decision=decision, request=info)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise InvalidRequestShape("Request body must be valid JSON")


def _require_real_transactions(context: AppContext) -> None:
    if not context.settings.enable_real_transactions:
        raise RealTransactionsDisabled("Real transactions are disabled. Set ENABLE_REAL_TRANSACTIONS to enable.")


async def _guard(context: AppContext, coro) -> PaymentResult:
    try:
        return await asyncio.wait_for(coro, timeout=context.settings.payment_timeout_s)
    except PaySimError:
        raise
    except asyncio.TimeoutError as e:
        raise AutomationTimeout(
            f"Payment processing timed out after {context.settings.payment_timeout_s:g}s"
        ) from e
    except Exception as e:
        raise as_paysim_error(e) from e


async def _run_in_browser(context: AppContext, classified: ClassifiedRequest, admission: Admission,
                          real_transaction: bool) -> PaymentResult:
    async def flow():
        async with context.sessions.session(classified.browserEnv) as session:
            if classified.mode == SimulationMode.TOKEN:
                return await context.orchestrator.run_token_mode(
                    session, classified.token, classified.cardholderName,
                    classified.paymentInfo, admission.request_id,
                )
            return await context.orchestrator.run_direct_mode(
                session, classified.cardInfo, classified.paymentInfo,
                admission.request_id, real_transaction=real_transaction,
            )

    return await _guard(context, flow())


# ----- Health -----
@app.get("/health", tags=["Health"])
async def health(request: Request):
    context = getattr(request.app.state, "context", None)
    return {
        "status": "healthy",
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "version": VERSION,
        "uptime": context.uptime if context else 0,
        "environment": context.settings.environment if context else None,
        "requestId": request.state.request_id,
    }


@app.get("/api/status", tags=["Health"])
async def status(admission: Admission = Depends(admit), context: AppContext = Depends(get_context)):
    settings = context.settings
    return {
        "status": "ok",
        "apiKey": {"id": admission.identity.id},
        "rateLimit": {
            "windowMs": settings.rate_limit_window_ms,
            "max": settings.rate_limit_max,
            "remaining": admission.decision.remaining,
        },
        "realTransactionsEnabled": settings.enable_real_transactions,
        "uptime": context.uptime,
        "requestId": admission.request_id,
    }


# ----- Payments -----
@app.post("/api/simulate-payment", tags=["Payments"])
async def simulate_payment(request: Request, admission: Admission = Depends(admit),
                           context: AppContext = Depends(get_context)):
    """
    Run a payment through the checkout page in a headless browser.

    - **stripeToken**: tokenized card (token mode), or
    - **cardInfo**: raw card fields typed into the widget frame (direct mode)
    - **browserEnv**: user agent and viewport the browser presents
    """
    body = await _json_body(request)
    classified = validate_payment_request(body, require_browser_env=True)
    context.audit.payment_request("Payment simulation requested", admission.request,
                                  mode=classified.mode.value, payload=classified.log_view())
    result = await _run_in_browser(context, classified, admission, real_transaction=False)
    return JSONResponse(result.to_response())


@app.post("/api/real-payment", tags=["Payments"])
async def real_payment(request: Request, admission: Admission = Depends(admit),
                       context: AppContext = Depends(get_context)):
    """Charge directly through the processor API, no browser involved."""
    _require_real_transactions(context)
    body = await _json_body(request)
    classified = validate_payment_request(body, require_browser_env=False)
    context.audit.payment_request("Real payment requested", admission.request,
                                  mode=classified.mode.value, payload=classified.log_view(), realTransaction=True)
    if classified.mode == SimulationMode.TOKEN:
        coro = context.processor.process_token(classified.token, classified.cardholderName,
                                               classified.paymentInfo, admission.request_id)
    else:
        coro = context.processor.process_card(classified.cardInfo, classified.paymentInfo,
                                              admission.request_id)
    result = await _guard(context, coro)
    context.audit.payment_request("Real payment completed", admission.request, outcome="success",
                                  mode=result.mode, status=result.status, last4=result.last4)
    return JSONResponse(result.to_response())


@app.post("/api/card-to-payment", tags=["Payments"])
async def card_to_payment(request: Request, admission: Admission = Depends(admit),
                          context: AppContext = Depends(get_context)):
    """Enter raw card data in the browser widget and confirm a real charge."""
    _require_real_transactions(context)
    body = await _json_body(request)
    if isinstance(body, dict) and body.get("stripeToken") is not None:
        raise InvalidRequestShape("card-to-payment accepts cardInfo only")
    if isinstance(body, dict) and body.get("cardInfo") is None:
        raise InvalidRequestShape("Missing cardInfo in request body")
    classified = validate_payment_request(body, require_browser_env=True, require_amount=True)
    context.audit.payment_request("Card-to-payment requested", admission.request,
                                  mode=classified.mode.value, payload=classified.log_view(), realTransaction=True)
    result = await _run_in_browser(context, classified, admission, real_transaction=True)
    return JSONResponse(result.to_response())


def main():
    env_path = os.path.join(os.path.dirname(__file__), ".env")
    load_dotenv(dotenv_path=env_path, override=False)
    try:
        settings = load_settings()
    except ConfigError as e:
        configure_logging()
        StructuredLogger().fatal(e, phase="startup")
        sys.exit(1)

    configure_logging(settings.log_level, settings.log_dir, settings.service_name)
    app.state.context = build_context(settings)
    audit = app.state.context.audit
    _announce_start(app.state.context)

    def _fatal(exc_type, exc, tb):
        audit.fatal(exc.with_traceback(tb))
        sys.exit(1)

    sys.excepthook = _fatal

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=settings.port, log_config=None)
    sys.exit(0)


if __name__ == "__main__":
    main()
