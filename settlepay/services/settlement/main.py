"""HTTP surface for payment initialization, verification and gateway webhooks."""

from time import perf_counter
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from settlepay.common.auth import CallerIdentity, require_api_key, require_caller
from settlepay.common.config import settings
from settlepay.common.db import SessionLocal
from settlepay.common.errors import SettlementError, error_body
from settlepay.common.logging import bind_trace_id, configure_logging, logger
from settlepay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from settlepay.common.startup import log_startup_config
from settlepay.common.tracing import enable_tracing
from settlepay.services.settlement.gateway import PaystackClient
from settlepay.services.settlement.schemas import (
    InitializeRequest,
    InitializeResponse,
    TransactionStats,
    VerifyRequest,
    VerifyResponse,
    WebhookAck,
)
from settlepay.services.settlement.service import SettlementService
from settlepay.services.settlement.webhook import SIGNATURE_HEADER

configure_logging()
log_startup_config(settings)
service = SettlementService(
    SessionLocal,
    PaystackClient(
        settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout=settings.paystack_timeout_seconds,
        service_name=settings.service_name,
    ),
    webhook_secret=settings.paystack_secret_key,
    currency=settings.paystack_currency,
    allow_unsigned_webhooks=settings.paystack_webhook_allow_unsigned,
    service_name=settings.service_name,
)

app = FastAPI(title="Settlepay Settlement Service")
enable_tracing(app, settings)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Bind a trace id and record request count and latency for every call."""

    bind_trace_id(request.headers.get("x-correlation-id") or str(uuid4()))
    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(SettlementError)
async def settlement_error_handler(_: Request, exc: SettlementError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed status_code=%s detail=%s", exc.status_code, exc.detail)
    else:
        logger.info("request_rejected status_code=%s detail=%s", exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in err["loc"] if part != "body") for err in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "invalid request", "fields": fields})


@app.exception_handler(Exception)
async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error error=%s", exc)
    return JSONResponse(status_code=500, content={"error": "internal error"})


@app.post("/paystack/initialize", response_model=InitializeResponse)
def initialize_payment(req: InitializeRequest, caller: CallerIdentity = Depends(require_caller)):
    """Create a hosted checkout for the caller's order."""

    return service.initialize(caller, req)


@app.post("/paystack/verify", response_model=VerifyResponse)
def verify_payment(req: VerifyRequest, caller: CallerIdentity = Depends(require_caller)):
    """Confirm a payment by reference and settle it when final."""

    return service.verify(caller, req.reference)


@app.post("/paystack/webhook", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    x_paystack_signature: str | None = Header(default=None, alias=SIGNATURE_HEADER),
):
    """Gateway push notification; the signature covers the raw body bytes."""

    raw_body = await request.body()
    return await run_in_threadpool(service.handle_webhook, raw_body, x_paystack_signature)


@app.get("/internal/transactions/stats", response_model=TransactionStats, dependencies=[Depends(require_api_key)])
def transaction_stats():
    """Ledger aggregates for the accountant and admin dashboards."""

    return service.transaction_stats()


@app.post("/internal/transactions/reconcile-pending", dependencies=[Depends(require_api_key)])
def reconcile_pending(older_than_minutes: int | None = None, limit: int = 100):
    """Re-verify stale pending payments with the gateway and settle final ones."""

    if older_than_minutes is None:
        older_than_minutes = settings.pending_sweep_minutes
    return service.reconcile_pending(older_than_minutes, limit=limit)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
