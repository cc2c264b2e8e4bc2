# src/stablepay/server/main.py
import json
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Annotated, Optional

from fastapi import APIRouter, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from stablepay import PaymentGateway, create_gateway
from stablepay.config import Settings, get_settings
from stablepay.exceptions import (
    ClientError,
    ConflictError,
    PaymentNotFoundError,
    SignatureError,
    StablePayError,
    TransientChainError,
    VerificationError,
)
from stablepay.models import (
    PaymentConfirmedEvent,
    PaymentCreate,
    PaymentFilter,
    PaymentStatus,
    PaymentVerify,
    TransactionNotification,
)
from stablepay.webhooks import SIGNATURE_HEADER, verify_signature

from .auth import ApiKey, load_api_keys, require_permission

logger = logging.getLogger(__name__)

payments = APIRouter(prefix="/api/payment", tags=["Payments"])
webhooks = APIRouter(prefix="/api/webhook", tags=["Webhooks"])


def _gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def _ok(data) -> dict:
    return {"success": True, "data": data}


# --- Payments ---
@payments.post("/create")
async def create_payment(
    request: Request,
    body: PaymentCreate,
    api_key: Annotated[ApiKey, require_permission("payment:create")],
):
    gateway = _gateway(request)
    metadata = {
        **body.metadata,
        "apiKeyName": api_key.name,
        "requestedBy": api_key.fingerprint,
        "requestedAt": gateway.scheduler.clock.now().isoformat(),
    }
    invoice = await gateway.create_payment(body.model_copy(update={"metadata": metadata}))
    return _ok(invoice.to_public())


@payments.post("/verify")
async def verify_payment(
    request: Request,
    body: PaymentVerify,
    api_key: Annotated[ApiKey, require_permission("payment:verify")],
):
    logger.info(f"Verification of {body.payment_id} requested by {api_key.name}")
    payment = await _gateway(request).verify_payment(body.payment_id, body.tx_hash)
    data = payment.to_public()
    data["transactionUrl"] = f"{payment.block_explorer}/tx/{payment.tx_hash}"
    if payment.status == PaymentStatus.confirmed:
        data["message"] = "Payment confirmed successfully"
    else:
        data["message"] = (
            f"Payment verified but waiting for confirmations "
            f"({payment.confirmations} confirmations received)"
        )
    return _ok(data)


@payments.get("/status/{payment_id}")
async def payment_status(
    request: Request,
    payment_id: str,
    api_key: Annotated[ApiKey, require_permission("payment:status")],
):
    payment = _gateway(request).get_payment(payment_id)
    # non-admin keys only see payments they created
    if not api_key.is_admin and payment.metadata.get("requestedBy") != api_key.fingerprint:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"success": False, "error": "Access denied to this payment"},
        )
    return _ok(payment.to_public())


@payments.get("/balance")
async def balance(
    request: Request,
    api_key: Annotated[ApiKey, require_permission("payment:balance")],
    network: Optional[str] = None,
):
    gateway = _gateway(request)
    data = {"walletAddress": gateway.config.wallet_address}
    if network:
        data.update(await gateway.get_balance(network))
    else:
        data["networks"] = await gateway.get_all_balances()
    data["lastUpdated"] = gateway.scheduler.clock.now().isoformat()
    return _ok(data)


@payments.get("/list")
async def list_payments(
    request: Request,
    api_key: Annotated[ApiKey, require_permission("admin")],
    status_: Annotated[Optional[PaymentStatus], Query(alias="status")] = None,
    network: Optional[str] = None,
    token: Optional[str] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    flt = PaymentFilter(status=status_, network_key=network, token=token, limit=limit, offset=offset)
    return _ok(_gateway(request).list_payments(flt).to_public())


@payments.get("/networks")
async def networks(request: Request):
    gateway = _gateway(request)
    keys = gateway.supported_networks()
    return _ok({
        "networks": {key: gateway.network_info(key) for key in keys},
        "testnet": gateway.testnet,
    })


@payments.get("/networks/{network_key}")
async def network_detail(request: Request, network_key: str):
    return _ok(_gateway(request).network_info(network_key))


@payments.get("/tokens/{network_key}")
async def network_tokens(request: Request, network_key: str):
    gateway = _gateway(request)
    info = gateway.network_info(network_key)
    return _ok({
        "network": info["name"],
        "tokens": gateway.supported_tokens(network_key),
        "details": info["tokens"],
    })


# --- Webhooks ---
async def _signed_json(request: Request) -> dict:
    """Verifies the signature over the raw body, then parses it."""
    raw = await request.body()
    verify_signature(raw, request.headers.get(SIGNATURE_HEADER), _gateway(request).config.webhook_secret)
    try:
        payload = json.loads(raw, parse_float=Decimal)
    except ValueError as e:
        raise RequestValidationError([{"loc": ("body",), "msg": f"invalid JSON: {e}", "type": "json_invalid"}])
    if not isinstance(payload, dict):
        raise RequestValidationError([{"loc": ("body",), "msg": "JSON object expected", "type": "dict_type"}])
    return payload


@webhooks.post("/payment-confirmed")
async def payment_confirmed(request: Request):
    payload = await _signed_json(request)
    try:
        event = PaymentConfirmedEvent.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors())
    payment = await _gateway(request).handle_payment_confirmed(event)
    return _ok(payment.to_public())


@webhooks.post("/transaction-notification")
async def transaction_notification(request: Request):
    payload = await _signed_json(request)
    try:
        note = TransactionNotification.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors())
    result = await _gateway(request).handle_transaction_notification(note)
    return _ok(result.model_dump(mode="json", by_alias=True))


# --- Error mapping ---
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def _handle_domain_error(request: Request, exc: StablePayError) -> JSONResponse:
    if isinstance(exc, SignatureError):
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid webhook signature")
    if isinstance(exc, PaymentNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))
    if isinstance(exc, ClientError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))
    if isinstance(exc, ConflictError):
        return _error(status.HTTP_409_CONFLICT, str(exc))
    if isinstance(exc, (VerificationError, TransientChainError)):
        return _error(status.HTTP_400_BAD_REQUEST, f"Payment verification failed: {exc}")
    logger.exception(f"Unhandled gateway error on {request.url.path}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "An internal error occurred.")


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{where}: {first.get('msg')}" if where else str(first.get("msg", "invalid request"))
    return _error(status.HTTP_400_BAD_REQUEST, message)


async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# --- App factory ---
def create_app(gateway: Optional[PaymentGateway] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Builds the HTTP app around a gateway. The scheduler loop runs for the
    lifetime of the app and the gateway is closed on shutdown.
    """
    settings = settings or get_settings()
    if gateway is None:
        gateway = create_gateway(settings.gateway_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        gateway.start()
        logger.info(f"Payment gateway started ({'testnet' if gateway.testnet else 'mainnet'})")
        try:
            yield
        finally:
            await gateway.aclose()

    app = FastAPI(title="stablepay", lifespan=lifespan)
    app.state.gateway = gateway
    app.state.api_keys = load_api_keys(settings.api_keys)
    if not app.state.api_keys:
        logger.warning("No API_KEYS configured; authenticated routes will reject every request")

    app.add_exception_handler(StablePayError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)

    app.include_router(payments)
    app.include_router(webhooks)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "testnet": gateway.testnet,
            "networks": gateway.supported_networks(),
            "timestamp": gateway.scheduler.clock.now().isoformat(),
        }

    return app
