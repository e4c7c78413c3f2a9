"""
CastPay Relay API - gasless stablecoin transfers.

Provides REST endpoints for:
- Relaying signed transfers (POST /api/payments/transfer)
- Polling transfer status (GET /api/payments/status/{id})
- Balance/allowance and nonce lookups
- Paymaster status and administration
- Health checks (GET /health)
"""

import uvicorn
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from web3 import Web3

from . import __version__
from .auth import verify_api_token
from .config import Settings, get_settings
from .errors import (
    ConfigurationError,
    RelayError,
    RelayQueueFullError,
    TransactionNotFoundError,
    UserNotFoundError,
)
from .executor import TransferIntent
from .identity import UsernameResolver
from .models import (
    BalanceResponse,
    DepositRequest,
    HealthResponse,
    NonceResponse,
    PaymasterBalanceResponse,
    PaymasterStatusResponse,
    PaymasterTxResponse,
    RegisterUserRequest,
    RelayerInfoResponse,
    ResolveUserResponse,
    TransactionListResponse,
    TransactionResponse,
    TransferRequest,
    TransferResponse,
)
from .relayer import TransferRelay
from .store import TransactionStatus
from .units import format_units, to_base_units

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


# ============================================================================
# Dependencies
# ============================================================================


def get_relay(request: Request) -> TransferRelay:
    relay: Optional[TransferRelay] = request.app.state.relay
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay not initialized")
    return relay


def get_resolver(request: Request) -> UsernameResolver:
    resolver: Optional[UsernameResolver] = request.app.state.resolver
    if resolver is None:
        raise HTTPException(status_code=503, detail="Username resolver not initialized")
    return resolver


def _checksum_or_400(address: str) -> str:
    if not Web3.is_address(address):
        raise HTTPException(status_code=400, detail="Invalid Ethereum address")
    return Web3.to_checksum_address(address)


def _upstream_error(e: RelayError) -> HTTPException:
    """Map a chain-layer failure on a proxy endpoint to an HTTP error."""
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=503, detail=e.message)
    return HTTPException(status_code=502, detail=e.message)


# ============================================================================
# Payments
# ============================================================================

payments = APIRouter(prefix="/api/payments", tags=["payments"])


@payments.post("/transfer", response_model=TransferResponse)
async def transfer(
    request: TransferRequest,
    relay: TransferRelay = Depends(get_relay),
) -> TransferResponse:
    """
    Accept a signed transfer intent.

    Only the request shape is checked here. Signature, nonce, balance and
    allowance are checked asynchronously; poll the status endpoint for
    the outcome.
    """
    try:
        amount_base_units = to_base_units(request.amount, relay.settings.token_decimals)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # Chain calls and the record use checksummed addresses; the signature
    # covers the strings exactly as submitted
    intent = TransferIntent(
        sender=Web3.to_checksum_address(request.sender),
        recipient=Web3.to_checksum_address(request.recipient),
        amount_base_units=amount_base_units,
        nonce=request.nonce,
        signature=request.signature,
        signed_sender=request.sender,
        signed_recipient=request.recipient,
    )

    try:
        record = await relay.submit(intent)
    except RelayQueueFullError as e:
        logger.warning("Transfer rejected, queue full", sender=request.sender)
        raise HTTPException(status_code=503, detail=e.message)

    logger.info(
        "Transfer accepted",
        id=record.id,
        sender=intent.sender,
        recipient=intent.recipient,
        amount_base_units=amount_base_units,
    )

    return TransferResponse(
        id=record.id,
        status="submitted",
        message="Transfer submitted for processing",
    )


@payments.get("/status/{record_id}", response_model=TransactionResponse)
async def transaction_status(
    record_id: str,
    relay: TransferRelay = Depends(get_relay),
) -> TransactionResponse:
    """Get the current state of a relayed transfer."""
    try:
        record = await relay.store.get(record_id)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return TransactionResponse.from_record(record, relay.settings.token_decimals)


@payments.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    address: Optional[str] = Query(None, description="Match sender or recipient"),
    status: Optional[TransactionStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500),
    relay: TransferRelay = Depends(get_relay),
) -> TransactionListResponse:
    """List relayed transfers, newest first."""
    if address is not None:
        address = _checksum_or_400(address)
    records = await relay.store.list_transactions(address=address, status=status, limit=limit)
    decimals = relay.settings.token_decimals
    return TransactionListResponse(
        transactions=[TransactionResponse.from_record(r, decimals) for r in records],
        count=len(records),
    )


@payments.get("/balance/{address}", response_model=BalanceResponse)
async def balance(
    address: str,
    relay: TransferRelay = Depends(get_relay),
) -> BalanceResponse:
    """Token balance and the allowance granted to the relay."""
    address = _checksum_or_400(address)
    gateway = relay.gateway
    decimals = relay.settings.token_decimals

    try:
        balance_units = await gateway.get_balance(address)
        allowance_units = await gateway.get_allowance(address)
        spender = gateway.relayer_address
    except RelayError as e:
        logger.error("Failed to read balance", address=address, error=str(e))
        raise _upstream_error(e)

    return BalanceResponse(
        address=address,
        balance=format_units(balance_units, decimals),
        allowance=format_units(allowance_units, decimals),
        balance_base_units=balance_units,
        allowance_base_units=allowance_units,
        spender=spender,
    )


# ============================================================================
# Users
# ============================================================================

users = APIRouter(prefix="/api/users", tags=["users"])


@users.get("/nonce/{address}", response_model=NonceResponse)
async def user_nonce(
    address: str,
    relay: TransferRelay = Depends(get_relay),
) -> NonceResponse:
    """Nonce the sender must sign their next transfer with."""
    address = _checksum_or_400(address)
    nonce = await relay.nonces.current(address)
    return NonceResponse(address=address, nonce=nonce)


@users.get("/resolve/{username}", response_model=ResolveUserResponse)
async def resolve_username(
    username: str,
    resolver: UsernameResolver = Depends(get_resolver),
) -> ResolveUserResponse:
    """Resolve a Farcaster username to its verified address."""
    try:
        user = await resolver.resolve(username)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    return ResolveUserResponse(
        username=user.username,
        address=user.address,
        source=user.source,
        display_name=user.display_name,
        fid=user.fid,
    )


# ============================================================================
# Paymaster
# ============================================================================

paymaster = APIRouter(prefix="/api/paymaster", tags=["paymaster"])


@paymaster.get("/status", response_model=PaymasterStatusResponse)
async def paymaster_status(relay: TransferRelay = Depends(get_relay)) -> PaymasterStatusResponse:
    """Paymaster balance, deposits, flags and user count."""
    try:
        snapshot = await relay.gateway.get_paymaster_snapshot()
    except RelayError as e:
        logger.error("Failed to read paymaster status", error=str(e))
        raise _upstream_error(e)

    return PaymasterStatusResponse(
        paymaster_address=snapshot.paymaster_address,
        contract_balance=str(snapshot.contract_balance),
        total_deposited=str(snapshot.total_deposited),
        is_paused=snapshot.is_paused,
        sponsorship_enabled=snapshot.sponsorship_enabled,
        user_count=snapshot.user_count,
    )


@paymaster.get("/balance", response_model=PaymasterBalanceResponse)
async def paymaster_balance(relay: TransferRelay = Depends(get_relay)) -> PaymasterBalanceResponse:
    """Paymaster token balance."""
    try:
        balance_units = await relay.gateway.get_paymaster_balance()
    except RelayError as e:
        raise _upstream_error(e)

    return PaymasterBalanceResponse(
        balance=str(balance_units),
        formatted=format_units(balance_units, relay.settings.token_decimals),
    )


@paymaster.post(
    "/deposit",
    response_model=PaymasterTxResponse,
    dependencies=[Depends(verify_api_token)],
)
async def paymaster_deposit(
    request: DepositRequest,
    relay: TransferRelay = Depends(get_relay),
) -> PaymasterTxResponse:
    """Deposit tokens from the relay wallet into the paymaster."""
    try:
        amount_base_units = to_base_units(request.amount, relay.settings.token_decimals)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        receipt = await relay.gateway.deposit_to_paymaster(amount_base_units)
    except RelayError as e:
        logger.error("Paymaster deposit failed", amount_base_units=amount_base_units, error=str(e))
        raise _upstream_error(e)

    logger.info("Paymaster deposit", tx_hash=receipt.tx_hash, amount_base_units=amount_base_units)
    return PaymasterTxResponse(
        success=receipt.success,
        tx_hash=receipt.tx_hash,
        amount_base_units=amount_base_units,
        message="Tokens deposited to paymaster" if receipt.success else "Deposit reverted",
    )


@paymaster.post(
    "/register",
    response_model=PaymasterTxResponse,
    dependencies=[Depends(verify_api_token)],
)
async def paymaster_register(
    request: RegisterUserRequest,
    relay: TransferRelay = Depends(get_relay),
) -> PaymasterTxResponse:
    """Register with the paymaster (the contract registers the calling relay wallet)."""
    try:
        receipt = await relay.gateway.register_user()
    except RelayError as e:
        logger.error("Paymaster registration failed", user_address=request.user_address, error=str(e))
        raise _upstream_error(e)

    logger.info("Paymaster registration", tx_hash=receipt.tx_hash, user_address=request.user_address)
    return PaymasterTxResponse(
        success=receipt.success,
        tx_hash=receipt.tx_hash,
        user_address=request.user_address,
        message="User registered with paymaster" if receipt.success else "Registration reverted",
    )


# ============================================================================
# Meta
# ============================================================================

meta = APIRouter(prefix="/api/meta", tags=["meta"])


@meta.get("/relayer", response_model=RelayerInfoResponse)
async def relayer_info(relay: TransferRelay = Depends(get_relay)) -> RelayerInfoResponse:
    """Relay wallet address (the spender users must approve)."""
    try:
        return RelayerInfoResponse(relayer=relay.gateway.relayer_address)
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=e.message)


async def health_check(request: Request) -> HealthResponse:
    """
    Check API health and connectivity.

    Returns service status, EVM RPC connectivity and relay counters.
    """
    relay: Optional[TransferRelay] = request.app.state.relay
    settings: Settings = request.app.state.settings

    evm_ok = False
    if relay is not None:
        evm_ok = await relay.gateway.check_connectivity()

    running = relay is not None and relay.state.is_running
    return HealthResponse(
        status="ok" if (evm_ok and running) else "degraded",
        version=__version__,
        evm_rpc=evm_ok,
        relay_running=running,
        queued_transfers=relay.queued if relay else 0,
        transfers_accepted=relay.state.transfers_accepted if relay else 0,
        transfers_succeeded=relay.state.transfers_succeeded if relay else 0,
        transfers_failed=relay.state.transfers_failed if relay else 0,
        contracts={
            "token": settings.token_address,
            "paymaster": settings.paymaster_address,
        },
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request payloads are a 400, not FastAPI's default 422."""
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "detail": jsonable_encoder(exc.errors())},
    )


# ============================================================================
# Application
# ============================================================================


def create_app(
    settings: Optional[Settings] = None,
    relay: Optional[TransferRelay] = None,
    resolver: Optional[UsernameResolver] = None,
) -> FastAPI:
    """
    Build the API application.

    The relay and resolver are created at startup from settings unless
    passed in.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owns_resolver = app.state.resolver is None
        if app.state.relay is None:
            app.state.relay = TransferRelay(settings)
        if owns_resolver:
            app.state.resolver = UsernameResolver(
                api_key=settings.neynar_api_key,
                base_url=settings.neynar_api_url,
                cache_ttl_seconds=settings.username_cache_ttl_seconds,
                timeout=settings.http_timeout_seconds,
            )

        await app.state.relay.start()

        logger.info(
            "API started",
            version=__version__,
            host=settings.host,
            port=settings.port,
            evm_rpc=settings.rpc_url,
            chain_id=settings.chain_id,
        )

        yield

        await app.state.relay.stop()
        if owns_resolver:
            await app.state.resolver.close()
            app.state.resolver = None

        logger.info("API stopped")

    app = FastAPI(
        title="CastPay Relay API",
        description="Gasless stablecoin transfers relayed from signed intents",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.relay = relay
    app.state.resolver = resolver

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.add_api_route("/health", health_check, methods=["GET"], response_model=HealthResponse)
    app.include_router(payments)
    app.include_router(users)
    app.include_router(paymaster)
    app.include_router(meta)

    return app


app = create_app()


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "castpay_relay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
