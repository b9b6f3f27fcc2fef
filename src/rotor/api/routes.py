"""FastAPI relayer: verifies withdrawal proofs and submits them to the pool."""

import logging
import re
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from rotor.config import NOT_CONFIGURED_MESSAGE, Settings, configure_logging, get_settings
from rotor.core.field import FieldCodec
from rotor.core.merkle_tree import TreeConfig
from rotor.core.withdrawal import WithdrawalContext, WithdrawalOrchestrator, WithdrawalRequest
from rotor.crypto.local_backend import LocalProvingSystem
from rotor.crypto.nargo_backend import NargoProvingSystem
from rotor.crypto.proving import ProvingSystem
from rotor.ledger.gateway import LedgerGateway, TxHandle
from rotor.ledger.memory import InMemoryLedger
from rotor.ledger.soroban import SorobanLedgerGateway
from rotor.models.schemas import (
    ErrorResponse,
    HealthResponse,
    RootResponse,
    TxStatusResponse,
    VerifyRequest,
    VerifyResponse,
    WithdrawRequest,
    WithdrawResponse,
)
from rotor.storage import DatabaseManager, get_db_manager
from rotor.exceptions import (
    ConfigurationError,
    InputShapeError,
    LedgerError,
    LedgerTimeoutError,
    ProvingError,
    WithdrawalError,
)

# Configure logging
logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


class RelayerServices:
    """Everything a request handler needs, built once per process."""

    def __init__(
        self,
        settings: Settings,
        proving_system: ProvingSystem,
        ledger: Optional[LedgerGateway],
        db: DatabaseManager,
    ):
        self.settings = settings
        self.proving_system = proving_system
        self.ledger = ledger
        self.db = db
        self.orchestrator = WithdrawalOrchestrator(
            proving_system,
            ledger,
            confirmation_timeout=settings.confirmation_timeout,
            poll_interval=settings.poll_interval,
            decimals=settings.amount_decimals,
        )

    @property
    def configured(self) -> bool:
        return self.ledger is not None


def build_proving_system(settings: Settings) -> ProvingSystem:
    if settings.proving_backend == "local":
        if settings.local_proving_seed:
            return LocalProvingSystem.from_seed(bytes.fromhex(settings.local_proving_seed))
        logger.warning("Local proving backend without a seed: proofs will not survive a restart")
        return LocalProvingSystem()
    return NargoProvingSystem(settings.circuit_dir, nargo_bin=settings.nargo_bin, bb_bin=settings.bb_bin)


def build_ledger(settings: Settings, proving_system: ProvingSystem) -> Optional[LedgerGateway]:
    if settings.ledger_backend == "memory":
        return InMemoryLedger(TreeConfig.build(proving_system.hash_pair))
    try:
        settings.require_ledger_credentials()
    except ConfigurationError as e:
        logger.warning(str(e))
        return None
    return SorobanLedgerGateway.from_settings(settings)


def build_services(settings: Settings) -> RelayerServices:
    proving_system = build_proving_system(settings)
    return RelayerServices(
        settings=settings,
        proving_system=proving_system,
        ledger=build_ledger(settings, proving_system),
        db=get_db_manager(settings.database_url),
    )


_services: Optional[RelayerServices] = None


def get_services() -> RelayerServices:
    """Get or create the process-wide services."""
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


def reset_services():
    """Reset services (for testing)."""
    global _services
    _services = None


def _error(status_code: int, message: str, tx_hash: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=message, tx_hash=tx_hash)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))


# Initialize FastAPI
app = FastAPI(
    title="Rotor Relayer",
    description="Verifies privacy pool withdrawal proofs and redeems them on Stellar",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Custom exception handler for validation errors - convert 422 to 400
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert Pydantic validation errors (422) to 400 Bad Request."""
    error_messages = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        error_messages.append(f"{field}: {error['msg']}")
    detail = "; ".join(error_messages) or "Invalid request body"

    if request.url.path == "/verify":
        return JSONResponse(status_code=400, content={"valid": False, "error": detail})
    return _error(400, detail)


# ============================================================================
# System Endpoints
# ============================================================================


@app.get("/", response_model=HealthResponse, tags=["System"])
async def health_check(services: RelayerServices = Depends(get_services)):
    """Check service health and configuration."""
    return HealthResponse(configured=services.configured)


@app.get("/root", response_model=RootResponse, tags=["Pool"])
async def get_root(services: RelayerServices = Depends(get_services)):
    """Current Merkle root reported by the pool."""
    if services.ledger is None:
        return _error(503, NOT_CONFIGURED_MESSAGE)
    try:
        root = await run_in_threadpool(services.ledger.get_latest_root)
    except LedgerError as e:
        logger.error("Failed to read root: %s", e)
        return _error(502, str(e))
    return RootResponse(root=FieldCodec.to_hex(root))


@app.get("/tx/{tx_hash}", response_model=TxStatusResponse, tags=["Pool"])
async def get_transaction(tx_hash: str, services: RelayerServices = Depends(get_services)):
    """Query a submitted transaction, e.g. after a confirmation timeout."""
    if not TX_HASH_PATTERN.match(tx_hash):
        return _error(400, "txHash must be 64 hex characters")
    if services.ledger is None:
        return _error(503, NOT_CONFIGURED_MESSAGE)

    outcome = await run_in_threadpool(services.ledger.get_transaction_status, TxHandle(tx_hash=tx_hash))
    if outcome is None:
        return TxStatusResponse(tx_hash=tx_hash, status="pending")
    return TxStatusResponse(tx_hash=tx_hash, status=outcome.status.value, error=outcome.error)


# ============================================================================
# Withdrawal Endpoints
# ============================================================================


@app.post("/verify", response_model=VerifyResponse, tags=["Withdrawal"])
async def verify_proof(body: VerifyRequest, services: RelayerServices = Depends(get_services)):
    """Verify a withdrawal proof without submitting it."""
    try:
        valid = await run_in_threadpool(
            services.orchestrator.verify, body.proof_bytes, body.public_inputs
        )
    except InputShapeError as e:
        return JSONResponse(status_code=400, content={"valid": False, "error": str(e)})
    except ProvingError as e:
        logger.error("Verifier failure: %s", e, exc_info=True)
        return JSONResponse(status_code=500, content={"valid": False, "error": str(e)})
    return VerifyResponse(valid=valid)


def _log_withdrawal(db: DatabaseManager, request: WithdrawalRequest, context: WithdrawalContext):
    session = db.get_session()
    try:
        db.add_withdrawal_log(
            session,
            state=context.state.value,
            nullifier_hash=context.nullifier_hash,
            recipient=request.recipient,
            amount=context.amount_units,
            tx_hash=context.tx_hash,
            error=context.error,
        )
    except SQLAlchemyError:
        session.rollback()
        logger.error("Failed to write withdrawal log", exc_info=True)
    finally:
        session.close()


@app.post("/withdraw", response_model=WithdrawResponse, tags=["Withdrawal"])
async def withdraw(body: WithdrawRequest, services: RelayerServices = Depends(get_services)):
    """
    Verify a withdrawal proof and redeem it on the ledger.

    The relayer pays the ledger fee; the pool contract pays the recipient.
    """
    request = WithdrawalRequest(
        proof=body.proof_bytes,
        public_inputs=body.public_inputs,
        recipient=body.recipient,
    )
    context = WithdrawalContext()

    try:
        result = await run_in_threadpool(services.orchestrator.withdraw, request, context)
    except WithdrawalError as e:
        return _error(400, str(e))
    except ConfigurationError as e:
        return _error(503, str(e))
    except LedgerTimeoutError as e:
        return _error(504, str(e), tx_hash=e.tx_hash)
    except LedgerError as e:
        return _error(502, str(e), tx_hash=e.tx_hash)
    except Exception as e:
        logger.error("Withdrawal failed: %s", e, exc_info=True)
        return _error(500, "Withdrawal failed")
    finally:
        await run_in_threadpool(_log_withdrawal, services.db, request, context)

    return WithdrawResponse(
        tx_hash=result.tx_hash,
        amount=result.amount,
        recipient=result.recipient,
        message=f"Withdrawal of {result.amount} XLM sent to {result.recipient}",
    )


def main():
    """Run the relayer with uvicorn."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Rotor relayer on http://0.0.0.0:%d", settings.port)
    logger.info("  Contract: %s", settings.contract_id or "(not set)")
    logger.info("  RPC:      %s", settings.stellar_rpc)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
