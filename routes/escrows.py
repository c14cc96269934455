"""
Escrow factory and escrow endpoints.

Thin HTTP layer over the ledger calls; every request is one ledger call
(or one queue run) and EscrowError kinds map to HTTP status codes.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from crossescrow.core import (
    SwapRole, SwapParameters, TimelockPolicy, EscrowError,
)
from crossescrow.client import FactoryClient, EscrowClient
from crossescrow.ledger.host import InMemoryLedger, LedgerError, NoContract

log = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Module state, set by server.py at init
# ---------------------------------------------------------------------------

_ledger: Optional[InMemoryLedger] = None
_factory: Optional[FactoryClient] = None


def configure(ledger: InMemoryLedger, factory_id: str):
    """Bind the router to a ledger and factory. Called once by server.py."""
    global _ledger, _factory
    _ledger = ledger
    _factory = FactoryClient(ledger, factory_id)


def _require_ledger() -> InMemoryLedger:
    if _ledger is None:
        raise HTTPException(503, "Ledger not configured")
    return _ledger


# EscrowError.kind -> HTTP status (default 400)
ERROR_STATUS = {
    "Unauthorized": 403,
    "NotActive": 409,
    "DuplicateOrder": 409,
    "EscrowIdCollision": 409,
    "AlreadyInitialized": 409,
    "TemplateNotConfigured": 503,
}


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, EscrowError):
        return HTTPException(ERROR_STATUS.get(e.kind, 400), f"{e.kind}: {e}")
    if isinstance(e, NoContract):
        return HTTPException(404, str(e))
    return HTTPException(400, str(e))


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class TimelocksModel(BaseModel):
    withdrawal_window: int
    cancellation_threshold: int
    rescue_delay: int
    created_at: Optional[int] = None


class ParamsModel(BaseModel):
    order_id: str
    hashlock: str = Field(..., description="SHA256 of the secret, 64 hex chars")
    maker: str
    taker: str
    token: Optional[str] = None
    amount: int
    safety_deposit: int = 0
    timelocks: TimelocksModel

    def to_params(self) -> SwapParameters:
        return SwapParameters(
            order_id=self.order_id,
            hashlock=self.hashlock,
            maker=self.maker,
            taker=self.taker,
            token=self.token,
            amount=self.amount,
            safety_deposit=self.safety_deposit,
            timelocks=TimelockPolicy(
                withdrawal_window=self.timelocks.withdrawal_window,
                cancellation_threshold=self.timelocks.cancellation_threshold,
                rescue_delay=self.timelocks.rescue_delay,
                created_at=self.timelocks.created_at,
            ),
        )


class CreateEscrowRequest(BaseModel):
    caller: str
    role: SwapRole
    params: ParamsModel
    deposit: Optional[int] = Field(None, ge=0)   # default: required deposit
    wait: bool = False              # run the creation saga before returning


class CallerRequest(BaseModel):
    caller: str


class WithdrawRequest(BaseModel):
    caller: str
    secret: str


class RescueRequest(BaseModel):
    caller: str
    recipient: str


class AdvanceRequest(BaseModel):
    seconds: int = Field(..., ge=0)


class AccountRequest(BaseModel):
    account_id: str
    balance: int = Field(0, ge=0)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

@router.get("/api/factory")
async def get_factory():
    """Factory settings and balance."""
    _require_ledger()
    return _factory.settings()


@router.post("/api/escrows")
async def create_escrow(req: CreateEscrowRequest):
    """Create an escrow for an order."""
    ledger = _require_ledger()
    params = req.params.to_params()
    try:
        escrow_id = _factory.create_escrow(req.caller, req.role, params, req.deposit)
    except (EscrowError, LedgerError) as e:
        raise _http_error(e)

    if req.wait:
        ledger.run_pending()

    info = _factory.get_escrow_info(escrow_id)
    return {
        "escrow_id": escrow_id,
        "order_id": params.order_id,
        "status": info.status.value if info else "rolled_back",
    }


@router.get("/api/orders/{order_id}")
async def get_order(order_id: str):
    """Registry lookup by order id."""
    _require_ledger()
    escrow_id = _factory.get_escrow_for_order(order_id)
    if escrow_id is None:
        raise HTTPException(404, "Order not found")
    info = _factory.get_escrow_info(escrow_id)
    return {"order_id": order_id, "escrow_id": escrow_id, "info": info.to_dict()}


# ---------------------------------------------------------------------------
# Escrows
# ---------------------------------------------------------------------------

@router.get("/api/escrows/{escrow_id}")
async def get_escrow(escrow_id: str):
    """Escrow summary, or the registry reservation while provisioning."""
    ledger = _require_ledger()
    info = _factory.get_escrow_info(escrow_id)
    result: Dict[str, Any] = {
        "escrow_id": escrow_id,
        "registry": info.to_dict() if info else None,
        "escrow": None,
    }

    if ledger.contract(escrow_id) is not None:
        try:
            result["escrow"] = EscrowClient(ledger, escrow_id).summary()
        except EscrowError as e:
            # Deployed but not initialized (failed provisioning)
            log.warning(f"Escrow {escrow_id} not readable: {e}")

    if result["registry"] is None and result["escrow"] is None:
        raise HTTPException(404, "Escrow not found")
    return result


def _escrow_call(escrow_id: str, caller: str, method: str, *args):
    ledger = _require_ledger()
    try:
        payout = ledger.call(caller, escrow_id, method, *args)
    except (EscrowError, LedgerError) as e:
        raise _http_error(e)
    return {"escrow_id": escrow_id, "payout": payout}


@router.post("/api/escrows/{escrow_id}/withdraw")
async def withdraw(escrow_id: str, req: WithdrawRequest):
    return _escrow_call(escrow_id, req.caller, "withdraw", req.secret)


@router.post("/api/escrows/{escrow_id}/cancel")
async def cancel(escrow_id: str, req: CallerRequest):
    return _escrow_call(escrow_id, req.caller, "cancel")


@router.post("/api/escrows/{escrow_id}/rescue")
async def rescue(escrow_id: str, req: RescueRequest):
    return _escrow_call(escrow_id, req.caller, "rescue", req.recipient)


@router.post("/api/escrows/{escrow_id}/retry-payout")
async def retry_payout(escrow_id: str, req: CallerRequest):
    return _escrow_call(escrow_id, req.caller, "retry_payout")


# ---------------------------------------------------------------------------
# Ledger (dev node)
# ---------------------------------------------------------------------------

@router.post("/api/ledger/advance")
async def advance(req: AdvanceRequest):
    """Move ledger time forward."""
    ledger = _require_ledger()
    return {"now": ledger.advance(req.seconds)}


@router.post("/api/ledger/process")
async def process():
    """Run queued promise chains, callbacks and sink polls."""
    ledger = _require_ledger()
    steps = ledger.run_pending()
    return {"steps": steps, "pending": ledger.pending(), "now": ledger.now}


@router.post("/api/ledger/accounts")
async def fund_account(req: AccountRequest):
    """Dev faucet: credit native balance to an account."""
    ledger = _require_ledger()
    ledger.mint(req.account_id, req.balance)
    return {"account_id": req.account_id, "balance": ledger.balance_of(req.account_id)}


@router.get("/api/ledger/accounts/{account_id}")
async def get_account(account_id: str):
    ledger = _require_ledger()
    if not ledger.account_exists(account_id):
        raise HTTPException(404, "Account not found")
    return {"account_id": account_id, "balance": ledger.balance_of(account_id)}
