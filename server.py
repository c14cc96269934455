#!/usr/bin/env python3
"""
crossescrow node server
Single-ledger escrow node: factory, escrows and a dev ledger clock.

Development node only: there is no authentication. Mutating endpoints
take the acting account from the request body's "caller" field, so
authorization checks run against whatever identity the client claims.

Endpoints:
  GET  /api/status                          - Health check
  GET  /api/factory                         - Factory settings
  POST /api/escrows                         - Create escrow for an order
  GET  /api/orders/{order_id}               - Registry lookup
  GET  /api/escrows/{escrow_id}             - Escrow summary
  POST /api/escrows/{escrow_id}/withdraw    - Withdraw with secret
  POST /api/escrows/{escrow_id}/cancel      - Cancel after threshold
  POST /api/escrows/{escrow_id}/rescue      - Rescue after delay
  POST /api/escrows/{escrow_id}/retry-payout - Re-send failed token payout

  # Dev ledger
  POST /api/ledger/advance                  - Move clock forward
  POST /api/ledger/process                  - Run pending chains/callbacks
  POST /api/ledger/accounts                 - Faucet
"""

import os
import time
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crossescrow import __version__
from crossescrow.core import DEFAULT_STORAGE_RESERVE
from crossescrow.contracts import FactoryConfig
from crossescrow.client import deploy_factory
from crossescrow.ledger import InMemoryLedger, LedgerConfig, InMemoryToken, Web3TokenSink, EVMSinkConfig
from routes import escrows as escrows_routes

# =============================================================================
# LOGGING
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
log = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION
# =============================================================================

LEDGER_NAME = os.environ.get("LEDGER_NAME", "local")
FACTORY_ID = os.environ.get("ESCROW_FACTORY_ID", "factory.local")
FACTORY_OWNER = os.environ.get("ESCROW_FACTORY_OWNER", "owner.local")
CREATION_FEE = int(os.environ.get("ESCROW_CREATION_FEE", "0"))
TREASURY = os.environ.get("ESCROW_TREASURY") or None
STORAGE_RESERVE = int(os.environ.get("ESCROW_STORAGE_RESERVE", str(DEFAULT_STORAGE_RESERVE)))

# Comma-separated in-memory token ids (dev fungible assets)
TOKENS = [t for t in os.environ.get("ESCROW_TOKENS", "").split(",") if t]

# ERC20 payouts (optional)
EVM_TOKEN_ID = os.environ.get("EVM_TOKEN_ID", "usdc.base")
EVM_PRIVATE_KEY = os.environ.get("EVM_PRIVATE_KEY", "")
EVM_RPC_URL = os.environ.get("EVM_RPC_URL", "")


def build_ledger(start_time: Optional[int] = None) -> InMemoryLedger:
    """Create the node ledger, deploy the factory and register transfer sinks."""
    if start_time is None:
        start_time = int(time.time())
    ledger = InMemoryLedger(LedgerConfig(name=LEDGER_NAME, start_time=start_time))

    deploy_factory(ledger, FACTORY_ID, FactoryConfig(
        owner=FACTORY_OWNER,
        creation_fee=CREATION_FEE,
        treasury=TREASURY,
        storage_reserve=STORAGE_RESERVE,
    ))

    for token_id in TOKENS:
        ledger.register_sink(token_id, InMemoryToken(token_id))
        log.info(f"Registered in-memory token {token_id}")

    if EVM_PRIVATE_KEY:
        config = EVMSinkConfig(private_key=EVM_PRIVATE_KEY)
        if EVM_RPC_URL:
            config.rpc_url = EVM_RPC_URL
        ledger.register_sink(EVM_TOKEN_ID, Web3TokenSink(config))
        log.info(f"Registered ERC20 sink {EVM_TOKEN_ID} ({config.token_address})")

    return ledger


# =============================================================================
# APP SETUP
# =============================================================================

def create_app(ledger: Optional[InMemoryLedger] = None) -> FastAPI:
    ledger = ledger or build_ledger()
    escrows_routes.configure(ledger, FACTORY_ID)

    app = FastAPI(
        title="crossescrow",
        description="Cross-ledger HTLC escrow node",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/status")
    async def get_status():
        """Health check."""
        return {
            "status": "ok",
            "version": __version__,
            "ledger": ledger.name,
            "now": ledger.now,
            "pending": ledger.pending(),
            "factory_id": FACTORY_ID,
            "failed_receipts": len(ledger.failed_receipts),
        }

    app.include_router(escrows_routes.router)
    return app


app = create_app()

# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    log.info(f"Starting crossescrow node on port {port}")
    log.info(f"Factory: {FACTORY_ID} (owner {FACTORY_OWNER}, fee {CREATION_FEE})")
    log.info(f"Docs: http://0.0.0.0:{port}/docs")
    uvicorn.run(app, host="0.0.0.0", port=port)
