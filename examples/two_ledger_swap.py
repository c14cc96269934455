#!/usr/bin/env python3
"""
Example: two-ledger atomic swap

Alice (maker) trades 5 native units on ledger "north" for 40 TKN
held by Bob (taker) on ledger "south".

1. Bob generates the secret and hashlock
2. Alice locks 5 units in a DESTINATION escrow on north (for Bob)
3. Bob locks 40 TKN in a SOURCE escrow on south (for Alice)
4. Bob withdraws on north with the secret -> secret becomes public
5. Relayer submits the secret on south -> Alice receives TKN

Usage:
    python two_ledger_swap.py
"""

import sys
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crossescrow.core import (
    SwapRole, SwapParameters, TimelockPolicy, generate_secret, ONE_NATIVE,
)
from crossescrow.contracts import FactoryConfig
from crossescrow.client import deploy_factory
from crossescrow.ledger import InMemoryLedger, LedgerConfig, InMemoryToken
from crossescrow.swap import SecretRelayer

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
log = logging.getLogger(__name__)

ALICE = "alice"
BOB = "bob"
RELAYER = "relayer"


def main():
    # =================================================================
    # 1. Two ledgers, one factory each
    # =================================================================
    north = InMemoryLedger(LedgerConfig(name="north"))
    south = InMemoryLedger(LedgerConfig(name="south"))

    north_factory = deploy_factory(north, "factory.north",
                                   FactoryConfig(owner="ops", creation_fee=ONE_NATIVE // 100,
                                                 treasury="treasury.north"))
    south_factory = deploy_factory(south, "factory.south", FactoryConfig(owner="ops"))

    tkn = InMemoryToken("tkn")
    south.register_sink("tkn", tkn)

    north.mint(ALICE, 10 * ONE_NATIVE)
    south.mint(BOB, 5 * ONE_NATIVE)          # reserve + safety deposit

    # =================================================================
    # 2. Bob picks the secret
    # =================================================================
    secret, hashlock = generate_secret()
    log.info(f"Hashlock: {hashlock[:16]}...")

    # =================================================================
    # 3. Alice locks on north (destination leg, Bob withdraws)
    # =================================================================
    north_params = SwapParameters(
        order_id="0a1ce5b0b0001",
        hashlock=hashlock,
        maker=ALICE,
        taker=BOB,
        amount=5 * ONE_NATIVE,
        safety_deposit=0,
        timelocks=TimelockPolicy(withdrawal_window=3600,
                                 cancellation_threshold=7200,
                                 rescue_delay=86400),
    )
    north_escrow = north_factory.create_and_wait(ALICE, SwapRole.DESTINATION, north_params)
    log.info(f"North escrow: {north_escrow.escrow_id}")

    # =================================================================
    # 4. Bob locks on south (source leg, Alice is paid)
    # =================================================================
    south_params = SwapParameters(
        order_id="0a1ce5b0b0002",
        hashlock=hashlock,
        maker=ALICE,
        taker=BOB,
        token="tkn",
        amount=40,
        safety_deposit=ONE_NATIVE // 10,
        timelocks=TimelockPolicy(withdrawal_window=7200,
                                 cancellation_threshold=14400,
                                 rescue_delay=172800),
    )
    south_escrow = south_factory.create_and_wait(BOB, SwapRole.SOURCE, south_params)
    tkn.mint(south_escrow.escrow_id, 40)     # Bob funds the token leg
    log.info(f"South escrow: {south_escrow.escrow_id}")

    # =================================================================
    # 5. Relayer watches north, claims on south
    # =================================================================
    relayer = SecretRelayer()
    relayer.add_swap("alice-bob-1", north, north_escrow.escrow_id,
                     south, south_escrow.escrow_id, caller=RELAYER)

    north_escrow.withdraw(BOB, secret)
    relayer.poll_once()
    south.run_pending()

    log.info(f"Bob native balance on north: {north.balance_of(BOB)}")
    log.info(f"Alice TKN balance on south: {tkn.balance_of(ALICE)}")
    log.info(f"South payout: {south_escrow.payout.status.value}")


if __name__ == "__main__":
    main()
