"""
crossescrow - Cross-Ledger Atomic Swap Escrows

Hash-time-locked escrows provisioned by a factory, one per order.
Each swap uses a SOURCE escrow on one ledger and a DESTINATION escrow
on the other, both locked to the same hashlock.

Usage:
    from crossescrow import InMemoryLedger, FactoryConfig, deploy_factory
    from crossescrow import SwapRole, SwapParameters, generate_secret, default_timelocks

    ledger = InMemoryLedger()
    factory = deploy_factory(ledger, "factory.local", FactoryConfig(owner="owner.local"))

    secret, hashlock = generate_secret()
    params = SwapParameters(order_id="a1b2c3d4e5", hashlock=hashlock,
                            maker="maker.local", taker="taker.local",
                            amount=10**24, safety_deposit=0,
                            timelocks=default_timelocks())

    escrow = factory.create_and_wait("maker.local", SwapRole.DESTINATION, params)
    escrow.withdraw("taker.local", secret)
"""

from .core import (
    SwapRole,
    EscrowState,
    CreationStatus,
    PayoutStatus,
    TimelockPolicy,
    SwapParameters,
    Payout,
    EscrowError,
    NotActive,
    WindowExpired,
    WindowNotReached,
    BadSecret,
    Unauthorized,
    InsufficientDeposit,
    DuplicateOrder,
    EscrowIdCollision,
    ProvisioningFailed,
    TemplateNotConfigured,
    InvalidParameters,
    InvalidTimelocks,
    make_hashlock,
    verify_secret,
    generate_secret,
    default_timelocks,
    ONE_NATIVE,
)

from .ledger import InMemoryLedger, LedgerConfig, InMemoryToken
from .contracts import EscrowContract, EscrowFactory, FactoryConfig, ESCROW_TEMPLATE
from .client import FactoryClient, EscrowClient, deploy_factory
from .swap import SecretRelayer, RelayerConfig

__version__ = "0.1.0"
__all__ = [
    # Core types
    "SwapRole",
    "EscrowState",
    "CreationStatus",
    "PayoutStatus",
    "TimelockPolicy",
    "SwapParameters",
    "Payout",
    # Errors
    "EscrowError",
    "NotActive",
    "WindowExpired",
    "WindowNotReached",
    "BadSecret",
    "Unauthorized",
    "InsufficientDeposit",
    "DuplicateOrder",
    "EscrowIdCollision",
    "ProvisioningFailed",
    "TemplateNotConfigured",
    "InvalidParameters",
    "InvalidTimelocks",
    # Utilities
    "make_hashlock",
    "verify_secret",
    "generate_secret",
    "default_timelocks",
    "ONE_NATIVE",
    # Ledger
    "InMemoryLedger",
    "LedgerConfig",
    "InMemoryToken",
    # Contracts
    "EscrowContract",
    "EscrowFactory",
    "FactoryConfig",
    "ESCROW_TEMPLATE",
    # Clients
    "FactoryClient",
    "EscrowClient",
    "deploy_factory",
    # Swap
    "SecretRelayer",
    "RelayerConfig",
]
