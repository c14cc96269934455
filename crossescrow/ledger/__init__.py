"""
Host ledger collaborators for crossescrow.

Each host provides:
- Atomic per-call execution and verified caller identity
- Monotonic time
- Asynchronous promise chains with completion callbacks
- Transfer sinks for fungible assets
"""

from .host import (
    InMemoryLedger,
    LedgerConfig,
    CallContext,
    Promise,
    PromiseResult,
    LedgerError,
    InsufficientBalance,
)
from .tokens import TransferSink, InMemoryToken
from .evm import Web3TokenSink, EVMSinkConfig

__all__ = [
    "InMemoryLedger",
    "LedgerConfig",
    "CallContext",
    "Promise",
    "PromiseResult",
    "LedgerError",
    "InsufficientBalance",
    "TransferSink",
    "InMemoryToken",
    "Web3TokenSink",
    "EVMSinkConfig",
]
