"""
Escrow contracts for crossescrow.

EscrowContract holds one swap leg; EscrowFactory provisions them.
"""

from .escrow import EscrowContract
from .factory import EscrowFactory, FactoryConfig, EscrowInfo

# Template name the factory deploys by default
ESCROW_TEMPLATE = "escrow-v1"

__all__ = ["EscrowContract", "EscrowFactory", "FactoryConfig", "EscrowInfo", "ESCROW_TEMPLATE"]
