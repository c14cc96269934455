"""
Swap coordination for crossescrow.

Propagates revealed secrets between the two legs of a swap.
"""

from .relayer import SecretRelayer, RelayerConfig, RelayedSwap

__all__ = ["SecretRelayer", "RelayerConfig", "RelayedSwap"]
