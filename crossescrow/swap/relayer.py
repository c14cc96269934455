"""
Secret relayer for crossescrow.

Watches one escrow per swap for a revealed secret and submits it to the
counterpart escrow on the other ledger:

    origin.withdraw(secret)  ->  secret public on origin ledger
    relayer sees secret      ->  counterpart.withdraw(secret)

Source escrows accept withdraw() from any caller, so the relayer can
complete the maker's leg without holding any of the maker's keys.

Runs as a background service, or synchronously via poll_once().
"""

import time
import logging
import threading
from typing import Dict, List, Callable, Optional
from dataclasses import dataclass

from ..core import EscrowError, EscrowState, NotInitialized, short_secret
from ..ledger.host import InMemoryLedger, LedgerError, NoContract

log = logging.getLogger(__name__)


@dataclass
class RelayerConfig:
    """Relayer configuration."""
    poll_interval: int = 5          # seconds
    stop_on_expiry: bool = True     # drop swaps whose counterpart window closed


@dataclass
class RelayedSwap:
    """One watched origin/counterpart escrow pair."""
    swap_id: str
    origin_ledger: InMemoryLedger
    origin_escrow: str
    counterpart_ledger: InMemoryLedger
    counterpart_escrow: str
    caller: str                     # account submitting the counterpart withdraw
    created_at: int = 0
    secret: Optional[str] = None
    relayed: bool = False
    failed: bool = False
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.relayed or self.failed

    def to_dict(self) -> Dict:
        return {
            "swap_id": self.swap_id,
            "origin": f"{self.origin_ledger.name}:{self.origin_escrow}",
            "counterpart": f"{self.counterpart_ledger.name}:{self.counterpart_escrow}",
            "caller": self.caller,
            "created_at": self.created_at,
            "secret_revealed": self.secret is not None,
            "relayed": self.relayed,
            "failed": self.failed,
            "error": self.error,
        }


class SecretRelayer:
    """
    Background service propagating revealed secrets across ledgers.

    Events:
    - on_secret_revealed: secret seen on the origin escrow
    - on_relayed: counterpart withdraw succeeded
    - on_relay_failed: counterpart withdraw rejected or window closed
    """

    def __init__(self, config: RelayerConfig = None):
        self.config = config or RelayerConfig()
        self.swaps: Dict[str, RelayedSwap] = {}

        # Callbacks
        self.on_secret_revealed: Optional[Callable[[RelayedSwap, str], None]] = None
        self.on_relayed: Optional[Callable[[RelayedSwap], None]] = None
        self.on_relay_failed: Optional[Callable[[RelayedSwap, str], None]] = None

        # State
        self._lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    # =========================================================================
    # Registration
    # =========================================================================

    def add_swap(self, swap_id: str, origin_ledger: InMemoryLedger, origin_escrow: str,
                 counterpart_ledger: InMemoryLedger, counterpart_escrow: str,
                 caller: str) -> RelayedSwap:
        swap = RelayedSwap(
            swap_id=swap_id,
            origin_ledger=origin_ledger,
            origin_escrow=origin_escrow,
            counterpart_ledger=counterpart_ledger,
            counterpart_escrow=counterpart_escrow,
            caller=caller,
            created_at=int(time.time()),
        )
        with self._lock:
            if swap_id in self.swaps:
                raise ValueError(f"Swap {swap_id} already watched")
            self.swaps[swap_id] = swap
        log.info(f"Watching swap {swap_id}: {origin_ledger.name}:{origin_escrow} -> "
                 f"{counterpart_ledger.name}:{counterpart_escrow}")
        return swap

    def remove_swap(self, swap_id: str) -> Optional[RelayedSwap]:
        with self._lock:
            return self.swaps.pop(swap_id, None)

    def get_swap(self, swap_id: str) -> Optional[RelayedSwap]:
        return self.swaps.get(swap_id)

    def get_active_swaps(self) -> List[RelayedSwap]:
        with self._lock:
            return [s for s in self.swaps.values() if not s.done]

    # =========================================================================
    # Service
    # =========================================================================

    def start(self):
        """Start relayer in background thread."""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._watch_loop, daemon=True)
        self._thread.start()
        log.info("Secret relayer started")

    def stop(self):
        """Stop relayer."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=5)
        log.info("Secret relayer stopped")

    def _watch_loop(self):
        while self._running:
            try:
                self.poll_once()
            except Exception as e:
                log.error(f"Relayer error: {e}")

            time.sleep(self.config.poll_interval)

    def poll_once(self) -> int:
        """
        Check every active swap once.

        Returns:
            Number of swaps relayed in this pass
        """
        relayed = 0
        for swap in self.get_active_swaps():
            try:
                if self._check_swap(swap):
                    relayed += 1
            except (EscrowError, LedgerError) as e:
                log.error(f"Error checking swap {swap.swap_id}: {e}")
        return relayed

    # =========================================================================
    # Per-swap logic
    # =========================================================================

    def _check_swap(self, swap: RelayedSwap) -> bool:
        if swap.secret is None:
            secret = swap.origin_ledger.view(swap.origin_escrow, "get_revealed_secret")
            if secret is None:
                self._check_expiry(swap)
                return False

            swap.secret = secret
            log.info(f"Secret revealed for swap {swap.swap_id}: {short_secret(secret)}")
            if self.on_secret_revealed:
                self.on_secret_revealed(swap, secret)

        if not self._counterpart_ready(swap):
            log.info(f"Swap {swap.swap_id}: counterpart still provisioning, relay deferred")
            return False
        return self._relay(swap)

    def _counterpart_ready(self, swap: RelayedSwap) -> bool:
        """Counterpart contract is deployed and initialized."""
        try:
            swap.counterpart_ledger.view(swap.counterpart_escrow, "get_parameters")
        except (NoContract, NotInitialized):
            return False
        return True

    def _check_expiry(self, swap: RelayedSwap):
        if not self.config.stop_on_expiry:
            return
        # A reserved escrow has no windows yet
        if not self._counterpart_ready(swap):
            return
        state = swap.counterpart_ledger.view(swap.counterpart_escrow, "get_state")
        if state is not EscrowState.ACTIVE:
            self._fail(swap, f"Counterpart escrow is {state.value}")
        elif not swap.counterpart_ledger.view(swap.counterpart_escrow, "can_withdraw"):
            self._fail(swap, "Counterpart withdrawal window closed")

    def _relay(self, swap: RelayedSwap) -> bool:
        try:
            swap.counterpart_ledger.call(swap.caller, swap.counterpart_escrow,
                                         "withdraw", swap.secret)
        except (EscrowError, LedgerError) as e:
            self._fail(swap, str(e))
            return False

        swap.relayed = True
        log.info(f"Relayed secret for swap {swap.swap_id} to "
                 f"{swap.counterpart_ledger.name}:{swap.counterpart_escrow}")
        if self.on_relayed:
            self.on_relayed(swap)
        return True

    def _fail(self, swap: RelayedSwap, reason: str):
        swap.failed = True
        swap.error = reason
        log.error(f"Relay failed for swap {swap.swap_id}: {reason}")
        if self.on_relay_failed:
            self.on_relay_failed(swap, reason)
