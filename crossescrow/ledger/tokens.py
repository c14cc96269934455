"""
Fungible-asset transfer sinks.

A sink accepts a transfer and reports its outcome later:
    ticket = sink.send(sender, recipient, amount)
    sink.poll(ticket) -> None (unresolved) | True | False
The ledger polls in-flight tickets on run_pending() and delivers the
outcome to the issuing contract's callback.
"""

import itertools
import logging
from typing import Optional, Dict, Set

log = logging.getLogger(__name__)


class TransferSink:
    """Asynchronous asset-transfer collaborator."""

    def send(self, sender: str, recipient: str, amount: int) -> str:
        """Submit a transfer. Returns a ticket to poll."""
        raise NotImplementedError

    def poll(self, ticket: str) -> Optional[bool]:
        """Outcome of a ticket: None while unresolved, else success flag."""
        raise NotImplementedError


class InMemoryToken(TransferSink):
    """
    Simple fungible token ledger acting as a transfer sink.

    Transfers to frozen accounts fail, the same way a token contract
    rejects transfers to unregistered holders.
    """

    def __init__(self, token_id: str, balances: Dict[str, int] = None):
        self.token_id = token_id
        self.balances: Dict[str, int] = dict(balances or {})
        self.frozen: Set[str] = set()
        self._outcomes: Dict[str, bool] = {}
        self._counter = itertools.count(1)

    def mint(self, account: str, amount: int):
        self.balances[account] = self.balances.get(account, 0) + amount

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def freeze(self, account: str):
        self.frozen.add(account)

    def unfreeze(self, account: str):
        self.frozen.discard(account)

    def send(self, sender: str, recipient: str, amount: int) -> str:
        ticket = f"{self.token_id}:{next(self._counter)}"
        have = self.balances.get(sender, 0)

        if recipient in self.frozen:
            log.warning(f"{self.token_id}: transfer to frozen account {recipient} rejected")
            self._outcomes[ticket] = False
        elif have < amount:
            log.warning(f"{self.token_id}: {sender} has {have}, needs {amount}")
            self._outcomes[ticket] = False
        else:
            self.balances[sender] = have - amount
            self.balances[recipient] = self.balances.get(recipient, 0) + amount
            self._outcomes[ticket] = True
        return ticket

    def poll(self, ticket: str) -> Optional[bool]:
        return self._outcomes.pop(ticket, None)
