"""
In-memory host ledger for crossescrow.

Provides the collaborator contract the escrow contracts rely on:
- Atomic per-call execution (all mutations of a failed call are reverted)
- Monotonic ledger time (seconds)
- Verified caller identity (CallContext.predecessor)
- Native balances and account/contract provisioning
- Asynchronous promise chains with completion callbacks
- Pluggable transfer sinks for fungible assets

All calls, views and queue steps are serialized by one re-entrant lock,
so two operations on the same ledger never interleave.
"""

import copy
import logging
import threading
from collections import deque
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Tuple

from ..core import Unauthorized

log = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for host ledger failures."""


class InsufficientBalance(LedgerError):
    pass


class AccountExists(LedgerError):
    pass


class UnknownAccount(LedgerError):
    pass


class UnknownTemplate(LedgerError):
    pass


class NoContract(LedgerError):
    pass


class ReadOnlyContext(LedgerError):
    """Mutating helper used from a view call."""


class ClockError(LedgerError):
    """Ledger time may only move forward."""


class InjectedFault(LedgerError):
    """Failure injected by a test or operator through inject_fault()."""


class PromiseResult(Enum):
    SUCCESSFUL = "successful"
    FAILED = "failed"


@dataclass
class LedgerConfig:
    """Host ledger configuration."""
    name: str = "local"
    start_time: int = 0  # seconds


# =============================================================================
# Promise chains
# =============================================================================

@dataclass
class ChainStep:
    kind: str                       # create_account, transfer, deploy, call
    amount: int = 0
    template: Optional[str] = None
    method: Optional[str] = None
    args: Tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)

    @property
    def fault_key(self) -> str:
        return self.method if self.kind == "call" else self.kind


@dataclass
class Callback:
    receiver: str
    method: str
    args: Tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


class Promise:
    """
    Causally-ordered chain of steps against one receiver account.

    Each step runs as its own invocation after the issuing call commits;
    a failing step stops the chain. The optional callback runs last and
    sees the chain outcome through ctx.promise_result.
    """

    def __init__(self, receiver: str):
        self.receiver = receiver
        self.steps: List[ChainStep] = []
        self.callback: Optional[Callback] = None

    def create_account(self) -> "Promise":
        self.steps.append(ChainStep("create_account"))
        return self

    def transfer(self, amount: int) -> "Promise":
        if amount < 0:
            raise ValueError(f"Transfer amount must be >= 0, got {amount}")
        self.steps.append(ChainStep("transfer", amount=amount))
        return self

    def deploy(self, template: str) -> "Promise":
        self.steps.append(ChainStep("deploy", template=template))
        return self

    def function_call(self, method: str, *args, **kwargs) -> "Promise":
        self.steps.append(ChainStep("call", method=method, args=args, kwargs=kwargs))
        return self

    def then(self, receiver: str, method: str, *args, **kwargs) -> "Promise":
        self.callback = Callback(receiver, method, args, kwargs)
        return self

    @property
    def value(self) -> int:
        """Native value carried by the chain's transfer steps."""
        return sum(s.amount for s in self.steps if s.kind == "transfer")


@dataclass
class TokenSend:
    """Fungible transfer handed to a TransferSink."""
    token: str
    sender: str
    recipient: str
    amount: int
    callback: Optional[Callback] = None
    ticket: Optional[str] = None

    def then(self, receiver: str, method: str, *args, **kwargs) -> "TokenSend":
        self.callback = Callback(receiver, method, args, kwargs)
        return self


@dataclass
class _ChainJob:
    promise: Promise
    predecessor: str
    index: int = 0
    remaining_value: int = 0


@dataclass
class _CallbackJob:
    callback: Callback
    predecessor: str
    result: PromiseResult


@dataclass
class _SendJob:
    send: TokenSend
    predecessor: str


@dataclass
class FailedReceipt:
    """Record of a failed chain step or callback."""
    receiver: str
    step: str
    error: Exception
    at: int


# =============================================================================
# Call context
# =============================================================================

class CallContext:
    """
    Per-invocation view of the host handed to every contract method.
    """

    def __init__(self, ledger: "InMemoryLedger", predecessor: Optional[str],
                 current_account: str, attached: int = 0,
                 promise_result: Optional[PromiseResult] = None,
                 read_only: bool = False):
        self._ledger = ledger
        self.predecessor = predecessor
        self.current_account = current_account
        self.attached = attached
        self.promise_result = promise_result
        self.read_only = read_only
        self.promises: List[Promise] = []
        self.token_sends: List[TokenSend] = []

    @property
    def now(self) -> int:
        return self._ledger.now

    @property
    def balance(self) -> int:
        return self._ledger.balance_of(self.current_account)

    def _check_writable(self, what: str):
        if self.read_only:
            raise ReadOnlyContext(f"{what} not allowed in a view call")

    def assert_private(self):
        """Only the contract itself (its own callbacks) may call."""
        if self.predecessor != self.current_account:
            raise Unauthorized(f"Method is private to {self.current_account}")

    def transfer(self, recipient: str, amount: int):
        """Native transfer, applied synchronously within this call."""
        self._check_writable("transfer")
        self._ledger._move(self.current_account, recipient, amount)

    def promise(self, receiver: str) -> Promise:
        self._check_writable("promise")
        p = Promise(receiver)
        self.promises.append(p)
        return p

    def send_token(self, token: str, recipient: str, amount: int) -> TokenSend:
        """Fungible transfer; outcome arrives later through the callback."""
        self._check_writable("send_token")
        send = TokenSend(token=token, sender=self.current_account,
                         recipient=recipient, amount=amount)
        self.token_sends.append(send)
        return send


# =============================================================================
# Ledger
# =============================================================================

class InMemoryLedger:
    """
    Deterministic single-process host ledger.

    Top-level calls execute immediately; everything they schedule
    (promise chains, token sends, callbacks) runs on run_pending().
    """

    def __init__(self, config: LedgerConfig = None):
        self.config = config or LedgerConfig()
        self.name = self.config.name
        self._now = self.config.start_time
        self._balances: Dict[str, int] = {}
        self._contracts: Dict[str, Any] = {}
        self._templates: Dict[str, type] = {}
        self._sinks: Dict[str, Any] = {}
        self._queue: deque = deque()
        self._in_flight: List[_SendJob] = []
        self._faults: Dict[Tuple[str, str], int] = {}
        self._lock = threading.RLock()
        self.failed_receipts: List[FailedReceipt] = []

    # =========================================================================
    # Clock
    # =========================================================================

    @property
    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ClockError(f"Cannot move clock backwards by {seconds}s")
        with self._lock:
            self._now += seconds
            return self._now

    def set_time(self, timestamp: int) -> int:
        with self._lock:
            if timestamp < self._now:
                raise ClockError(f"Clock is at {self._now}, cannot set {timestamp}")
            self._now = timestamp
            return self._now

    # =========================================================================
    # Accounts & provisioning
    # =========================================================================

    def create_account(self, account_id: str, balance: int = 0):
        with self._lock:
            if account_id in self._balances:
                raise AccountExists(f"Account already exists: {account_id}")
            self._balances[account_id] = balance

    def account_exists(self, account_id: str) -> bool:
        return account_id in self._balances

    def balance_of(self, account_id: str) -> int:
        return self._balances.get(account_id, 0)

    def mint(self, account_id: str, amount: int):
        """Credit native value out of thin air (genesis / dev faucet)."""
        with self._lock:
            self._balances[account_id] = self._balances.get(account_id, 0) + amount

    def register_template(self, name: str, contract_cls: type):
        self._templates[name] = contract_cls

    def register_sink(self, token: str, sink):
        self._sinks[token] = sink

    def deploy(self, account_id: str, contract) -> Any:
        """Install a contract instance directly (genesis deployment)."""
        with self._lock:
            self._balances.setdefault(account_id, 0)
            self._contracts[account_id] = contract
            log.info(f"[{self.name}] Deployed {type(contract).__name__} at {account_id}")
            return contract

    def contract(self, account_id: str) -> Optional[Any]:
        """Direct access to a deployed contract object (inspection only)."""
        return self._contracts.get(account_id)

    def inject_fault(self, account_id: str, step: str, times: int = 1):
        """
        Make the next `times` chain steps named `step` against `account_id` fail.

        `step` is a step kind (create_account, transfer, deploy) or a method name.
        """
        with self._lock:
            self._faults[(account_id, step)] = self._faults.get((account_id, step), 0) + times

    # =========================================================================
    # Calls
    # =========================================================================

    def call(self, caller: str, receiver: str, method: str, *args,
             attached: int = 0, **kwargs) -> Any:
        """
        Execute a signed top-level call. Reverts and re-raises on error.
        """
        with self._lock:
            return self._execute(caller, receiver, method, args, kwargs,
                                 attached=attached, payer=caller)

    def view(self, receiver: str, method: str, *args, **kwargs) -> Any:
        """Execute a read-only call."""
        with self._lock:
            return self._execute(None, receiver, method, args, kwargs, read_only=True)

    def _move(self, sender: str, recipient: str, amount: int):
        if amount < 0:
            raise ValueError(f"Transfer amount must be >= 0, got {amount}")
        have = self._balances.get(sender, 0)
        if have < amount:
            raise InsufficientBalance(f"{sender} has {have}, needs {amount}")
        self._balances[sender] = have - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount

    def _execute(self, predecessor: Optional[str], receiver: str, method: str,
                 args: Tuple, kwargs: Dict[str, Any], attached: int = 0,
                 payer: Optional[str] = None,
                 promise_result: Optional[PromiseResult] = None,
                 read_only: bool = False) -> Any:
        contract = self._contracts.get(receiver)
        if contract is None:
            raise NoContract(f"No contract deployed at {receiver}")
        handler = getattr(contract, method, None) if not method.startswith("_") else None
        if handler is None or not callable(handler):
            raise LedgerError(f"{receiver} has no method {method!r}")

        saved_state = copy.deepcopy(contract.__dict__)
        saved_balances = dict(self._balances)
        ctx = CallContext(self, predecessor, receiver, attached=attached,
                          promise_result=promise_result, read_only=read_only)
        try:
            if attached:
                self._move(payer, receiver, attached)
            result = handler(ctx, *args, **kwargs)
            self._commit(ctx)
        except Exception:
            self._restore(contract, saved_state, saved_balances)
            raise

        if read_only:
            self._restore(contract, saved_state, saved_balances)
        return result

    def _restore(self, contract, saved_state: Dict[str, Any], saved_balances: Dict[str, int]):
        contract.__dict__.clear()
        contract.__dict__.update(saved_state)
        self._balances = saved_balances

    def _commit(self, ctx: CallContext):
        """Escrow chain value and enqueue everything the call scheduled."""
        jobs = []
        for p in ctx.promises:
            value = p.value
            if value:
                have = self._balances.get(ctx.current_account, 0)
                if have < value:
                    raise InsufficientBalance(
                        f"{ctx.current_account} has {have}, chain needs {value}")
                self._balances[ctx.current_account] = have - value
            jobs.append(_ChainJob(p, ctx.current_account, remaining_value=value))
        for send in ctx.token_sends:
            jobs.append(_SendJob(send, ctx.current_account))
        self._queue.extend(jobs)

    # =========================================================================
    # Asynchronous execution
    # =========================================================================

    def pending(self) -> int:
        """Number of queued jobs plus unresolved token sends."""
        return len(self._queue) + len(self._in_flight)

    def run_pending(self, max_steps: Optional[int] = None) -> int:
        """
        Run queued chain steps, callbacks and sink polls until idle.

        Returns:
            Number of steps executed
        """
        steps = 0
        with self._lock:
            while self._queue or self._in_flight:
                if self._queue:
                    job = self._queue.popleft()
                    self._run_job(job)
                elif not self._poll_sinks():
                    # Sends still unresolved on the remote side
                    break
                steps += 1
                if max_steps is not None and steps >= max_steps:
                    break
        return steps

    def _run_job(self, job):
        if isinstance(job, _ChainJob):
            self._run_chain_step(job)
        elif isinstance(job, _CallbackJob):
            self._run_callback(job)
        elif isinstance(job, _SendJob):
            self._start_send(job)

    def _take_fault(self, account_id: str, step: str) -> bool:
        key = (account_id, step)
        left = self._faults.get(key, 0)
        if not left:
            return False
        if left == 1:
            del self._faults[key]
        else:
            self._faults[key] = left - 1
        return True

    def _run_chain_step(self, job: _ChainJob):
        promise = job.promise
        step = promise.steps[job.index]
        receiver = promise.receiver
        try:
            if self._take_fault(receiver, step.fault_key):
                raise InjectedFault(f"Injected fault: {step.fault_key} on {receiver}")
            self._apply_step(job, step)
        except Exception as e:
            log.warning(f"[{self.name}] Chain step {step.fault_key} on {receiver} failed: {e}")
            self.failed_receipts.append(FailedReceipt(receiver, step.fault_key, e, self._now))
            if job.remaining_value:
                # Unspent chain value goes back to the originator
                self._balances[job.predecessor] = (
                    self._balances.get(job.predecessor, 0) + job.remaining_value)
                job.remaining_value = 0
            self._finish_chain(job, PromiseResult.FAILED)
            return

        job.index += 1
        if job.index < len(promise.steps):
            self._queue.append(job)
        else:
            self._finish_chain(job, PromiseResult.SUCCESSFUL)

    def _apply_step(self, job: _ChainJob, step: ChainStep):
        receiver = job.promise.receiver
        if step.kind == "create_account":
            if receiver in self._balances:
                raise AccountExists(f"Account already exists: {receiver}")
            self._balances[receiver] = 0
        elif step.kind == "transfer":
            if receiver not in self._balances:
                raise UnknownAccount(f"Unknown account: {receiver}")
            self._balances[receiver] += step.amount
            job.remaining_value -= step.amount
        elif step.kind == "deploy":
            if receiver not in self._balances:
                raise UnknownAccount(f"Unknown account: {receiver}")
            contract_cls = self._templates.get(step.template)
            if contract_cls is None:
                raise UnknownTemplate(f"Unknown template: {step.template}")
            self._contracts[receiver] = contract_cls()
        elif step.kind == "call":
            self._execute(job.predecessor, receiver, step.method, step.args, step.kwargs)
        else:
            raise LedgerError(f"Unknown chain step: {step.kind}")

    def _finish_chain(self, job: _ChainJob, result: PromiseResult):
        cb = job.promise.callback
        if cb is not None:
            self._queue.append(_CallbackJob(cb, job.predecessor, result))

    def _run_callback(self, job: _CallbackJob):
        cb = job.callback
        try:
            self._execute(job.predecessor, cb.receiver, cb.method, cb.args, cb.kwargs,
                          promise_result=job.result)
        except Exception as e:
            log.error(f"[{self.name}] Callback {cb.method} on {cb.receiver} failed: {e}")
            self.failed_receipts.append(FailedReceipt(cb.receiver, cb.method, e, self._now))

    def _start_send(self, job: _SendJob):
        send = job.send
        sink = self._sinks.get(send.token)
        try:
            if sink is None:
                raise LedgerError(f"No transfer sink for token {send.token}")
            send.ticket = sink.send(send.sender, send.recipient, send.amount)
        except Exception as e:
            log.warning(f"[{self.name}] Token send {send.token} -> {send.recipient} failed: {e}")
            self.failed_receipts.append(FailedReceipt(send.token, "send", e, self._now))
            self._resolve_send(job, PromiseResult.FAILED)
            return
        self._in_flight.append(job)

    def _poll_sinks(self) -> bool:
        """Poll in-flight sends once. Returns True if any resolved."""
        resolved = False
        still_pending = []
        for job in self._in_flight:
            sink = self._sinks[job.send.token]
            try:
                outcome = sink.poll(job.send.ticket)
            except Exception as e:
                log.warning(f"[{self.name}] Polling {job.send.ticket} failed: {e}")
                outcome = False
            if outcome is None:
                still_pending.append(job)
                continue
            resolved = True
            self._resolve_send(job, PromiseResult.SUCCESSFUL if outcome else PromiseResult.FAILED)
        self._in_flight = still_pending
        return resolved

    def _resolve_send(self, job: _SendJob, result: PromiseResult):
        if job.send.callback is not None:
            self._queue.append(_CallbackJob(job.send.callback, job.predecessor, result))
