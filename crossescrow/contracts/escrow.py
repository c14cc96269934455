"""
Per-swap HTLC escrow contract.

One contract type serves both swap roles:
- SOURCE: anyone may submit withdraw(secret), funds go to the maker;
  the taker may cancel / rescue.
- DESTINATION: only the taker may withdraw (funds go to the taker);
  the maker may cancel / rescue.

State machine:
    ACTIVE -> WITHDRAWN   withdraw(secret)   inside withdrawal window
    ACTIVE -> CANCELLED   cancel()           after cancellation threshold
    ACTIVE -> RESCUED     rescue(recipient)  after rescue delay
All three targets are terminal.

The state transition commits before the payout outcome is known. A
failed fungible payout leaves the state terminal and marks the payout
FAILED; retry_payout() re-sends it to the same recipient.
"""

import logging
from dataclasses import replace
from typing import Optional, Dict, Any

from ..core import (
    SwapRole, EscrowState, PayoutStatus, SwapParameters, Payout,
    NotActive, WindowExpired, WindowNotReached, BadSecret, Unauthorized,
    InvalidParameters, NotInitialized, AlreadyInitialized, PayoutNotRetryable,
    verify_secret, short_secret,
)
from ..ledger.host import CallContext, PromiseResult

log = logging.getLogger(__name__)


class EscrowContract:
    """
    HTLC custody for one swap leg.

    Deployed empty by the factory and then initialized once with the
    swap role and parameters.
    """

    def __init__(self):
        self.role: Optional[SwapRole] = None
        self.params: Optional[SwapParameters] = None
        self.state = EscrowState.ACTIVE
        self.factory: Optional[str] = None
        self.secret: Optional[str] = None
        self.payout: Optional[Payout] = None

    def initialize(self, ctx: CallContext, role, params) -> bool:
        """
        Set role and parameters. The calling account is recorded as factory.

        Raises:
            AlreadyInitialized, InvalidParameters, InvalidTimelocks
        """
        if self.params is not None:
            raise AlreadyInitialized(f"Escrow {ctx.current_account} already initialized")

        role = SwapRole(role)
        if isinstance(params, dict):
            params = SwapParameters.from_dict(params)
        params = params.stamped(ctx.now)
        params.validate()

        self.role = role
        self.params = params
        self.factory = ctx.predecessor

        log.info(f"Escrow {ctx.current_account} initialized: role={role.value}, "
                 f"order={params.order_id}, hashlock={params.hashlock[:16]}...")
        return True

    # =========================================================================
    # Guards
    # =========================================================================

    def _require_initialized(self):
        if self.params is None:
            raise NotInitialized("Escrow is not initialized")

    def _require_active(self):
        self._require_initialized()
        if self.state is not EscrowState.ACTIVE:
            raise NotActive(f"Escrow is not active (state={self.state.value})")

    # =========================================================================
    # Transitions
    # =========================================================================

    def withdraw(self, ctx: CallContext, secret: str) -> Dict[str, Any]:
        """
        Withdraw with the secret. Pays the role's withdraw beneficiary.

        Raises:
            NotActive, WindowExpired, BadSecret, Unauthorized
        """
        self._require_active()

        if not self.params.timelocks.can_withdraw(ctx.now):
            raise WindowExpired("Withdrawal period has expired")

        if not verify_secret(secret, self.params.hashlock):
            raise BadSecret("Invalid secret")

        caller = ctx.predecessor
        if not self.role.open_withdrawal and caller != self.params.taker:
            raise Unauthorized("Only taker can withdraw from destination escrow")

        self.state = EscrowState.WITHDRAWN
        self.secret = secret
        beneficiary = self.role.withdraw_beneficiary(self.params)

        log.info(f"{self.role.value.capitalize()} escrow {ctx.current_account} withdrawn by "
                 f"{caller} for {beneficiary}, secret={short_secret(secret)}")
        return self._dispatch_payout(ctx, beneficiary)

    def cancel(self, ctx: CallContext) -> Dict[str, Any]:
        """
        Cancel after the cancellation threshold. Refunds the role's refund beneficiary.

        Raises:
            NotActive, WindowNotReached, Unauthorized
        """
        self._require_active()

        if not self.params.timelocks.can_cancel(ctx.now):
            raise WindowNotReached("Cancellation period not reached")

        authority = self.role.cancel_authority(self.params)
        if ctx.predecessor != authority:
            raise Unauthorized(f"Only {authority} can cancel {self.role.value} escrow")

        self.state = EscrowState.CANCELLED
        refund_to = self.role.refund_beneficiary(self.params)

        log.info(f"{self.role.value.capitalize()} escrow {ctx.current_account} "
                 f"cancelled by {ctx.predecessor}, refund to {refund_to}")
        return self._dispatch_payout(ctx, refund_to)

    def rescue(self, ctx: CallContext, recipient: str) -> Dict[str, Any]:
        """
        Emergency rescue after the rescue delay, to any recipient.

        Raises:
            NotActive, WindowNotReached, Unauthorized, InvalidParameters
        """
        self._require_active()

        if not self.params.timelocks.can_rescue(ctx.now):
            raise WindowNotReached("Rescue period not reached")

        authority = self.role.cancel_authority(self.params)
        if ctx.predecessor != authority:
            raise Unauthorized(f"Only {authority} can rescue funds from {self.role.value} escrow")

        if not recipient:
            raise InvalidParameters("Rescue recipient is required")

        self.state = EscrowState.RESCUED

        log.info(f"Funds rescued by {ctx.predecessor} to {recipient} "
                 f"from {self.role.value} escrow {ctx.current_account}")
        return self._dispatch_payout(ctx, recipient)

    # =========================================================================
    # Payout
    # =========================================================================

    def _dispatch_payout(self, ctx: CallContext, recipient: str) -> Dict[str, Any]:
        self.payout = Payout(
            recipient=recipient,
            amount=self.params.amount,
            token=self.params.token,
            safety_deposit=self.params.safety_deposit,
        )
        # Safety deposit is always native and settles with the transition
        if self.params.safety_deposit:
            ctx.transfer(recipient, self.params.safety_deposit)
        return self._send_principal(ctx)

    def _send_principal(self, ctx: CallContext) -> Dict[str, Any]:
        payout = self.payout
        payout.attempt += 1

        if payout.token is None:
            if payout.amount:
                ctx.transfer(payout.recipient, payout.amount)
            payout.status = PayoutStatus.SETTLED
        else:
            payout.status = PayoutStatus.PENDING
            (ctx.send_token(payout.token, payout.recipient, payout.amount)
                .then(ctx.current_account, "on_payout_resolved", payout.attempt))

        return payout.to_dict()

    def on_payout_resolved(self, ctx: CallContext, attempt: int) -> PayoutStatus:
        """Callback for fungible payouts. Stale attempts are ignored."""
        ctx.assert_private()

        payout = self.payout
        if payout is None or payout.attempt != attempt or payout.status is not PayoutStatus.PENDING:
            log.warning(f"Ignoring stale payout callback on {ctx.current_account} (attempt={attempt})")
            return payout.status if payout else PayoutStatus.NONE

        if ctx.promise_result is PromiseResult.SUCCESSFUL:
            payout.status = PayoutStatus.SETTLED
            log.info(f"Payout settled: {payout.amount} {payout.token} -> {payout.recipient}")
        else:
            payout.status = PayoutStatus.FAILED
            log.warning(f"Payout failed: {payout.amount} {payout.token} -> {payout.recipient} "
                        f"(escrow {ctx.current_account}, state={self.state.value})")
        return payout.status

    def retry_payout(self, ctx: CallContext) -> Dict[str, Any]:
        """
        Re-send a failed fungible payout. Any caller; the recipient is fixed.

        Raises:
            PayoutNotRetryable
        """
        self._require_initialized()
        if self.payout is None or self.payout.status is not PayoutStatus.FAILED:
            status = self.payout.status.value if self.payout else PayoutStatus.NONE.value
            raise PayoutNotRetryable(f"Payout is not failed (status={status})")

        log.info(f"Retrying payout from {ctx.current_account} to {self.payout.recipient} "
                 f"(requested by {ctx.predecessor})")
        return self._send_principal(ctx)

    # =========================================================================
    # Views
    # =========================================================================

    def get_parameters(self, ctx: CallContext) -> SwapParameters:
        self._require_initialized()
        return self.params

    def get_role(self, ctx: CallContext) -> SwapRole:
        self._require_initialized()
        return self.role

    def get_state(self, ctx: CallContext) -> EscrowState:
        return self.state

    def get_revealed_secret(self, ctx: CallContext) -> Optional[str]:
        return self.secret

    def get_factory(self, ctx: CallContext) -> Optional[str]:
        return self.factory

    def get_payout(self, ctx: CallContext) -> Optional[Payout]:
        return replace(self.payout) if self.payout else None

    def can_withdraw(self, ctx: CallContext) -> bool:
        return (self.params is not None and self.state is EscrowState.ACTIVE
                and self.params.timelocks.can_withdraw(ctx.now))

    def can_cancel(self, ctx: CallContext) -> bool:
        return (self.params is not None and self.state is EscrowState.ACTIVE
                and self.params.timelocks.can_cancel(ctx.now))

    def can_rescue(self, ctx: CallContext) -> bool:
        return (self.params is not None and self.state is EscrowState.ACTIVE
                and self.params.timelocks.can_rescue(ctx.now))

    def get_withdraw_authority(self, ctx: CallContext) -> str:
        self._require_initialized()
        return self.role.withdraw_authority(self.params)

    def get_cancel_authority(self, ctx: CallContext) -> str:
        self._require_initialized()
        return self.role.cancel_authority(self.params)

    def get_summary(self, ctx: CallContext) -> Dict[str, Any]:
        """JSON-friendly snapshot for APIs."""
        self._require_initialized()
        return {
            "escrow_id": ctx.current_account,
            "role": self.role.value,
            "state": self.state.value,
            "factory": self.factory,
            "parameters": self.params.to_dict(),
            "revealed_secret": self.secret,
            "withdraw_authority": self.role.withdraw_authority(self.params),
            "cancel_authority": self.role.cancel_authority(self.params),
            "can_withdraw": self.can_withdraw(ctx),
            "can_cancel": self.can_cancel(ctx),
            "can_rescue": self.can_rescue(ctx),
            "payout": self.payout.to_dict() if self.payout else None,
            "balance": ctx.balance,
        }
