"""
Escrow factory.

Provisions one EscrowContract per order under the factory's namespace:

    {tag}-{order_id[:8]}.{factory_id}     e.g. src-a1b2c3d4.factory.local

Creation is a saga:
    1. create_escrow() validates, writes a PENDING registry entry and
       issues the chain create_account -> transfer -> deploy -> initialize
    2. on_creation_complete() runs once per attempt and either commits
       (fee swept to treasury) or rolls back (both registry maps cleared)

Value that already reached the child before a failure is not recovered
here; it stays in the child account.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Optional, Dict, Any

from ..core import (
    SwapRole, SwapParameters, CreationStatus,
    Unauthorized, InsufficientDeposit, DuplicateOrder, EscrowIdCollision,
    TemplateNotConfigured, InvalidParameters,
    DEFAULT_STORAGE_RESERVE, ORDER_PREFIX_LEN,
)
from ..ledger.host import CallContext, PromiseResult

log = logging.getLogger(__name__)

_ID_PREFIX = re.compile(r"^[a-z0-9_-]+$")


@dataclass
class FactoryConfig:
    """Factory deployment configuration."""
    owner: str
    creation_fee: int = 0
    treasury: Optional[str] = None
    escrow_template: Optional[str] = None   # name registered on the ledger
    storage_reserve: int = DEFAULT_STORAGE_RESERVE


@dataclass
class EscrowInfo:
    """Registry entry for one provisioned (or provisioning) escrow."""
    role: SwapRole
    params: SwapParameters
    creator: str
    created_at: int
    status: CreationStatus = CreationStatus.PENDING
    attempt: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "parameters": self.params.to_dict(),
            "creator": self.creator,
            "created_at": self.created_at,
            "status": self.status.value,
            "attempt": self.attempt,
        }


class EscrowFactory:
    """
    Factory contract owning the order -> escrow registry.
    """

    def __init__(self, config: FactoryConfig):
        if not config.owner:
            raise InvalidParameters("Factory owner is required")
        self.owner = config.owner
        self.creation_fee = config.creation_fee
        self.treasury = config.treasury
        self.escrow_template = config.escrow_template
        self.storage_reserve = config.storage_reserve

        self.order_to_escrow: Dict[str, str] = {}
        self.escrow_info: Dict[str, EscrowInfo] = {}
        # Survives rollbacks so late callbacks of old attempts are recognized
        self.attempts: Dict[str, int] = {}

    # =========================================================================
    # Helpers
    # =========================================================================

    def _assert_owner(self, ctx: CallContext):
        if ctx.predecessor != self.owner:
            raise Unauthorized("Only owner can call this method")

    @staticmethod
    def _derive_escrow_id(role: SwapRole, order_id: str, factory_id: str) -> str:
        prefix = order_id[:ORDER_PREFIX_LEN].lower()
        if not _ID_PREFIX.match(prefix):
            raise InvalidParameters(
                f"Order id {order_id!r} cannot form an account id (prefix {prefix!r})")
        return f"{role.tag}-{prefix}.{factory_id}"

    def _required_deposit(self, params: SwapParameters) -> int:
        required = self.creation_fee + self.storage_reserve + params.safety_deposit
        if params.is_native:
            required += params.amount
        return required

    # =========================================================================
    # Creation saga
    # =========================================================================

    def create_escrow(self, ctx: CallContext, role, params) -> str:
        """
        Create an escrow for an order. Attach the required deposit.

        Returns:
            Deterministic escrow id (a reservation until the callback runs)

        Raises:
            TemplateNotConfigured, InvalidParameters, InsufficientDeposit,
            DuplicateOrder, EscrowIdCollision
        """
        if not self.escrow_template:
            raise TemplateNotConfigured("Escrow template not configured")

        role = SwapRole(role)
        if isinstance(params, dict):
            params = SwapParameters.from_dict(params)
        params = params.stamped(ctx.now)
        params.validate()

        fee = self.creation_fee
        required = self._required_deposit(params)
        if ctx.attached < required:
            raise InsufficientDeposit(
                f"Insufficient deposit: attached {ctx.attached}, required {required}")

        order_id = params.order_id
        if order_id in self.order_to_escrow:
            raise DuplicateOrder(f"Escrow already exists for order {order_id}")

        escrow_id = self._derive_escrow_id(role, order_id, ctx.current_account)
        if escrow_id in self.escrow_info:
            raise EscrowIdCollision(
                f"Escrow id {escrow_id} already reserved by order "
                f"{self.escrow_info[escrow_id].params.order_id}")

        attempt = self.attempts.get(escrow_id, 0) + 1
        self.attempts[escrow_id] = attempt

        self.order_to_escrow[order_id] = escrow_id
        self.escrow_info[escrow_id] = EscrowInfo(
            role=role,
            params=params,
            creator=ctx.predecessor,
            created_at=ctx.now,
            attempt=attempt,
        )

        (ctx.promise(escrow_id)
            .create_account()
            .transfer(ctx.attached - fee)
            .deploy(self.escrow_template)
            .function_call("initialize", role, params)
            .then(ctx.current_account, "on_creation_complete",
                  escrow_id, order_id, fee, attempt))

        log.info(f"Creating {role.value} escrow {escrow_id} for order {order_id} "
                 f"(attempt {attempt}, deposit {ctx.attached}, fee {fee})")
        return escrow_id

    def on_creation_complete(self, ctx: CallContext, escrow_id: str, order_id: str,
                             fee: int, attempt: int) -> CreationStatus:
        """
        Commit or roll back one creation attempt.

        Duplicate or stale deliveries are no-ops returning the current status.
        """
        ctx.assert_private()

        info = self.escrow_info.get(escrow_id)
        if info is None or info.attempt != attempt:
            log.warning(f"Ignoring creation callback for {escrow_id} attempt {attempt}: "
                        f"no matching registry entry")
            return CreationStatus.ROLLED_BACK
        if info.status is not CreationStatus.PENDING:
            log.warning(f"Ignoring duplicate creation callback for {escrow_id} "
                        f"(status={info.status.value})")
            return info.status

        if ctx.promise_result is PromiseResult.SUCCESSFUL:
            info.status = CreationStatus.COMMITTED
            log.info(f"Escrow created successfully: {escrow_id}")

            if self.treasury and fee > 0:
                self._sweep_fee(ctx, fee)
            return CreationStatus.COMMITTED

        log.warning(f"Failed to create escrow {escrow_id}, rolling back order {order_id}")
        self.order_to_escrow.pop(order_id, None)
        del self.escrow_info[escrow_id]
        return CreationStatus.ROLLED_BACK

    def _sweep_fee(self, ctx: CallContext, fee: int):
        # Must not revert the commit; a short balance leaves the fee unswept
        if ctx.balance < fee:
            log.warning(f"Factory balance {ctx.balance} below creation fee {fee}, "
                        f"fee not transferred to treasury")
            return
        ctx.transfer(self.treasury, fee)
        log.info(f"Creation fee {fee} transferred to treasury: {self.treasury}")

    # =========================================================================
    # Admin
    # =========================================================================

    def set_fee(self, ctx: CallContext, fee: int):
        self._assert_owner(ctx)
        if not isinstance(fee, int) or fee < 0:
            raise InvalidParameters(f"Fee must be a non-negative integer, got {fee!r}")
        self.creation_fee = fee
        log.info(f"Creation fee updated to: {fee}")

    def set_treasury(self, ctx: CallContext, treasury: Optional[str]):
        self._assert_owner(ctx)
        self.treasury = treasury or None
        log.info(f"Treasury updated to: {self.treasury}")

    def set_escrow_template(self, ctx: CallContext, template: str):
        self._assert_owner(ctx)
        if not template:
            raise InvalidParameters("Template name is required")
        self.escrow_template = template
        log.info(f"Escrow template updated to: {template}")

    def rescue_funds(self, ctx: CallContext, amount: int, recipient: str):
        """Emergency withdrawal of factory-held value (owner only)."""
        self._assert_owner(ctx)
        if not recipient:
            raise InvalidParameters("Recipient is required")
        ctx.transfer(recipient, amount)
        log.warning(f"Factory funds rescued: {amount} -> {recipient}")

    # =========================================================================
    # Views
    # =========================================================================

    def get_escrow_for_order(self, ctx: CallContext, order_id: str) -> Optional[str]:
        return self.order_to_escrow.get(order_id)

    def get_escrow_info(self, ctx: CallContext, escrow_id: str) -> Optional[EscrowInfo]:
        info = self.escrow_info.get(escrow_id)
        return replace(info) if info else None

    def get_owner(self, ctx: CallContext) -> str:
        return self.owner

    def get_creation_fee(self, ctx: CallContext) -> int:
        return self.creation_fee

    def get_treasury(self, ctx: CallContext) -> Optional[str]:
        return self.treasury

    def get_escrow_template(self, ctx: CallContext) -> Optional[str]:
        return self.escrow_template

    def get_storage_reserve(self, ctx: CallContext) -> int:
        return self.storage_reserve

    def required_deposit(self, ctx: CallContext, role, params) -> int:
        if isinstance(params, dict):
            params = SwapParameters.from_dict(params)
        return self._required_deposit(params)

    def predict_escrow_id(self, ctx: CallContext, role, order_id: str) -> str:
        return self._derive_escrow_id(SwapRole(role), order_id, ctx.current_account)
