"""
Client helpers for crossescrow.

Wrap raw ledger calls with typed methods:
- FactoryClient: create escrows, wait for the creation saga, query registry
- EscrowClient: withdraw / cancel / rescue one escrow, read its state
"""

import logging
from typing import Optional, Dict, Any

from .core import (
    SwapRole, EscrowState, CreationStatus, SwapParameters, Payout,
    ProvisioningFailed,
)
from .contracts import EscrowContract, EscrowFactory, FactoryConfig, EscrowInfo, ESCROW_TEMPLATE
from .ledger.host import InMemoryLedger

log = logging.getLogger(__name__)


def deploy_factory(ledger: InMemoryLedger, factory_id: str,
                   config: FactoryConfig) -> "FactoryClient":
    """
    Register the escrow template on a ledger and deploy a factory.

    The factory uses ESCROW_TEMPLATE unless config names another one.
    """
    ledger.register_template(ESCROW_TEMPLATE, EscrowContract)
    if config.escrow_template is None:
        config.escrow_template = ESCROW_TEMPLATE
    ledger.deploy(factory_id, EscrowFactory(config))
    return FactoryClient(ledger, factory_id)


class FactoryClient:
    """Typed access to an EscrowFactory deployed on a ledger."""

    def __init__(self, ledger: InMemoryLedger, factory_id: str):
        self.ledger = ledger
        self.factory_id = factory_id

    def required_deposit(self, role: SwapRole, params: SwapParameters) -> int:
        return self.ledger.view(self.factory_id, "required_deposit", role, params)

    def predict_escrow_id(self, role: SwapRole, order_id: str) -> str:
        return self.ledger.view(self.factory_id, "predict_escrow_id", role, order_id)

    def create_escrow(self, caller: str, role: SwapRole, params: SwapParameters,
                      deposit: Optional[int] = None) -> str:
        """
        Submit create_escrow. The escrow is only a reservation until
        wait_for_escrow() (or run_pending()) completes the saga.

        Args:
            deposit: Attached value (default: exact required deposit)
        """
        if deposit is None:
            deposit = self.required_deposit(role, params)
        escrow_id = self.ledger.call(caller, self.factory_id, "create_escrow",
                                     role, params, attached=deposit)
        log.info(f"Escrow {escrow_id} requested by {caller} for order {params.order_id}")
        return escrow_id

    def wait_for_escrow(self, escrow_id: str) -> EscrowInfo:
        """
        Drive pending steps until the creation saga resolves.

        Raises:
            ProvisioningFailed: the attempt was rolled back
        """
        self.ledger.run_pending()
        info = self.get_escrow_info(escrow_id)
        if info is None:
            raise ProvisioningFailed(f"Provisioning of {escrow_id} failed, registry rolled back")
        if info.status is not CreationStatus.COMMITTED:
            raise ProvisioningFailed(
                f"Provisioning of {escrow_id} unresolved (status={info.status.value})")
        return info

    def create_and_wait(self, caller: str, role: SwapRole, params: SwapParameters,
                        deposit: Optional[int] = None) -> "EscrowClient":
        escrow_id = self.create_escrow(caller, role, params, deposit)
        self.wait_for_escrow(escrow_id)
        return EscrowClient(self.ledger, escrow_id)

    def get_escrow_for_order(self, order_id: str) -> Optional[str]:
        return self.ledger.view(self.factory_id, "get_escrow_for_order", order_id)

    def get_escrow_info(self, escrow_id: str) -> Optional[EscrowInfo]:
        return self.ledger.view(self.factory_id, "get_escrow_info", escrow_id)

    def settings(self) -> Dict[str, Any]:
        view = self.ledger.view
        return {
            "factory_id": self.factory_id,
            "owner": view(self.factory_id, "get_owner"),
            "creation_fee": view(self.factory_id, "get_creation_fee"),
            "treasury": view(self.factory_id, "get_treasury"),
            "escrow_template": view(self.factory_id, "get_escrow_template"),
            "storage_reserve": view(self.factory_id, "get_storage_reserve"),
            "balance": self.ledger.balance_of(self.factory_id),
        }


class EscrowClient:
    """Typed access to one EscrowContract."""

    def __init__(self, ledger: InMemoryLedger, escrow_id: str):
        self.ledger = ledger
        self.escrow_id = escrow_id

    def withdraw(self, caller: str, secret: str) -> Dict[str, Any]:
        return self.ledger.call(caller, self.escrow_id, "withdraw", secret)

    def cancel(self, caller: str) -> Dict[str, Any]:
        return self.ledger.call(caller, self.escrow_id, "cancel")

    def rescue(self, caller: str, recipient: str) -> Dict[str, Any]:
        return self.ledger.call(caller, self.escrow_id, "rescue", recipient)

    def retry_payout(self, caller: str) -> Dict[str, Any]:
        return self.ledger.call(caller, self.escrow_id, "retry_payout")

    @property
    def state(self) -> EscrowState:
        return self.ledger.view(self.escrow_id, "get_state")

    @property
    def revealed_secret(self) -> Optional[str]:
        return self.ledger.view(self.escrow_id, "get_revealed_secret")

    @property
    def parameters(self) -> SwapParameters:
        return self.ledger.view(self.escrow_id, "get_parameters")

    @property
    def payout(self) -> Optional[Payout]:
        return self.ledger.view(self.escrow_id, "get_payout")

    def can_withdraw(self) -> bool:
        return self.ledger.view(self.escrow_id, "can_withdraw")

    def can_cancel(self) -> bool:
        return self.ledger.view(self.escrow_id, "can_cancel")

    def can_rescue(self) -> bool:
        return self.ledger.view(self.escrow_id, "can_rescue")

    def summary(self) -> Dict[str, Any]:
        return self.ledger.view(self.escrow_id, "get_summary")
