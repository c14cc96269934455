"""
Core types and interfaces for crossescrow.
"""

import hashlib
import hmac
import re
import secrets
from enum import Enum
from dataclasses import dataclass, replace, asdict
from typing import Optional, Dict, Any, Tuple


class SwapRole(Enum):
    """Which side of the cross-ledger swap this ledger plays."""
    SOURCE = "source"            # maker withdraws, taker cancels/rescues
    DESTINATION = "destination"  # taker withdraws, maker cancels/rescues

    @property
    def tag(self) -> str:
        """Short tag used in derived escrow account ids."""
        return "src" if self is SwapRole.SOURCE else "dst"

    @property
    def open_withdrawal(self) -> bool:
        """Source escrows accept withdraw() from any caller (relayers)."""
        return self is SwapRole.SOURCE

    def withdraw_beneficiary(self, params: "SwapParameters") -> str:
        return params.maker if self is SwapRole.SOURCE else params.taker

    def withdraw_authority(self, params: "SwapParameters") -> str:
        # Nominal withdrawer; only enforced for DESTINATION.
        return self.withdraw_beneficiary(params)

    def cancel_authority(self, params: "SwapParameters") -> str:
        return params.taker if self is SwapRole.SOURCE else params.maker

    def refund_beneficiary(self, params: "SwapParameters") -> str:
        return self.cancel_authority(params)


class EscrowState(Enum):
    """Escrow custody states. ACTIVE is the only non-terminal state."""
    ACTIVE = "active"
    WITHDRAWN = "withdrawn"     # secret revealed, beneficiary paid
    CANCELLED = "cancelled"     # refunded after cancellation threshold
    RESCUED = "rescued"         # escape hatch after rescue delay

    @property
    def is_terminal(self) -> bool:
        return self is not EscrowState.ACTIVE


class CreationStatus(Enum):
    """Status of a factory registry entry during the creation saga."""
    PENDING = "pending"          # reserved, provisioning in flight
    COMMITTED = "committed"      # child initialized, fee swept
    ROLLED_BACK = "rolled_back"  # provisioning failed, entry deleted


class PayoutStatus(Enum):
    """Outcome of the transfer issued by a terminal escrow."""
    NONE = "none"
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


# =============================================================================
# Errors
# =============================================================================

class EscrowError(Exception):
    """Base class for escrow and factory failures."""
    kind = "EscrowError"


class NotActive(EscrowError):
    """Escrow already reached a terminal state."""
    kind = "NotActive"


class WindowExpired(EscrowError):
    """Withdrawal window has closed."""
    kind = "WindowExpired"


class WindowNotReached(EscrowError):
    """Cancellation threshold or rescue delay not reached yet."""
    kind = "WindowNotReached"


class BadSecret(EscrowError):
    """Secret does not hash to the hashlock."""
    kind = "BadSecret"


class Unauthorized(EscrowError):
    """Caller lacks permission for this operation."""
    kind = "Unauthorized"


class InsufficientDeposit(EscrowError):
    """Attached value does not cover principal, deposit, fee and reserve."""
    kind = "InsufficientDeposit"


class DuplicateOrder(EscrowError):
    """An escrow is already registered for this order."""
    kind = "DuplicateOrder"


class EscrowIdCollision(EscrowError):
    """Derived escrow id is already reserved by another order."""
    kind = "EscrowIdCollision"


class ProvisioningFailed(EscrowError):
    """Creation chain failed and the registry entry was rolled back."""
    kind = "ProvisioningFailed"


class TemplateNotConfigured(EscrowError):
    """Factory has no escrow template to deploy."""
    kind = "TemplateNotConfigured"


class InvalidParameters(EscrowError):
    """Swap parameters are malformed."""
    kind = "InvalidParameters"


class InvalidTimelocks(InvalidParameters):
    """Timelock durations are not strictly increasing."""
    kind = "InvalidTimelocks"


class NotInitialized(EscrowError):
    kind = "NotInitialized"


class AlreadyInitialized(EscrowError):
    kind = "AlreadyInitialized"


class PayoutNotRetryable(EscrowError):
    """Payout is not in a failed state."""
    kind = "PayoutNotRetryable"


# =============================================================================
# Timelocks & parameters
# =============================================================================

@dataclass(frozen=True)
class TimelockPolicy:
    """
    Time windows of one escrow, all measured in seconds from created_at.

    No ordering is checked at construction; call validate() before use.
    created_at=None means "stamp with ledger time at creation".
    """
    withdrawal_window: int
    cancellation_threshold: int
    rescue_delay: int
    created_at: Optional[int] = None

    def _base(self) -> int:
        if self.created_at is None:
            raise InvalidTimelocks("Timelock policy has no creation timestamp")
        return self.created_at

    def withdrawal_deadline(self) -> int:
        return self._base() + self.withdrawal_window

    def cancellation_start(self) -> int:
        return self._base() + self.cancellation_threshold

    def rescue_start(self) -> int:
        return self._base() + self.rescue_delay

    def can_withdraw(self, now: int) -> bool:
        return now <= self.withdrawal_deadline()

    def can_cancel(self, now: int) -> bool:
        return now >= self.cancellation_start()

    def can_rescue(self, now: int) -> bool:
        return now >= self.rescue_start()

    def stamped(self, now: int) -> "TimelockPolicy":
        """Return a copy with created_at filled in, if it was missing."""
        if self.created_at is not None:
            return self
        return replace(self, created_at=now)

    def validate(self):
        """
        Require withdrawal_window < cancellation_threshold < rescue_delay.

        Overlapping windows would let cancel() race an open withdrawal.

        Raises:
            InvalidTimelocks
        """
        durations = {
            "withdrawal_window": self.withdrawal_window,
            "cancellation_threshold": self.cancellation_threshold,
            "rescue_delay": self.rescue_delay,
        }
        for name, value in durations.items():
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise InvalidTimelocks(f"{name} must be a positive integer, got {value!r}")

        if self.created_at is not None and self.created_at < 0:
            raise InvalidTimelocks(f"created_at must be >= 0, got {self.created_at}")

        if not (self.withdrawal_window < self.cancellation_threshold < self.rescue_delay):
            raise InvalidTimelocks(
                f"Timelock cascade violated: withdrawal={self.withdrawal_window}s, "
                f"cancellation={self.cancellation_threshold}s, rescue={self.rescue_delay}s "
                f"(must be withdrawal < cancellation < rescue)"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimelockPolicy":
        return cls(
            withdrawal_window=data["withdrawal_window"],
            cancellation_threshold=data["cancellation_threshold"],
            rescue_delay=data["rescue_delay"],
            created_at=data.get("created_at"),
        )


@dataclass(frozen=True)
class SwapParameters:
    """Immutable description of one swap leg."""
    order_id: str           # unique key across the factory
    hashlock: str           # SHA256 of secret (hex, 64 chars)
    maker: str
    taker: str
    amount: int             # principal, in smallest units
    safety_deposit: int     # native units, paid out with the principal
    timelocks: TimelockPolicy
    token: Optional[str] = None  # None = native ledger asset

    @property
    def is_native(self) -> bool:
        return self.token is None

    def stamped(self, now: int) -> "SwapParameters":
        timelocks = self.timelocks.stamped(now)
        if timelocks is self.timelocks:
            return self
        return replace(self, timelocks=timelocks)

    def validate(self):
        """
        Check parameter invariants.

        Raises:
            InvalidParameters / InvalidTimelocks
        """
        if not self.order_id:
            raise InvalidParameters("order_id is required")
        if not is_valid_hashlock(self.hashlock):
            raise InvalidParameters(f"hashlock must be 64 hex chars, got {self.hashlock!r}")
        if not self.maker or not self.taker:
            raise InvalidParameters("maker and taker are required")
        for name in ("amount", "safety_deposit"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise InvalidParameters(f"{name} must be a non-negative integer, got {value!r}")
        if self.token is not None and not self.token:
            raise InvalidParameters("token must be None or a non-empty id")
        self.timelocks.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "hashlock": self.hashlock,
            "maker": self.maker,
            "taker": self.taker,
            "token": self.token,
            "amount": self.amount,
            "safety_deposit": self.safety_deposit,
            "timelocks": self.timelocks.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwapParameters":
        return cls(
            order_id=data["order_id"],
            hashlock=data["hashlock"],
            maker=data["maker"],
            taker=data["taker"],
            token=data.get("token"),
            amount=int(data["amount"]),
            safety_deposit=int(data.get("safety_deposit", 0)),
            timelocks=TimelockPolicy.from_dict(data["timelocks"]),
        )


@dataclass
class Payout:
    """Outbound transfer record of a terminal escrow."""
    recipient: str
    amount: int
    token: Optional[str] = None
    safety_deposit: int = 0
    status: PayoutStatus = PayoutStatus.NONE
    attempt: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient": self.recipient,
            "amount": self.amount,
            "token": self.token,
            "safety_deposit": self.safety_deposit,
            "status": self.status.value,
            "attempt": self.attempt,
        }


# =============================================================================
# HTLC Utilities
# =============================================================================

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")


def make_hashlock(secret: str) -> str:
    """SHA256 of the UTF-8 secret, as lowercase hex."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def is_valid_hashlock(value: str) -> bool:
    return isinstance(value, str) and bool(_HEX64.match(value))


def verify_secret(secret: str, hashlock: str) -> bool:
    """
    Verify that SHA256(secret) == hashlock.

    Compares the full digest; hashlock hex is case-insensitive.
    """
    if not isinstance(secret, str) or not is_valid_hashlock(hashlock):
        return False
    return hmac.compare_digest(make_hashlock(secret), hashlock.lower())


def generate_secret() -> Tuple[str, str]:
    """
    Generate a random secret and its hashlock.

    Returns:
        (secret, hashlock)
    """
    secret = secrets.token_hex(16)
    return secret, make_hashlock(secret)


def short_secret(secret: Optional[str]) -> str:
    """Truncated secret for log lines."""
    if not secret:
        return "-"
    return f"{secret[:8]}..."


# =============================================================================
# Constants
# =============================================================================

# Native asset has 24 decimals (1 unit = 10**24 base units)
NATIVE_DECIMALS = 24
ONE_NATIVE = 10 ** NATIVE_DECIMALS

# Value left in every escrow account to pay for its own storage
DEFAULT_STORAGE_RESERVE = ONE_NATIVE

# Derived escrow ids use the first chars of the order id
ORDER_PREFIX_LEN = 8

# Default windows (seconds)
DEFAULT_WITHDRAWAL_WINDOW = 3600        # 1h
DEFAULT_CANCELLATION_THRESHOLD = 7200   # 2h
DEFAULT_RESCUE_DELAY = 86400            # 24h


def default_timelocks(created_at: Optional[int] = None) -> TimelockPolicy:
    return TimelockPolicy(
        withdrawal_window=DEFAULT_WITHDRAWAL_WINDOW,
        cancellation_threshold=DEFAULT_CANCELLATION_THRESHOLD,
        rescue_delay=DEFAULT_RESCUE_DELAY,
        created_at=created_at,
    )
