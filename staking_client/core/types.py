"""
Data model for the staking client.

Contract read results are validated into pydantic models at decode time; the
transaction engine's own records are plain dataclasses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ..codec.addresses import ContractAddress
from ..exceptions import StakingClientException
from .validation import apr_percent, is_unlocked


class UnbondingEntry(BaseModel):
    """An amount that becomes withdrawable at ``unlock_timestamp`` (seconds)."""

    model_config = ConfigDict(frozen=True)

    amount: int = Field(ge=0)
    unlock_timestamp: int = Field(ge=0)

    def is_eligible(self, now: int) -> bool:
        """Eligible from the unlock second onwards, the boundary included."""
        return is_unlocked(self.unlock_timestamp, now)


class StakerPosition(BaseModel):
    """One account's stake as reported by ``getStakeInfo``."""

    model_config = ConfigDict(frozen=True)

    account: str
    amount: int = Field(ge=0)
    pending_rewards: int = Field(ge=0)
    slashed: bool = False
    last_update_timestamp: int = Field(default=0, ge=0)
    unbonding: Tuple[UnbondingEntry, ...] = ()

    @field_validator("unbonding")
    @classmethod
    def _sort_unbonding(cls, value: Tuple[UnbondingEntry, ...]) -> Tuple[UnbondingEntry, ...]:
        return tuple(sorted(value, key=lambda entry: entry.unlock_timestamp))

    @classmethod
    def from_stake_info(cls, account: str, info: Dict[str, Any]) -> "StakerPosition":
        """Build from a decoded ``StakeInfo`` return value."""
        return cls(
            account=account,
            amount=info["amount"],
            pending_rewards=info["pending_rewards"],
            slashed=info["slashed"],
            last_update_timestamp=info["timestamp"],
            unbonding=[
                UnbondingEntry(amount=entry["amount"], unlock_timestamp=entry["unlock_time"])
                for entry in info["unbonding"]
            ],
        )

    @property
    def unbonding_total(self) -> int:
        return sum(entry.amount for entry in self.unbonding)

    def eligible_unbonding(self, now: int) -> Tuple[UnbondingEntry, ...]:
        return tuple(entry for entry in self.unbonding if entry.is_eligible(now))

    def claimable_amount(self, now: int) -> int:
        """Amount ``completeUnstake`` would release at ``now``."""
        return sum(entry.amount for entry in self.eligible_unbonding(now))


class ProtocolStats(BaseModel):
    """Contract-wide aggregates as reported by ``view``."""

    model_config = ConfigDict(frozen=True)

    active_staker_count: int = Field(ge=0)
    total_staked: int = Field(ge=0)
    total_rewards_paid: int = Field(ge=0)
    paused: bool = False
    admin: Optional[str] = None
    apr: int = Field(default=0, ge=0)
    token_address: Optional[ContractAddress] = None
    rewards_pool: int = Field(default=0, ge=0)

    @computed_field  # type: ignore[misc]
    @property
    def apr_percent(self) -> float:
        return float(apr_percent(self.apr))

    @classmethod
    def from_view(cls, view: Dict[str, Any]) -> "ProtocolStats":
        """Build from a decoded ``ViewResult`` return value."""
        return cls(
            active_staker_count=view["total_participants"],
            total_staked=view["total_staked"],
            total_rewards_paid=view["total_rewards_paid"],
            paused=view["paused"],
            admin=view["admin"],
            apr=view["apr"],
            token_address=ContractAddress.from_value(view["token_address"]),
            rewards_pool=view["rewards_pool"],
        )


class EarnedRewards(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: str
    amount: int = Field(ge=0)


@dataclass(frozen=True)
class ContractRef:
    """A deployed contract instance together with its module."""

    address: ContractAddress
    name: str
    module_ref: str

    def receive_name(self, entrypoint: str) -> str:
        return f"{self.name}.{entrypoint}"


@dataclass(frozen=True)
class InvokeResult:
    return_value: bytes
    energy_used: int = 0


@dataclass(frozen=True)
class TransactionStep:
    """
    One signed contract update of a multi-step operation.

    ``parameter`` holds the already schema-encoded bytes. ``energy_limit``
    falls back to the configured ceiling when omitted.
    """

    target: ContractAddress
    contract_name: str
    entrypoint: str
    parameter: bytes = b""
    amount: int = 0
    energy_limit: Optional[int] = None

    @property
    def receive_name(self) -> str:
        return f"{self.contract_name}.{self.entrypoint}"


class StepStatus(str, Enum):
    BUILT = "built"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    FINALIZED = "finalized"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.FINALIZED, StepStatus.REJECTED, StepStatus.TIMED_OUT)


@dataclass
class PendingTransactionStep:
    """Progress record of a step inside one ``execute`` call."""

    index: int
    kind: str
    parameter: bytes
    status: StepStatus = StepStatus.BUILT
    transaction_hash: Optional[str] = None
    error: Optional[StakingClientException] = None


@dataclass(frozen=True)
class CommitEvent:
    """Passed to post-commit hooks after every step finalized successfully."""

    account: str
    transaction_hashes: Tuple[str, ...]
    steps: Tuple[TransactionStep, ...]
    operation_id: str = ""


@dataclass(frozen=True)
class StateChange:
    """
    Published to store subscribers.

    ``key`` is the account for per-account slots and the contract address
    for protocol stats. ``value`` is None when a slot was discarded.
    """

    slot: str
    key: str
    value: Any = None


@dataclass
class OperationRecord:
    """All step records of one ``execute`` call."""

    operation_id: str
    account: str
    steps: List[PendingTransactionStep] = field(default_factory=list)
    finished: bool = False
