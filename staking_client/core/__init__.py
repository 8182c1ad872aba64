"""
Core staking client components.

Contract invocation, transaction orchestration, reconciled state and the
staking contract operations built on top of them.
"""

from .contract import StakingContract
from .invoker import ContractInvoker
from .orchestrator import TransactionOrchestrator
from .store import POSITION_SLOT, REWARDS_SLOT, STATS_SLOT, StakeStateStore
from .types import (
    CommitEvent,
    ContractRef,
    EarnedRewards,
    InvokeResult,
    PendingTransactionStep,
    ProtocolStats,
    StakerPosition,
    StateChange,
    StepStatus,
    TransactionStep,
    UnbondingEntry,
)

__all__ = [
    "StakingContract",
    "ContractInvoker",
    "TransactionOrchestrator",
    "StakeStateStore",
    "POSITION_SLOT",
    "REWARDS_SLOT",
    "STATS_SLOT",
    "CommitEvent",
    "ContractRef",
    "EarnedRewards",
    "InvokeResult",
    "PendingTransactionStep",
    "ProtocolStats",
    "StakerPosition",
    "StateChange",
    "StepStatus",
    "TransactionStep",
    "UnbondingEntry",
]
