"""
Staking Client

Client-side state synchronization and transaction orchestration for a
CIS-2 token staking contract.
"""

__version__ = "1.0.0"
__description__ = "Contract-state sync and transaction orchestration for a staking contract"

# Public API exports
from .config import Config
from .core import (
    ContractInvoker,
    StakeStateStore,
    StakingContract,
    TransactionOrchestrator,
)
from .codec import SchemaCodec
from .exceptions import StakingClientException
from .node import SocketNodeClient

__all__ = [
    "Config",
    "ContractInvoker",
    "StakeStateStore",
    "StakingContract",
    "TransactionOrchestrator",
    "SchemaCodec",
    "StakingClientException",
    "SocketNodeClient",
]
