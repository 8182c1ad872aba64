"""Ledger node and wallet interfaces, plus the socket node client."""

from .client import (
    AccountTransactionType,
    FinalizationOutcome,
    InvokeOutcome,
    LedgerNodeClient,
    UpdateContractPayload,
    WalletCapability,
)
from .exceptions import (
    InvalidSocketResponseError,
    MarshalError,
    NodeRequestError,
    SocketConnectionError,
    SocketTimeoutError,
    UnmarshalError,
)
from .socket_client import SocketNodeClient, SocketNodeClientOptions

__all__ = [
    "AccountTransactionType",
    "FinalizationOutcome",
    "InvokeOutcome",
    "LedgerNodeClient",
    "UpdateContractPayload",
    "WalletCapability",
    "InvalidSocketResponseError",
    "MarshalError",
    "NodeRequestError",
    "SocketConnectionError",
    "SocketTimeoutError",
    "UnmarshalError",
    "SocketNodeClient",
    "SocketNodeClientOptions",
]
