"""
Error taxonomy for the staking client.

Provides standardized error codes, user-facing categories and the mapping from
contract reject codes / revert text to domain reasons.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

DEFAULT_MODULE = "client"


class ErrorCode:
    """Error code constants for staking client errors."""

    NETWORK = 1
    SCHEMA_MISMATCH = 2
    DECODE = 3
    INVOKE_REVERT = 4
    USER_REJECTED = 5
    PARTIAL_FAILURE = 6
    TIMED_OUT = 7
    STALE_DATA = 8
    ENERGY_EXCEEDED = 9
    TRANSACTION_REJECTED = 10
    INVALID_ADDRESS = 11
    INVALID_AMOUNT = 12
    WALLET_NOT_CONNECTED = 13


class RevertReason(str, Enum):
    """Domain reasons a contract call can be reverted with."""

    ONLY_ADMIN = "OnlyAdmin"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    PAUSED = "Paused"
    ALREADY_SLASHED = "AlreadySlashed"
    UNBONDING_NOT_ELAPSED = "UnbondingNotElapsed"
    NO_STAKE_FOUND = "NoStakeFound"
    INVALID_AMOUNT = "InvalidAmount"
    NO_REWARDS_AVAILABLE = "NoRewardsAvailable"
    INSUFFICIENT_REWARDS_POOL = "InsufficientRewardsPool"
    UNAUTHORIZED = "Unauthorized"
    UNKNOWN = "Unknown"


# Reject codes of the staking contract's error enum, -(variant index + 1).
REJECT_CODE_REASONS: Dict[int, RevertReason] = {
    -2: RevertReason.UNAUTHORIZED,
    -3: RevertReason.INVALID_AMOUNT,
    -4: RevertReason.NO_STAKE_FOUND,
    -6: RevertReason.ONLY_ADMIN,
    -15: RevertReason.PAUSED,
    -16: RevertReason.INSUFFICIENT_FUNDS,
    -25: RevertReason.INVALID_AMOUNT,
    -26: RevertReason.UNBONDING_NOT_ELAPSED,
    -27: RevertReason.ALREADY_SLASHED,
    -28: RevertReason.INSUFFICIENT_REWARDS_POOL,
    -29: RevertReason.NO_REWARDS_AVAILABLE,
}

# Checked in order; the more specific substrings come first.
REVERT_TEXT_REASONS: List[tuple] = [
    ("OnlyAdmin", RevertReason.ONLY_ADMIN),
    ("InsufficientRewardsPool", RevertReason.INSUFFICIENT_REWARDS_POOL),
    ("InsufficientFunds", RevertReason.INSUFFICIENT_FUNDS),
    ("ContractPaused", RevertReason.PAUSED),
    ("Paused", RevertReason.PAUSED),
    ("AlreadySlashed", RevertReason.ALREADY_SLASHED),
    ("UnbondingPeriodNotMet", RevertReason.UNBONDING_NOT_ELAPSED),
    ("NoStakeFound", RevertReason.NO_STAKE_FOUND),
    ("InvalidUnstakeAmount", RevertReason.INVALID_AMOUNT),
    ("InvalidStakeAmount", RevertReason.INVALID_AMOUNT),
    ("NoRewardsAvailable", RevertReason.NO_REWARDS_AVAILABLE),
    ("UnAuthorized", RevertReason.UNAUTHORIZED),
]

REVERT_MESSAGES: Dict[RevertReason, str] = {
    RevertReason.ONLY_ADMIN: "Only admin can fund rewards",
    RevertReason.INSUFFICIENT_FUNDS: "Insufficient token balance",
    RevertReason.PAUSED: "The staking contract is paused",
    RevertReason.ALREADY_SLASHED: "This stake has been slashed",
    RevertReason.UNBONDING_NOT_ELAPSED: "Unbonding period has not elapsed yet",
    RevertReason.NO_STAKE_FOUND: "No stake found for this account",
    RevertReason.INVALID_AMOUNT: "The amount is not valid for this operation",
    RevertReason.NO_REWARDS_AVAILABLE: "No rewards available to claim",
    RevertReason.INSUFFICIENT_REWARDS_POOL: "The rewards pool cannot cover this claim",
    RevertReason.UNAUTHORIZED: "Account is not authorized for this operation",
    RevertReason.UNKNOWN: "The contract rejected the request",
}


def map_revert_reason(
    reject_code: Optional[int] = None, reason_text: Optional[str] = None
) -> RevertReason:
    """
    Derive a domain revert reason from an invocation or transaction outcome.

    The structured reject code wins; free-text reasons are only matched against
    the known substrings when no code maps.
    """
    if reject_code is not None and reject_code in REJECT_CODE_REASONS:
        return REJECT_CODE_REASONS[reject_code]

    if reason_text:
        for needle, reason in REVERT_TEXT_REASONS:
            if needle in reason_text:
                return reason

    return RevertReason.UNKNOWN


class StakingClientException(Exception):
    """
    Base exception for all staking client errors.

    Example:
        error = NetworkError("node unreachable")
        error.to_dict()  # {"code": 1, "module": "node", "msg": "...", ...}
    """

    category = "error"
    user_message = "Something went wrong"
    retryable = False

    def __init__(self, message: str, code: int = 1, module: str = DEFAULT_MODULE):
        super().__init__(message)
        self.code = code
        self.module = module
        self.msg = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dict for API responses and logging."""
        return {
            "code": self.code,
            "module": self.module,
            "msg": self.msg,
            "category": self.category,
            "userMessage": self.user_message,
        }


class NetworkError(StakingClientException):
    """Ledger node unreachable or the request could not be delivered."""

    category = "network"
    user_message = "The ledger node could not be reached"
    retryable = True

    def __init__(self, message: str = "ledger node unreachable", module: str = "node"):
        super().__init__(message, code=ErrorCode.NETWORK, module=module)


class SchemaMismatchError(StakingClientException):
    """Entrypoint missing from the schema or value shape does not match."""

    category = "schema_mismatch"
    user_message = "The contract interface does not match this client"

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.SCHEMA_MISMATCH, module="codec")


class DecodeError(StakingClientException):
    """Malformed bytes or schema version mismatch while decoding."""

    category = "decode"
    user_message = "The contract returned data this client cannot read"

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.DECODE, module="codec")


class InvokeRevertError(StakingClientException):
    """A read-only invocation was rejected by the contract."""

    category = "invoke_revert"

    def __init__(
        self,
        reason: RevertReason,
        reject_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.reason = reason
        self.reject_code = reject_code
        self.detail = detail
        message = f"invocation reverted: {reason.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, code=ErrorCode.INVOKE_REVERT, module="invoker")

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return REVERT_MESSAGES[self.reason]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        data["rejectCode"] = self.reject_code
        return data


class TransactionRejectedError(StakingClientException):
    """A submitted transaction finalized as rejected."""

    category = "transaction_rejected"

    def __init__(
        self,
        reason: RevertReason,
        step_index: int,
        transaction_hash: Optional[str] = None,
        reject_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.reason = reason
        self.step_index = step_index
        self.transaction_hash = transaction_hash
        self.reject_code = reject_code
        self.detail = detail
        message = f"step {step_index} rejected: {reason.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(
            message, code=ErrorCode.TRANSACTION_REJECTED, module="orchestrator"
        )

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return REVERT_MESSAGES[self.reason]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        data["stepIndex"] = self.step_index
        data["transactionHash"] = self.transaction_hash
        return data


class UserRejectedError(StakingClientException):
    """Signing was declined in the wallet."""

    category = "user_rejected"
    user_message = "Transaction cancelled"

    def __init__(self, message: str = "signing declined by user"):
        super().__init__(message, code=ErrorCode.USER_REJECTED, module="wallet")


class WalletNotConnectedError(StakingClientException):
    """No account is connected in the wallet."""

    category = "wallet_not_connected"
    user_message = "Please connect a wallet"

    def __init__(self) -> None:
        super().__init__(
            "wallet not connected", code=ErrorCode.WALLET_NOT_CONNECTED, module="wallet"
        )


class EnergyExceededError(StakingClientException):
    """A step needs more energy than the configured ceiling."""

    category = "energy_exceeded"
    user_message = "The transaction ran out of energy"

    def __init__(
        self,
        step_index: int,
        energy_limit: int,
        transaction_hash: Optional[str] = None,
    ):
        self.step_index = step_index
        self.energy_limit = energy_limit
        self.transaction_hash = transaction_hash
        super().__init__(
            f"step {step_index} exceeded energy limit {energy_limit}",
            code=ErrorCode.ENERGY_EXCEEDED,
            module="orchestrator",
        )


class PartialFailureError(StakingClientException):
    """
    A multi-step operation failed after earlier steps were finalized.

    Carries the failed step index and reason so the caller can re-issue only
    the failed step.
    """

    category = "partial_failure"
    user_message = "The operation was only partially completed"

    def __init__(
        self,
        failed_step_index: int,
        cause: StakingClientException,
        completed_hashes: Sequence[str] = (),
    ):
        self.failed_step_index = failed_step_index
        self.cause = cause
        self.completed_hashes = list(completed_hashes)
        self.reason: Union[RevertReason, str] = getattr(cause, "reason", cause.category)
        reason_text = self.reason.value if isinstance(self.reason, RevertReason) else self.reason
        super().__init__(
            f"step {failed_step_index} failed after "
            f"{len(self.completed_hashes)} finalized step(s): {reason_text}",
            code=ErrorCode.PARTIAL_FAILURE,
            module="orchestrator",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["failedStepIndex"] = self.failed_step_index
        data["completedHashes"] = self.completed_hashes
        data["cause"] = self.cause.to_dict()
        return data


class TransactionTimedOutError(StakingClientException):
    """
    The finalization wait was abandoned locally.

    The transaction is not retracted and may still finalize; callers must
    re-query state instead of assuming failure.
    """

    category = "timed_out"
    user_message = "Still waiting for the transaction, check again shortly"

    def __init__(
        self,
        step_index: int,
        transaction_hash: str,
        timeout: float,
        completed_hashes: Sequence[str] = (),
    ):
        self.step_index = step_index
        self.transaction_hash = transaction_hash
        self.timeout = timeout
        self.completed_hashes = list(completed_hashes)
        super().__init__(
            f"step {step_index} ({transaction_hash}) not finalized within {timeout}s",
            code=ErrorCode.TIMED_OUT,
            module="orchestrator",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["stepIndex"] = self.step_index
        data["transactionHash"] = self.transaction_hash
        data["completedHashes"] = self.completed_hashes
        return data


class StaleDataError(StakingClientException):
    """A refresh failed; the previously cached value is retained."""

    category = "stale_data"
    user_message = "Showing previously loaded data"

    def __init__(self, slot: str, cause: Exception, previous: Any = None):
        self.slot = slot
        self.cause = cause
        self.previous = previous
        super().__init__(
            f"refresh of {slot} failed: {cause}", code=ErrorCode.STALE_DATA, module="store"
        )


class InvalidAddressError(StakingClientException):
    """Invalid account or contract address."""

    category = "invalid_address"
    user_message = "The address is invalid"

    def __init__(self, address: Optional[Union[str, bytes]] = None):
        if isinstance(address, bytes):
            address = address.hex()
        message = f"Invalid address: {address}" if address else "Invalid address"
        super().__init__(message, code=ErrorCode.INVALID_ADDRESS, module="codec")


class InvalidAmountError(StakingClientException):
    """Invalid token amount."""

    category = "invalid_amount"
    user_message = "Amount must be greater than zero"

    def __init__(self, amount: Optional[Union[int, str]] = None):
        message = f"Invalid amount: {amount}" if amount is not None else "Invalid amount"
        super().__init__(message, code=ErrorCode.INVALID_AMOUNT, module="contract")
