"""
Ordered submission of multi-step contract updates.

Each step is signed and sent through the wallet, then awaited until
finalization before the next step starts. The first failure stops the
operation; nothing is retried automatically.
"""

import asyncio
import inspect
import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..config import Config
from ..exceptions import (
    EnergyExceededError,
    NetworkError,
    PartialFailureError,
    StakingClientException,
    TransactionRejectedError,
    TransactionTimedOutError,
    WalletNotConnectedError,
    map_revert_reason,
)
from ..node.client import (
    AccountTransactionType,
    FinalizationOutcome,
    LedgerNodeClient,
    UpdateContractPayload,
    WalletCapability,
)
from .types import (
    CommitEvent,
    OperationRecord,
    PendingTransactionStep,
    StepStatus,
    TransactionStep,
)

PostCommitHook = Callable[[CommitEvent], Union[Awaitable[None], None]]


class TransactionOrchestrator:
    """
    Runs an ordered list of transaction steps on behalf of one account.

    Per step: BUILT -> SIGNED -> SUBMITTED -> FINALIZED | REJECTED | TIMED_OUT.
    A failure of step 0 raises that step's error. A failure of a later step
    raises PartialFailureError naming the failed step and the hashes of the
    steps that already finalized. A finalization timeout raises
    TransactionTimedOutError at any step: the transaction may still land.
    """

    def __init__(
        self,
        node: LedgerNodeClient,
        wallet: WalletCapability,
        config: Optional[Config] = None,
    ):
        self.logger = logging.getLogger("TransactionOrchestrator")
        self.config = config or Config()
        self.node = node
        self.wallet = wallet

        self._hooks: List[PostCommitHook] = []
        self._operations: Dict[str, OperationRecord] = {}
        self._expiry_handles: Dict[str, asyncio.TimerHandle] = {}

    @property
    def max_energy(self) -> int:
        return self.config.max_contract_execution_energy

    def add_post_commit_hook(self, hook: PostCommitHook) -> Callable[[], None]:
        """Register a hook run once after every successful operation."""
        self._hooks.append(hook)

        def remove() -> None:
            if hook in self._hooks:
                self._hooks.remove(hook)

        return remove

    def pending_steps(self, operation_id: str) -> List[PendingTransactionStep]:
        """Step records of a running or recently finished operation."""
        record = self._operations.get(operation_id)
        return list(record.steps) if record else []

    async def execute(
        self,
        steps: Sequence[TransactionStep],
        account: Optional[str] = None,
        operation_id: Optional[str] = None,
    ) -> str:
        """
        Sign, submit and finalize ``steps`` strictly in order.

        Args:
            steps: Steps with pre-encoded parameters
            account: Sender, defaults to the wallet's connected account
            operation_id: Key for ``pending_steps``, generated when omitted

        Returns:
            Transaction hash of the final step

        Raises:
            WalletNotConnectedError: If no account is available
            EnergyExceededError: If a step exceeds the energy ceiling
            PartialFailureError: If a step after the first one fails
            TransactionTimedOutError: If a finalization wait expires
        """
        if not steps:
            raise ValueError("execute() needs at least one step")

        account = account or self.wallet.account
        if not account:
            raise WalletNotConnectedError()

        operation_id = operation_id or uuid.uuid4().hex
        record = OperationRecord(
            operation_id=operation_id,
            account=account,
            steps=[
                PendingTransactionStep(index=index, kind=step.entrypoint, parameter=step.parameter)
                for index, step in enumerate(steps)
            ],
        )
        self._operations[operation_id] = record

        completed: List[str] = []
        try:
            energies = self._check_energy(steps, record)

            for index, step in enumerate(steps):
                try:
                    transaction_hash = await self._run_step(
                        index, step, energies[index], record.steps[index], account
                    )
                except TransactionTimedOutError as err:
                    err.completed_hashes = list(completed)
                    raise
                except StakingClientException as err:
                    if index == 0:
                        raise
                    self.logger.error(
                        f"Operation {operation_id[:8]} failed at step {index} "
                        f"after {len(completed)} finalized step(s): {err.msg}"
                    )
                    raise PartialFailureError(index, err, completed) from err
                completed.append(transaction_hash)
        finally:
            record.finished = True
            self._schedule_expiry(operation_id)

        event = CommitEvent(
            account=account,
            transaction_hashes=tuple(completed),
            steps=tuple(steps),
            operation_id=operation_id,
        )
        await self._run_hooks(event)
        return completed[-1]

    async def close(self) -> None:
        """Drop all step records and cancel their expiry timers."""
        for handle in self._expiry_handles.values():
            handle.cancel()
        self._expiry_handles.clear()
        self._operations.clear()

    def _check_energy(
        self, steps: Sequence[TransactionStep], record: OperationRecord
    ) -> List[int]:
        energies = []
        for index, step in enumerate(steps):
            energy = step.energy_limit if step.energy_limit is not None else self.max_energy
            if energy > self.max_energy or energy <= 0:
                error = EnergyExceededError(index, energy)
                record.steps[index].status = StepStatus.REJECTED
                record.steps[index].error = error
                raise error
            energies.append(energy)
        return energies

    async def _run_step(
        self,
        index: int,
        step: TransactionStep,
        energy: int,
        pending: PendingTransactionStep,
        account: str,
    ) -> str:
        payload = UpdateContractPayload(
            address=step.target,
            receive_name=step.receive_name,
            max_contract_execution_energy=energy,
            amount=step.amount,
        )

        try:
            transaction_hash = await self.wallet.sign_and_send(
                account, AccountTransactionType.UPDATE, payload, step.parameter
            )
        except StakingClientException as err:
            self._fail(pending, StepStatus.REJECTED, err)
            raise
        except OSError as err:
            error = NetworkError(f"sending step {index} failed: {err}", module="wallet")
            self._fail(pending, StepStatus.REJECTED, error)
            raise error from err

        pending.status = StepStatus.SIGNED
        pending.transaction_hash = transaction_hash
        pending.status = StepStatus.SUBMITTED
        self.logger.info(f"Step {index} ({step.receive_name}) submitted: {transaction_hash}")

        outcome = await self._wait_for_finalization(index, transaction_hash, pending)

        if outcome.timed_out:
            error = TransactionTimedOutError(
                index, transaction_hash, self.config.finalization_timeout
            )
            self._fail(pending, StepStatus.TIMED_OUT, error)
            raise error

        if outcome.out_of_energy:
            error = EnergyExceededError(index, energy, transaction_hash)
            self._fail(pending, StepStatus.REJECTED, error)
            raise error

        if not outcome.success:
            error = TransactionRejectedError(
                map_revert_reason(outcome.reject_code, outcome.reason),
                index,
                transaction_hash=transaction_hash,
                reject_code=outcome.reject_code,
                detail=outcome.reason,
            )
            self._fail(pending, StepStatus.REJECTED, error)
            raise error

        pending.status = StepStatus.FINALIZED
        self.logger.info(f"Step {index} finalized: {transaction_hash}")
        return transaction_hash

    async def _wait_for_finalization(
        self, index: int, transaction_hash: str, pending: PendingTransactionStep
    ) -> FinalizationOutcome:
        """
        Await finalization within the configured timeout.

        Once submitted the outcome is unknown until finalization, so losing
        the node while waiting is reported as a timeout as well.
        """
        timeout = self.config.finalization_timeout
        try:
            return await asyncio.wait_for(
                self.node.wait_for_finalization(transaction_hash, timeout), timeout=timeout
            )
        except asyncio.TimeoutError as err:
            error = TransactionTimedOutError(index, transaction_hash, timeout)
            self._fail(pending, StepStatus.TIMED_OUT, error)
            raise error from err
        except (NetworkError, OSError) as err:
            self.logger.warning(f"Lost node while waiting for {transaction_hash}: {err}")
            error = TransactionTimedOutError(index, transaction_hash, timeout)
            self._fail(pending, StepStatus.TIMED_OUT, error)
            raise error from err

    def _fail(
        self,
        pending: PendingTransactionStep,
        status: StepStatus,
        error: StakingClientException,
    ) -> None:
        pending.status = status
        pending.error = error
        self.logger.warning(f"Step {pending.index} ({pending.kind}) {status.value}: {error.msg}")

    async def _run_hooks(self, event: CommitEvent) -> None:
        for hook in list(self._hooks):
            try:
                result = hook(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as err:
                # The operation is already committed on chain
                self.logger.error(f"Post-commit hook {hook!r} failed: {err}")

    def _schedule_expiry(self, operation_id: str) -> None:
        previous = self._expiry_handles.pop(operation_id, None)
        if previous:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._expiry_handles[operation_id] = loop.call_later(
            self.config.step_retention_delay, self._expire, operation_id
        )

    def _expire(self, operation_id: str) -> None:
        self._expiry_handles.pop(operation_id, None)
        self._operations.pop(operation_id, None)
