"""
Reconciled view of the staking contract's state.

Every cached value comes from an authoritative on-chain read; nothing is
derived locally from submitted transactions. Each refresh replaces its slot
wholesale and notifies subscribers.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import ValidationError

from ..codec.addresses import ContractAddress, is_account_address
from ..codec.codec import SchemaCodec
from ..config import Config
from ..exceptions import (
    DecodeError,
    InvalidAddressError,
    SchemaMismatchError,
    StaleDataError,
)
from .contract import GET_EARNED_REWARDS, GET_STAKE_INFO, VIEW
from .invoker import ContractInvoker
from .orchestrator import TransactionOrchestrator
from .types import (
    CommitEvent,
    ContractRef,
    ProtocolStats,
    StakerPosition,
    StateChange,
)

POSITION_SLOT = "position"
STATS_SLOT = "stats"
REWARDS_SLOT = "rewards"

# Failures meaning the returned bytes could not be turned into a model
DECODE_FAILURES = (
    DecodeError,
    SchemaMismatchError,
    InvalidAddressError,
    ValidationError,
    KeyError,
    TypeError,
)

Listener = Callable[[StateChange], None]
CacheKey = Tuple[ContractAddress, str]


class StakeStateStore:
    """
    Cache of staker positions, protocol stats and earned rewards.

    Refreshes may run concurrently; the last one to finish wins. A refresh
    whose result cannot be decoded raises StaleDataError and leaves the
    previous value in place.
    """

    def __init__(
        self,
        invoker: ContractInvoker,
        codec: SchemaCodec,
        config: Optional[Config] = None,
    ):
        self.logger = logging.getLogger("StakeStateStore")
        self.config = config or Config()
        self.invoker = invoker
        self.codec = codec

        self._positions: Dict[CacheKey, StakerPosition] = {}
        self._stats: Dict[ContractAddress, ProtocolStats] = {}
        self._rewards: Dict[CacheKey, int] = {}
        self._loading: Dict[Tuple[str, str], int] = {}
        self._listeners: List[Listener] = []
        self._scheduled: Dict[str, Set[asyncio.Task]] = {}
        # Bumped by disconnect(); refreshes started under an older value are dropped
        self._epoch = 0
        self._generations: Dict[str, int] = {}

    # Accessors

    def staker_position(self, account: str, contract: ContractRef) -> Optional[StakerPosition]:
        return self._positions.get((contract.address, account))

    def protocol_stats(self, contract: ContractRef) -> Optional[ProtocolStats]:
        return self._stats.get(contract.address)

    def earned_rewards(self, account: str, contract: ContractRef) -> Optional[int]:
        return self._rewards.get((contract.address, account))

    def is_loading(self, slot: str, key: str) -> bool:
        """True while a refresh of ``slot`` for ``key`` is in flight."""
        return self._loading.get((slot, key), 0) > 0

    # Refreshes

    async def refresh_staker_position(self, account: str, contract: ContractRef) -> StakerPosition:
        """
        Re-read an account's stake through ``getStakeInfo``.

        Raises:
            InvalidAddressError: If ``account`` is not an account address
            NetworkError: If the node is unreachable
            InvokeRevertError: If the contract rejected the read
            StaleDataError: If the result could not be decoded
        """
        self._require_account(account)
        generation = self._generation(account)
        position = await self._refresh(
            POSITION_SLOT,
            account,
            lambda value: StakerPosition.from_stake_info(account, value),
            contract,
            GET_STAKE_INFO,
            account,
            self._positions.get((contract.address, account)),
        )
        if self._is_current(generation, POSITION_SLOT, account):
            self._positions[(contract.address, account)] = position
            self._publish(StateChange(POSITION_SLOT, account, position))
        return position

    async def refresh_protocol_stats(self, contract: ContractRef) -> ProtocolStats:
        """Re-read contract-wide aggregates through ``view``."""
        key = str(contract.address)
        generation = self._generation()
        stats = await self._refresh(
            STATS_SLOT,
            key,
            ProtocolStats.from_view,
            contract,
            VIEW,
            None,
            self._stats.get(contract.address),
        )
        if self._is_current(generation, STATS_SLOT, key):
            self._stats[contract.address] = stats
            self._publish(StateChange(STATS_SLOT, key, stats))
        return stats

    async def refresh_earned_rewards(self, account: str, contract: ContractRef) -> int:
        """Re-read an account's accrued rewards through ``getEarnedRewards``."""
        self._require_account(account)
        generation = self._generation(account)
        rewards = await self._refresh(
            REWARDS_SLOT,
            account,
            _as_amount,
            contract,
            GET_EARNED_REWARDS,
            account,
            self._rewards.get((contract.address, account)),
        )
        if self._is_current(generation, REWARDS_SLOT, account):
            self._rewards[(contract.address, account)] = rewards
            self._publish(StateChange(REWARDS_SLOT, account, rewards))
        return rewards

    async def refresh_account(self, account: str, contract: ContractRef) -> None:
        """Refresh all three slots concurrently, logging individual failures."""
        results = await asyncio.gather(
            self.refresh_staker_position(account, contract),
            self.refresh_protocol_stats(contract),
            self.refresh_earned_rewards(account, contract),
            return_exceptions=True,
        )
        for slot, result in zip((POSITION_SLOT, STATS_SLOT, REWARDS_SLOT), results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                self.logger.warning(f"Refresh of {slot} for {account[:8]} failed: {result}")

    async def _refresh(
        self,
        slot: str,
        key: str,
        build: Callable[[Any], Any],
        contract: ContractRef,
        entrypoint: str,
        parameter: Any,
        previous: Any,
    ) -> Any:
        with self._loading_flag(slot, key):
            try:
                schema = await self.codec.fetch_schema(contract.module_ref)
                value = await self.invoker.invoke_entrypoint(
                    contract, entrypoint, schema, parameter
                )
                return build(value)
            except DECODE_FAILURES as err:
                self.logger.error(f"Refresh of {slot} for {key} returned undecodable data: {err}")
                raise StaleDataError(slot, err, previous) from err

    # Post-commit refresh

    def attach(
        self, orchestrator: TransactionOrchestrator, contract: ContractRef
    ) -> Callable[[], None]:
        """
        Refresh the committing account's state after every successful
        operation, once the configured grace delay has passed.
        """

        def on_commit(event: CommitEvent) -> None:
            self.schedule_refresh(event.account, contract)

        return orchestrator.add_post_commit_hook(on_commit)

    def schedule_refresh(
        self, account: str, contract: ContractRef, delay: Optional[float] = None
    ) -> asyncio.Task:
        delay = self.config.refresh_grace_delay if delay is None else delay
        task = asyncio.create_task(self._refresh_later(delay, account, contract))
        tasks = self._scheduled.setdefault(account, set())
        tasks.add(task)
        task.add_done_callback(lambda done: self._forget_task(account, done))
        self.logger.debug(f"Refresh for {account[:8]} scheduled in {delay}s")
        return task

    async def _refresh_later(self, delay: float, account: str, contract: ContractRef) -> None:
        await asyncio.sleep(delay)
        await self.refresh_account(account, contract)

    # Subscriptions

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for state changes; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, change: StateChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as err:
                self.logger.error(f"State listener {listener!r} failed: {err}")

    # Lifecycle

    def disconnect(self, account: Optional[str] = None) -> None:
        """
        Discard cached state for one account, or everything when no account
        is given (wallet disconnected).

        Scheduled refreshes for the discarded accounts are cancelled, and
        refreshes already in flight return their value without caching it.
        """
        if account is None:
            self._epoch += 1
            accounts = {key[1] for key in self._positions} | {key[1] for key in self._rewards}
            self._positions.clear()
            self._rewards.clear()
            stats_keys = [str(address) for address in self._stats]
            self._stats.clear()
            self._cancel_scheduled(list(self._scheduled))
            for key in stats_keys:
                self._publish(StateChange(STATS_SLOT, key))
        else:
            self._generations[account] = self._generations.get(account, 0) + 1
            accounts = {account}
            for cache in (self._positions, self._rewards):
                for key in [key for key in cache if key[1] == account]:
                    del cache[key]
            self._cancel_scheduled([account])

        for discarded in sorted(accounts):
            self._publish(StateChange(POSITION_SLOT, discarded))
            self._publish(StateChange(REWARDS_SLOT, discarded))
        self.logger.info(f"Discarded cached state for {account or 'all accounts'}")

    async def close(self) -> None:
        """Cancel scheduled refreshes."""
        tasks = [task for tasks in self._scheduled.values() for task in tasks]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._scheduled.clear()

    def _cancel_scheduled(self, accounts: List[str]) -> None:
        for account in accounts:
            for task in self._scheduled.pop(account, ()):
                task.cancel()

    def _forget_task(self, account: str, task: asyncio.Task) -> None:
        tasks = self._scheduled.get(account)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._scheduled[account]

    def _generation(self, account: Optional[str] = None) -> Tuple[int, int]:
        return self._epoch, (self._generations.get(account, 0) if account else 0)

    def _is_current(self, generation: Tuple[int, int], slot: str, key: str) -> bool:
        if generation == self._generation(key if slot != STATS_SLOT else None):
            return True
        self.logger.debug(f"Dropped {slot} refresh for {key[:8]} finished after disconnect")
        return False

    @contextmanager
    def _loading_flag(self, slot: str, key: str) -> Iterator[None]:
        flag = (slot, key)
        self._loading[flag] = self._loading.get(flag, 0) + 1
        try:
            yield
        finally:
            remaining = self._loading[flag] - 1
            if remaining:
                self._loading[flag] = remaining
            else:
                del self._loading[flag]

    @staticmethod
    def _require_account(account: str) -> None:
        if not is_account_address(account):
            raise InvalidAddressError(account)


def _as_amount(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise TypeError(f"expected a non-negative integer, got {value!r}")
    return value
