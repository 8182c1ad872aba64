"""End-to-end staking operations against the in-memory ledger."""

import pytest

from staking_client.core.types import StepStatus, UnbondingEntry
from staking_client.exceptions import (
    InvalidAmountError,
    PartialFailureError,
    RevertReason,
    TransactionRejectedError,
    TransactionTimedOutError,
    UserRejectedError,
)

from .conftest import ADMIN, ALICE, DAY, START_TIME


def first_hash(n=1):
    return f"{n:064x}"


class TestStake:
    @pytest.mark.asyncio
    async def test_stake_creates_position(self, staking, store, ledger, contract):
        await staking.stake(ALICE, 100)

        position = await store.refresh_staker_position(ALICE, contract)

        assert position.amount == 100
        assert position.unbonding == ()
        assert position.last_update_timestamp == START_TIME

    @pytest.mark.asyncio
    async def test_stake_is_a_single_token_transfer(self, staking, wallet, config):
        await staking.stake(ALICE, 100)

        assert [payload.receive_name for payload in wallet.sent] == [
            f"{config.token_contract_name}.transfer"
        ]
        assert wallet.sent[0].address.index == config.token_contract_index

    @pytest.mark.parametrize("amount", [0, -5, "abc", True])
    @pytest.mark.asyncio
    async def test_invalid_amount_is_refused_before_signing(self, staking, wallet, amount):
        with pytest.raises(InvalidAmountError):
            await staking.stake(ALICE, amount)

        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_paused_contract(self, staking, ledger):
        ledger.paused = True

        with pytest.raises(TransactionRejectedError) as exc:
            await staking.stake(ALICE, 100)

        assert exc.value.reason is RevertReason.PAUSED

    @pytest.mark.asyncio
    async def test_declined_signature(self, staking, wallet, ledger):
        wallet.decline = True

        with pytest.raises(UserRejectedError):
            await staking.stake(ALICE, 100)

        assert ledger.stakes == {}


class TestUnstake:
    @pytest.mark.asyncio
    async def test_initiate_unstake_moves_amount_to_unbonding(self, staking, store, ledger, contract):
        await staking.stake(ALICE, 100)

        await staking.initiate_unstake(ALICE, 40)
        position = await store.refresh_staker_position(ALICE, contract)

        assert position.amount == 60
        assert position.unbonding == (
            UnbondingEntry(amount=40, unlock_timestamp=ledger.now + DAY),
        )

    @pytest.mark.asyncio
    async def test_unstake_more_than_staked(self, staking):
        await staking.stake(ALICE, 10)

        with pytest.raises(TransactionRejectedError) as exc:
            await staking.initiate_unstake(ALICE, 11)

        assert exc.value.reason is RevertReason.INVALID_AMOUNT

    @pytest.mark.asyncio
    async def test_unstake_without_stake(self, staking):
        with pytest.raises(TransactionRejectedError) as exc:
            await staking.initiate_unstake(ALICE, 1)

        assert exc.value.reason is RevertReason.NO_STAKE_FOUND

    @pytest.mark.asyncio
    async def test_complete_unstake_before_unlock(self, staking, ledger):
        await staking.stake(ALICE, 100)
        await staking.initiate_unstake(ALICE, 40)
        ledger.now += DAY - 1

        with pytest.raises(TransactionRejectedError) as exc:
            await staking.complete_unstake(ALICE)

        assert exc.value.reason is RevertReason.UNBONDING_NOT_ELAPSED

    @pytest.mark.asyncio
    async def test_complete_unstake_at_unlock_second(self, staking, store, ledger, contract):
        await staking.stake(ALICE, 100)
        await staking.initiate_unstake(ALICE, 40)
        position = await store.refresh_staker_position(ALICE, contract)
        unlock = position.unbonding[0].unlock_timestamp
        ledger.now = unlock

        assert position.claimable_amount(ledger.now) == 40
        await staking.complete_unstake(ALICE)

        position = await store.refresh_staker_position(ALICE, contract)
        assert position.unbonding == ()
        assert position.amount == 60

    @pytest.mark.asyncio
    async def test_complete_unstake_keeps_locked_entries(self, staking, store, ledger, contract):
        await staking.stake(ALICE, 100)
        await staking.initiate_unstake(ALICE, 10)
        ledger.now += DAY // 2
        await staking.initiate_unstake(ALICE, 20)
        ledger.now = START_TIME + DAY

        await staking.complete_unstake(ALICE)
        position = await store.refresh_staker_position(ALICE, contract)

        assert [entry.amount for entry in position.unbonding] == [20]


class TestRewards:
    @pytest.mark.asyncio
    async def test_claim_without_rewards(self, staking):
        await staking.stake(ALICE, 100)

        with pytest.raises(TransactionRejectedError) as exc:
            await staking.claim_rewards(ALICE)

        assert exc.value.reason is RevertReason.NO_REWARDS_AVAILABLE

    @pytest.mark.asyncio
    async def test_claim_resets_earned_rewards(self, staking, store, ledger, contract):
        await staking.stake(ALICE, 100)
        ledger.stakes[ALICE]["pending_rewards"] = 25

        await staking.claim_rewards(ALICE)

        assert await store.refresh_earned_rewards(ALICE, contract) == 0
        stats = await store.refresh_protocol_stats(contract)
        assert stats.total_rewards_paid == 25

    @pytest.mark.asyncio
    async def test_admin_funds_rewards_pool(self, staking, store, ledger, contract, wallet):
        await staking.fund_rewards(ADMIN, 500)

        stats = await store.refresh_protocol_stats(contract)
        assert stats.rewards_pool == 500
        assert ledger.received_tokens == 500
        assert [payload.receive_name.split(".")[1] for payload in wallet.sent] == [
            "transfer",
            "fundRewards",
        ]

    @pytest.mark.asyncio
    async def test_fund_rewards_second_step_fails(self, staking, ledger):
        ledger.fail_entrypoints["fundRewards"] = -16

        with pytest.raises(PartialFailureError) as exc:
            await staking.fund_rewards(ADMIN, 500)

        error = exc.value
        assert error.failed_step_index == 1
        assert error.reason is RevertReason.INSUFFICIENT_FUNDS
        assert error.completed_hashes == [first_hash(1)]
        # The transfer is finalized and not compensated
        assert ledger.received_tokens == 500
        assert ledger.rewards_pool == 0

    @pytest.mark.asyncio
    async def test_fund_rewards_by_non_admin(self, staking):
        with pytest.raises(PartialFailureError) as exc:
            await staking.fund_rewards(ALICE, 500)

        assert exc.value.failed_step_index == 1
        assert exc.value.reason is RevertReason.ONLY_ADMIN


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_timed_out_stake_shows_up_after_refresh(self, staking, store, ledger, contract):
        ledger.time_out.add(first_hash(1))

        with pytest.raises(TransactionTimedOutError) as exc:
            await staking.stake(ALICE, 100)

        assert exc.value.transaction_hash == first_hash(1)
        position = await store.refresh_staker_position(ALICE, contract)
        assert position.amount == 100

    @pytest.mark.asyncio
    async def test_fund_rewards_timeout_keeps_finalized_transfer(self, staking, ledger):
        ledger.time_out.add(first_hash(2))

        with pytest.raises(TransactionTimedOutError) as exc:
            await staking.fund_rewards(ADMIN, 500)

        assert exc.value.step_index == 1
        assert exc.value.transaction_hash == first_hash(2)
        assert exc.value.completed_hashes == [first_hash(1)]
        assert ledger.received_tokens == 500

    @pytest.mark.asyncio
    async def test_timed_out_step_is_recorded(self, staking, orchestrator, ledger):
        ledger.time_out.add(first_hash(1))
        steps = [staking._transfer_step(ALICE, 5, "stake")]

        with pytest.raises(TransactionTimedOutError):
            await orchestrator.execute(steps, ALICE, operation_id="op")

        assert orchestrator.pending_steps("op")[0].status is StepStatus.TIMED_OUT
