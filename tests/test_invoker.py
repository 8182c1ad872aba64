"""Tests for read-only contract invocation and revert reason mapping."""

from unittest.mock import AsyncMock

import pytest

from staking_client.codec.addresses import ContractAddress
from staking_client.core.invoker import ContractInvoker
from staking_client.exceptions import (
    DecodeError,
    InvokeRevertError,
    NetworkError,
    RevertReason,
)
from staking_client.node.client import InvokeOutcome

from .conftest import ALICE

CONTRACT = ContractAddress(10416)


def make_invoker(outcome=None, side_effect=None):
    node = AsyncMock()
    node.invoke_contract = AsyncMock(return_value=outcome, side_effect=side_effect)
    return ContractInvoker(node, codec=None, max_energy=30000), node


class TestInvoke:
    @pytest.mark.asyncio
    async def test_success_returns_raw_value(self):
        invoker, node = make_invoker(InvokeOutcome(success=True, return_value=b"\x01", used_energy=812))

        result = await invoker.invoke(CONTRACT, "concordium_staking.view")

        assert result.return_value == b"\x01"
        assert result.energy_used == 812
        node.invoke_contract.assert_awaited_once_with(
            CONTRACT, "concordium_staking.view", parameter=None, invoker=None, energy=30000
        )

    @pytest.mark.asyncio
    async def test_explicit_energy_and_invoker(self):
        invoker, node = make_invoker(InvokeOutcome(success=True, return_value=b""))

        await invoker.invoke(CONTRACT, "c.f", parameter=b"\x00", invoker=ALICE, energy=5000)

        node.invoke_contract.assert_awaited_once_with(
            CONTRACT, "c.f", parameter=b"\x00", invoker=ALICE, energy=5000
        )

    @pytest.mark.parametrize(
        "reject_code,reason",
        [
            (-6, RevertReason.ONLY_ADMIN),
            (-15, RevertReason.PAUSED),
            (-16, RevertReason.INSUFFICIENT_FUNDS),
            (-26, RevertReason.UNBONDING_NOT_ELAPSED),
            (-27, RevertReason.ALREADY_SLASHED),
            (-4, RevertReason.NO_STAKE_FOUND),
            (-29, RevertReason.NO_REWARDS_AVAILABLE),
            (-999, RevertReason.UNKNOWN),
        ],
    )
    @pytest.mark.asyncio
    async def test_reject_code_maps_to_reason(self, reject_code, reason):
        invoker, _ = make_invoker(InvokeOutcome(success=False, reject_code=reject_code))

        with pytest.raises(InvokeRevertError) as exc:
            await invoker.invoke(CONTRACT, "c.f")

        assert exc.value.reason is reason
        assert exc.value.reject_code == reject_code

    @pytest.mark.asyncio
    async def test_free_text_reason_when_no_code_maps(self):
        invoker, _ = make_invoker(
            InvokeOutcome(success=False, reason="RejectReason: ContractPaused")
        )

        with pytest.raises(InvokeRevertError) as exc:
            await invoker.invoke(CONTRACT, "c.f")

        assert exc.value.reason is RevertReason.PAUSED

    @pytest.mark.asyncio
    async def test_structured_code_wins_over_text(self):
        invoker, _ = make_invoker(
            InvokeOutcome(success=False, reject_code=-6, reason="InsufficientFunds")
        )

        with pytest.raises(InvokeRevertError) as exc:
            await invoker.invoke(CONTRACT, "c.f")

        assert exc.value.reason is RevertReason.ONLY_ADMIN

    @pytest.mark.asyncio
    async def test_success_without_return_value(self):
        invoker, _ = make_invoker(InvokeOutcome(success=True, return_value=None))

        with pytest.raises(DecodeError):
            await invoker.invoke(CONTRACT, "c.f")

    @pytest.mark.asyncio
    async def test_connection_failure_is_network_error(self):
        invoker, _ = make_invoker(side_effect=ConnectionResetError("reset"))

        with pytest.raises(NetworkError):
            await invoker.invoke(CONTRACT, "c.f")

    @pytest.mark.asyncio
    async def test_never_retries(self):
        invoker, node = make_invoker(side_effect=ConnectionResetError("reset"))

        with pytest.raises(NetworkError):
            await invoker.invoke(CONTRACT, "c.f")

        assert node.invoke_contract.await_count == 1


class TestInvokeEntrypoint:
    @pytest.mark.asyncio
    async def test_reads_view_from_fake_ledger(self, invoker, codec, contract, ledger):
        schema = await codec.fetch_schema(contract.module_ref)

        view = await invoker.invoke_entrypoint(contract, "view", schema)

        assert view["admin"] == ledger.admin
        assert view["token_address"] == {"index": 7260, "subindex": 0}
        assert ledger.calls == ["concordium_staking.view"]

    @pytest.mark.asyncio
    async def test_encodes_account_parameter(self, invoker, codec, contract, ledger):
        ledger.stakes[ALICE] = {
            "amount": 5, "timestamp": 1, "unbonding": [], "slashed": False, "pending_rewards": 3,
        }
        schema = await codec.fetch_schema(contract.module_ref)

        earned = await invoker.invoke_entrypoint(contract, "getEarnedRewards", schema, ALICE)

        assert earned == 3
