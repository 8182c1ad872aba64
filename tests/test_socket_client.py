"""Tests for the length-prefixed Unix socket node client."""

import asyncio
import json
import shutil
import tempfile

import pytest
import pytest_asyncio

from staking_client.codec.addresses import ContractAddress
from staking_client.config import Config
from staking_client.exceptions import NetworkError
from staking_client.node.exceptions import (
    InvalidSocketResponseError,
    NodeRequestError,
    SocketConnectionError,
    SocketTimeoutError,
)
from staking_client.node.socket_client import SocketNodeClient, SocketNodeClientOptions
from staking_client.node.wire import LENGTH_PREFIX, join_len_prefix

from .conftest import ALICE


class FakeGateway:
    """Node gateway answering frames through a handler per method."""

    def __init__(self, socket_path):
        self.socket_path = socket_path
        self.handlers = {}
        self.body_delays = {}
        self.requests = []
        self.server = None

    async def start(self):
        self.server = await asyncio.start_unix_server(self._serve, path=self.socket_path)

    async def stop(self):
        self.server.close()
        await self.server.wait_closed()

    async def _serve(self, reader, writer):
        try:
            while True:
                header = await reader.readexactly(LENGTH_PREFIX.size)
                (length,) = LENGTH_PREFIX.unpack(header)
                request = json.loads(await reader.readexactly(length))
                self.requests.append(request)

                handler = self.handlers.get(request["method"])
                if handler is None:
                    continue
                reply = handler(request["params"])
                if reply is None:
                    continue
                reply["id"] = request["id"]
                frame = join_len_prefix(json.dumps(reply).encode("utf-8"))
                delay = self.body_delays.get(request["method"])
                if delay:
                    writer.write(frame[:LENGTH_PREFIX.size])
                    await writer.drain()
                    await asyncio.sleep(delay)
                    frame = frame[LENGTH_PREFIX.size:]
                writer.write(frame)
                await writer.drain()
        except asyncio.IncompleteReadError:
            pass
        finally:
            writer.close()


@pytest.fixture
def socket_dir():
    # Unix socket paths are length limited, so stay out of deep tmp_path trees
    path = tempfile.mkdtemp(prefix="node", dir="/tmp")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest_asyncio.fixture
async def gateway(socket_dir):
    server = FakeGateway(Config(data_dir_path=socket_dir).node_socket_path)
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def client(socket_dir, gateway):
    options = SocketNodeClientOptions(
        config=Config(data_dir_path=socket_dir),
        reconnect_interval=0.01,
        request_timeout=0.5,
        connection_timeout=0.5,
        max_connect_attempts=1,
    )
    node = SocketNodeClient(options)
    await node.start()
    yield node
    await node.close()


class TestRequests:
    @pytest.mark.asyncio
    async def test_invoke_contract(self, client, gateway):
        gateway.handlers["invokeContract"] = lambda params: {
            "result": {"success": True, "returnValue": "2a00", "usedEnergy": 900}
        }

        outcome = await client.invoke_contract(
            ContractAddress(10416), "concordium_staking.view", parameter=b"\x01", invoker=ALICE
        )

        assert outcome.success
        assert outcome.return_value == b"\x2a\x00"
        assert outcome.used_energy == 900
        params = gateway.requests[0]["params"]
        assert params["contract"] == {"index": 10416, "subindex": 0}
        assert params["parameter"] == "01"
        assert params["invoker"] == ALICE

    @pytest.mark.asyncio
    async def test_invoke_rejected(self, client, gateway):
        gateway.handlers["invokeContract"] = lambda params: {
            "result": {"success": False, "rejectCode": -6, "reason": "OnlyAdmin"}
        }

        outcome = await client.invoke_contract(ContractAddress(1), "c.f")

        assert not outcome.success
        assert outcome.reject_code == -6

    @pytest.mark.asyncio
    async def test_embedded_schema(self, client, gateway):
        gateway.handlers["getEmbeddedSchema"] = lambda params: {"result": {"schema": "ffff01"}}

        assert await client.get_embedded_schema("ab" * 32) == b"\xff\xff\x01"
        assert gateway.requests[0]["params"] == {"moduleRef": "ab" * 32}

    @pytest.mark.asyncio
    async def test_missing_schema_field(self, client, gateway):
        gateway.handlers["getEmbeddedSchema"] = lambda params: {"result": {}}

        with pytest.raises(InvalidSocketResponseError):
            await client.get_embedded_schema("ab" * 32)

    @pytest.mark.parametrize(
        "status,success,timed_out,out_of_energy",
        [
            ("success", True, False, False),
            ("rejected", False, False, False),
            ("timeout", False, True, False),
            ("outOfEnergy", False, False, True),
        ],
    )
    @pytest.mark.asyncio
    async def test_wait_for_finalization(self, client, gateway, status, success, timed_out, out_of_energy):
        gateway.handlers["waitForFinalization"] = lambda params: {
            "result": {"status": status, "rejectCode": None if success else -16}
        }

        outcome = await client.wait_for_finalization("aa" * 32, timeout=0.1)

        assert outcome.transaction_hash == "aa" * 32
        assert (outcome.success, outcome.timed_out, outcome.out_of_energy) == (
            success,
            timed_out,
            out_of_energy,
        )

    @pytest.mark.asyncio
    async def test_error_frame(self, client, gateway):
        gateway.handlers["sendAccountTransaction"] = lambda params: {
            "error": {"code": 3, "msg": "nonce too low"}
        }

        with pytest.raises(NodeRequestError) as exc:
            await client.submit_transaction(b"\x00")

        assert exc.value.node_code == 3
        assert "nonce too low" in exc.value.msg
        assert isinstance(exc.value, NetworkError)

    @pytest.mark.asyncio
    async def test_unanswered_request_times_out(self, client, gateway):
        with pytest.raises(SocketTimeoutError):
            await client.get_embedded_schema("ab" * 32)

    @pytest.mark.asyncio
    async def test_slow_frame_body_is_still_delivered(self, client, gateway):
        gateway.handlers["waitForFinalization"] = lambda params: {"result": {"status": "success"}}
        gateway.body_delays["waitForFinalization"] = client.request_timeout + 0.2

        outcome = await client.wait_for_finalization("aa" * 32, timeout=1.0)

        assert outcome.success
        assert client.is_connected

    @pytest.mark.asyncio
    async def test_concurrent_requests_matched_by_id(self, client, gateway):
        gateway.handlers["getEmbeddedSchema"] = lambda params: {
            "result": {"schema": params["moduleRef"]}
        }

        results = await asyncio.gather(
            client.get_embedded_schema("01"),
            client.get_embedded_schema("02"),
            client.get_embedded_schema("03"),
        )

        assert results == [b"\x01", b"\x02", b"\x03"]


class TestConnection:
    @pytest.mark.asyncio
    async def test_no_gateway(self, socket_dir):
        options = SocketNodeClientOptions(
            config=Config(data_dir_path=socket_dir),
            reconnect_interval=0.01,
            max_connect_attempts=2,
        )
        node = SocketNodeClient(options)

        with pytest.raises(SocketConnectionError):
            await node.start()
        assert not node.is_connected

    @pytest.mark.asyncio
    async def test_close_fails_pending_requests(self, client, gateway):
        request = asyncio.create_task(client.get_embedded_schema("ab" * 32))
        await asyncio.sleep(0.05)

        await client.close()

        with pytest.raises(SocketConnectionError):
            await request

    @pytest.mark.asyncio
    async def test_request_after_close(self, client):
        await client.close()

        with pytest.raises(SocketConnectionError):
            await client.get_embedded_schema("ab" * 32)
