"""
Unix socket client that talks to a ledger node gateway using length-prefixed JSON frames.

Provides async request/response communication with automatic reconnection.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..codec.addresses import ContractAddress
from ..config import Config
from .client import FinalizationOutcome, InvokeOutcome
from .exceptions import (
    InvalidSocketResponseError,
    NodeRequestError,
    SocketConnectionError,
    SocketTimeoutError,
    UnmarshalError,
)
from .wire import (
    LENGTH_PREFIX,
    MAX_FRAME_SIZE,
    FinalizationResult,
    InvokeContractResult,
    RpcRequest,
    RpcResponse,
    join_len_prefix,
    marshal,
    unmarshal,
)


@dataclass
class SocketNodeClientOptions:
    """Socket node client configuration options."""

    config: Config
    reconnect_interval: float = 3.0
    request_timeout: float = 10.0
    connection_timeout: float = 5.0
    max_connect_attempts: Optional[int] = None


class SocketNodeClient:
    """
    Ledger node client over a Unix socket with automatic reconnection.

    Requests are matched to responses by id; every request has its own
    timeout. Connection problems surface as NetworkError subclasses.
    """

    def __init__(self, options: SocketNodeClientOptions):
        """Initialize socket client with configuration."""
        self.config = options.config
        self.logger = logging.getLogger("SocketNodeClient")
        self.socket_path = self.config.node_socket_path
        self.reconnect_interval = options.reconnect_interval
        self.request_timeout = options.request_timeout
        self.connection_timeout = options.connection_timeout
        self.max_connect_attempts = options.max_connect_attempts

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._listen_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._is_connected = False
        self._is_reconnecting = False
        self._is_closing = False
        self._message_id_counter = 1

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def start(self) -> None:
        """Connect to the node gateway and start listening for responses."""
        self._is_closing = False
        await self._connect_with_retry()
        self._listen_task = asyncio.create_task(self._listen_for_messages())
        self.logger.info("Socket node client started")

    async def close(self) -> None:
        """Close the socket connection gracefully."""
        self._is_closing = True
        self._is_connected = False

        for task in (self._reconnect_task, self._listen_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._fail_pending(SocketConnectionError("Socket client closed"))

        if self._writer:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError as err:
                self.logger.debug(f"Error while closing socket: {err}")
            self._writer = None

        self.logger.info("Socket node client closed")

    async def invoke_contract(
        self,
        contract: ContractAddress,
        method: str,
        parameter: Optional[bytes] = None,
        invoker: Optional[str] = None,
        energy: int = 30000,
    ) -> InvokeOutcome:
        """Dry-run a receive function on the node."""
        params: Dict[str, Any] = {
            "contract": contract.to_dict(),
            "method": method,
            "energy": energy,
        }
        if parameter is not None:
            params["parameter"] = parameter.hex()
        if invoker is not None:
            params["invoker"] = invoker

        result = await self._request("invokeContract", params)
        try:
            return InvokeContractResult.model_validate(result).to_outcome()
        except ValueError as err:
            raise UnmarshalError(err) from err

    async def get_embedded_schema(self, module_ref: str) -> bytes:
        """Fetch the schema embedded in a deployed module."""
        result = await self._request("getEmbeddedSchema", {"moduleRef": module_ref})
        schema = result.get("schema")
        if not isinstance(schema, str):
            raise InvalidSocketResponseError("getEmbeddedSchema", str(result))
        try:
            return bytes.fromhex(schema)
        except ValueError as err:
            raise UnmarshalError(err) from err

    async def submit_transaction(self, payload: bytes) -> str:
        """Submit a signed account transaction, returning its hash."""
        result = await self._request("sendAccountTransaction", {"payload": payload.hex()})
        transaction_hash = result.get("transactionHash")
        if not isinstance(transaction_hash, str):
            raise InvalidSocketResponseError("sendAccountTransaction", str(result))
        self.logger.info(f"Submitted transaction {transaction_hash}")
        return transaction_hash

    async def wait_for_finalization(
        self, transaction_hash: str, timeout: float
    ) -> FinalizationOutcome:
        """
        Wait until a transaction is finalized.

        The node reports ``status == "timeout"`` when the transaction is not
        finalized within ``timeout``; the local wait allows one extra request
        timeout on top of that.
        """
        result = await self._request(
            "waitForFinalization",
            {"transactionHash": transaction_hash, "timeout": timeout},
            timeout=timeout + self.request_timeout,
        )
        try:
            return FinalizationResult.model_validate(result).to_outcome(transaction_hash)
        except ValueError as err:
            raise UnmarshalError(err) from err

    async def _request(
        self, method: str, params: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Send a request frame and wait for the matching response."""
        timeout = self.request_timeout if timeout is None else timeout
        message_id = self._get_next_message_id()

        # Create future before sending to avoid racing the response
        future: asyncio.Future[RpcResponse] = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future

        try:
            self.logger.debug(f"0x{message_id:x}: {method}")
            await self._send_message(RpcRequest(id=message_id, method=method, params=params))

            response = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as err:
            self.logger.error(f"{method} request 0x{message_id:x} timed out")
            raise SocketTimeoutError(f"{method} request", timeout) from err
        finally:
            self._pending.pop(message_id, None)
            if not future.done():
                future.cancel()

        if response.error is not None:
            raise NodeRequestError(method, response.error.code, response.error.msg)
        if response.result is None:
            raise InvalidSocketResponseError(method)
        return response.result

    async def _connect_with_retry(self) -> None:
        """Connect to Unix socket with retry logic."""
        if self._is_reconnecting:
            return

        self._is_reconnecting = True
        attempts = 0
        try:
            while not self._is_connected and not self._is_closing:
                attempts += 1
                try:
                    await self._attempt_connection()
                    return
                except SocketConnectionError as err:
                    self.logger.warning(f"Error connecting to node socket: {err.msg}")
                except SocketTimeoutError as err:
                    self.logger.warning(f"Error connecting to node socket: {err.msg}")

                if self.max_connect_attempts is not None and attempts >= self.max_connect_attempts:
                    raise SocketConnectionError(
                        f"Could not connect to {self.socket_path} after {attempts} attempt(s)"
                    )
                await asyncio.sleep(self.reconnect_interval)
        finally:
            self._is_reconnecting = False

    async def _attempt_connection(self) -> None:
        """Attempt a single connection with proper error handling."""
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_unix_connection(self.socket_path),
                timeout=self.connection_timeout,
            )

            self._is_connected = True
            self.logger.info(f"Connection established to {self.socket_path}")

        except asyncio.TimeoutError as err:
            self._is_connected = False
            raise SocketTimeoutError("Connection attempt", self.connection_timeout) from err
        except OSError as err:
            self._is_connected = False
            raise SocketConnectionError(f"Connection failed: {err}") from err

    async def _listen_for_messages(self) -> None:
        """Listen for response frames from the node gateway."""
        if not self._reader:
            raise SocketConnectionError("No reader available for listening")

        try:
            while self._is_connected:
                try:
                    # Read length prefix (4 bytes, big-endian) with timeout
                    length_data = await asyncio.wait_for(
                        self._reader.readexactly(LENGTH_PREFIX.size),
                        timeout=self.request_timeout,
                    )
                except asyncio.TimeoutError:
                    # Idle connection, keep listening
                    continue

                (message_length,) = LENGTH_PREFIX.unpack(length_data)
                if message_length > MAX_FRAME_SIZE:
                    self.logger.error(f"Frame of {message_length} bytes exceeds limit")
                    break

                # Only the idle wait between frames is bounded
                message_data = await self._reader.readexactly(message_length)
                self._handle_inbound_message(message_data)

        except asyncio.IncompleteReadError:
            self.logger.info("Connection closed by node")
        except asyncio.CancelledError:
            self.logger.info("Message listening cancelled")
            raise
        except OSError as err:
            self.logger.error(f"Error reading from socket: {err}")
        finally:
            self._is_connected = False
            self._fail_pending(SocketConnectionError("Connection to node lost"))
            if not self._is_closing:
                self._reconnect_task = asyncio.create_task(self._reconnect())

    def _handle_inbound_message(self, message_data: bytes) -> None:
        """Resolve the pending request a response frame belongs to."""
        try:
            response = unmarshal(RpcResponse, message_data)
        except UnmarshalError as err:
            self.logger.error(f"Failed to handle inbound frame: {err.msg}")
            return

        future = self._pending.pop(response.id, None)
        if future is None:
            self.logger.debug(f"Dropping response for unknown id 0x{response.id:x}")
            return
        if not future.done():
            future.set_result(response)

    async def _reconnect(self) -> None:
        """Re-establish the connection after the node dropped it."""
        self.logger.info(f"Reconnecting in {self.reconnect_interval}s")
        await asyncio.sleep(self.reconnect_interval)
        try:
            await self._connect_with_retry()
        except SocketConnectionError as err:
            self.logger.error(f"Giving up on node connection: {err.msg}")
            return
        if self._is_connected:
            self._listen_task = asyncio.create_task(self._listen_for_messages())

    async def _send_message(self, message: RpcRequest) -> None:
        """Send a request frame with its length prefix."""
        if not self._writer or not self._is_connected:
            raise SocketConnectionError("Socket not connected")

        self._writer.write(join_len_prefix(marshal(message)))

        # Add timeout to drain operation to prevent blocking
        try:
            await asyncio.wait_for(self._writer.drain(), timeout=self.request_timeout)
        except asyncio.TimeoutError as err:
            self.logger.error("Message send timeout - connection may be blocked")
            self._is_connected = False
            raise SocketTimeoutError("Message send", self.request_timeout) from err
        except OSError as err:
            self._is_connected = False
            raise SocketConnectionError(f"Message send failed: {err}") from err

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    def _get_next_message_id(self) -> int:
        """Get next unique message ID."""
        current = self._message_id_counter
        self._message_id_counter += 1
        return current
