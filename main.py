"""
Main entry point for the staking client service.

Connects to the ledger node gateway, serves the reconciled contract state over
HTTP and handles graceful shutdown.
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import uvicorn

from staking_client.codec import SchemaCodec
from staking_client.config import Config
from staking_client.core import ContractInvoker, StakeStateStore
from staking_client.exceptions import StakingClientException
from staking_client.node import SocketNodeClient, SocketNodeClientOptions
from staking_client.server import create_app


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class StakingApp:
    """Main service application with graceful shutdown handling."""

    def __init__(self, config: Config, host: str = "127.0.0.1", port: int = 8000) -> None:
        self.config = config
        self.host = host
        self.port = port
        self.node_client: Optional[SocketNodeClient] = None
        self.store: Optional[StakeStateStore] = None
        self._server: Optional[uvicorn.Server] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the service."""
        try:
            logger.info('Starting staking client')

            # Log configuration
            logger.info('Client configuration:')
            logger.info(f'  - Contract: {self.config.contract_name} <{self.config.contract_index},{self.config.contract_subindex}>')
            logger.info(f'  - Module: {self.config.module_ref}')
            logger.info(f'  - Node Socket: {self.config.node_socket_path}')

            self.node_client = SocketNodeClient(SocketNodeClientOptions(config=self.config))
            await self.node_client.start()

            codec = SchemaCodec(self.node_client, self.config.schema_version)
            invoker = ContractInvoker(
                self.node_client, codec, self.config.max_contract_execution_energy
            )
            self.store = StakeStateStore(invoker, codec, self.config)

            app = create_app(self.store, self.config, self.node_client)
            self._server = uvicorn.Server(
                uvicorn.Config(app, host=self.host, port=self.port, log_level="info")
            )
            server_task = asyncio.create_task(self._server.serve())

            logger.info(f'Serving on http://{self.host}:{self.port}')

            # Setup signal handlers for graceful shutdown
            self._setup_signal_handlers()

            # Keep the process alive until shutdown
            await self._shutdown_event.wait()

            self._server.should_exit = True
            await server_task

            # Perform graceful shutdown
            await self.shutdown()

        except (StakingClientException, OSError) as error:
            logger.error(f'Failed to start staking client: {error}')
            sys.exit(1)

    async def shutdown(self) -> None:
        """Shutdown the service gracefully."""
        logger.info('Received shutdown signal, closing staking client...')

        try:
            if self.store:
                await self.store.close()
            if self.node_client:
                await asyncio.wait_for(
                    self.node_client.close(),
                    timeout=10.0  # 10 second timeout
                )

            logger.info('Staking client shut down gracefully')

        except asyncio.TimeoutError:
            logger.error('Shutdown timeout exceeded')
            sys.exit(1)

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            logger.info('Received shutdown signal')
            self._shutdown_event.set()

        loop.add_signal_handler(signal.SIGINT, signal_handler)
        loop.add_signal_handler(signal.SIGTERM, signal_handler)


def load_config() -> Config:
    """Configuration from ``STAKING_CONFIG`` when set, defaults otherwise."""
    path = os.environ.get("STAKING_CONFIG")
    return Config.from_file(path) if path else Config()


async def main() -> None:
    """Main entry point for the service."""
    app = StakingApp(
        load_config(),
        host=os.environ.get("STAKING_HOST", "127.0.0.1"),
        port=int(os.environ.get("STAKING_PORT", "8000")),
    )
    await app.start()


def run() -> None:
    """Run the main application with asyncio."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info('Staking client interrupted by user')
    except ValueError as error:
        logger.error(f'Invalid configuration: {error}')
        sys.exit(1)


if __name__ == '__main__':
    run()
