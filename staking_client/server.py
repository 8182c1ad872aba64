"""
FastAPI HTTP server for the staking client.

Exposes the reconciled contract state over a small read API; reads are served
from the store's cache and refreshed on demand.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Config
from .core.contract import staking_contract_ref
from .core.store import StakeStateStore
from .core.types import EarnedRewards, ProtocolStats, StakerPosition
from .core.validation import current_timestamp, from_micro_units, seconds_until_unlock
from .exceptions import NetworkError, StaleDataError, StakingClientException
from .node.socket_client import SocketNodeClient


# Configure logging
logger = logging.getLogger("StakingServer")


# Response Models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    node_connected: bool
    contract: str
    uptime_seconds: float


class StakerResponse(BaseModel):
    """A staker position with the amounts derived at request time."""
    position: StakerPosition
    staked_display: str
    unbonding_total: int
    claimable_amount: int
    next_unlock_in: int
    as_of: int


def _status_for(exc: StakingClientException) -> int:
    if isinstance(exc, NetworkError):
        return 502
    if isinstance(exc, StaleDataError):
        return 409
    return 400


def create_app(
    store: StakeStateStore,
    config: Optional[Config] = None,
    node_client: Optional[SocketNodeClient] = None,
) -> FastAPI:
    """
    Build the HTTP app over a state store.

    Args:
        store: Store serving the cached contract state
        config: Client configuration, selects the staking contract
        node_client: Socket client whose connection state /health reports
    """
    config = config or store.config
    contract = staking_contract_ref(config)
    start_time = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        yield
        # Cleanup
        await store.close()

    app = FastAPI(
        title="Staking Client",
        description="Reconciled state of the staking contract",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StakingClientException)
    async def staking_error_handler(request: Request, exc: StakingClientException):
        """Handle staking client errors with proper HTTP status codes."""
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.url.path} failed: {exc.msg}")
        return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            node_connected=node_client is not None and node_client.is_connected,
            contract=f"{contract.name}{contract.address}",
            uptime_seconds=time.time() - start_time,
        )

    @app.get("/stats", response_model=ProtocolStats)
    async def stats():
        """Protocol aggregates, loaded on first request."""
        cached = store.protocol_stats(contract)
        if cached is not None:
            return cached
        return await store.refresh_protocol_stats(contract)

    @app.post("/refresh/stats", response_model=ProtocolStats)
    async def refresh_stats():
        return await store.refresh_protocol_stats(contract)

    @app.get("/stakers/{account}", response_model=StakerResponse)
    async def staker(account: str):
        """Staker position, loaded on first request."""
        position = store.staker_position(account, contract)
        if position is None:
            position = await store.refresh_staker_position(account, contract)
        return _staker_response(position, config)

    @app.post("/stakers/{account}/refresh", response_model=StakerResponse)
    async def refresh_staker(account: str):
        position = await store.refresh_staker_position(account, contract)
        await store.refresh_earned_rewards(account, contract)
        return _staker_response(position, config)

    @app.get("/stakers/{account}/rewards", response_model=EarnedRewards)
    async def rewards(account: str):
        earned = store.earned_rewards(account, contract)
        if earned is None:
            earned = await store.refresh_earned_rewards(account, contract)
        return EarnedRewards(account=account, amount=earned)

    return app


def _staker_response(position: StakerPosition, config: Config) -> StakerResponse:
    now = current_timestamp()
    locked = [entry for entry in position.unbonding if not entry.is_eligible(now)]
    return StakerResponse(
        position=position,
        staked_display=str(from_micro_units(position.amount, config.micro_units)),
        unbonding_total=position.unbonding_total,
        claimable_amount=position.claimable_amount(now),
        next_unlock_in=seconds_until_unlock(locked[0].unlock_timestamp, now) if locked else 0,
        as_of=now,
    )
