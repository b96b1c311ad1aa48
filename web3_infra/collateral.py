"""CollateralReader — on-chain USDC balance and allowance reads.

Read-only: every state change to the proxy wallet goes through the relay.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

import structlog
from web3 import AsyncWeb3

from core.errors import ChainUnavailableError
from web3_infra.contracts import ERC20_ABI, USDC_ADDRESS, USDC_DECIMALS

logger = structlog.get_logger("web3_infra.collateral")


class CollateralSource(Protocol):
    async def balance_of(self, owner: str) -> Decimal: ...

    async def allowance(self, owner: str, spender: str) -> Decimal: ...


class CollateralReader:
    """USDC reads against a Polygon RPC endpoint.

    Parameters
    ----------
    w3:
        Connected ``AsyncWeb3`` instance.
    usdc_address:
        Collateral token.  Defaults to bridged USDC on Polygon.
    """

    def __init__(self, w3: AsyncWeb3, usdc_address: str = USDC_ADDRESS) -> None:
        self._w3 = w3
        self._usdc = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(usdc_address),
            abi=ERC20_ABI,
        )

    @classmethod
    def from_rpc_url(cls, rpc_url: str, timeout: float = 10.0) -> CollateralReader:
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        return cls(w3)

    async def balance_of(self, owner: str) -> Decimal:
        try:
            raw = await self._usdc.functions.balanceOf(
                AsyncWeb3.to_checksum_address(owner),
            ).call()
        except Exception as exc:
            logger.warning("collateral.balance_read_failed", owner=owner, error=str(exc))
            raise ChainUnavailableError(f"USDC balance read failed: {exc}") from exc
        return Decimal(int(raw)).scaleb(-USDC_DECIMALS)

    async def allowance(self, owner: str, spender: str) -> Decimal:
        try:
            raw = await self._usdc.functions.allowance(
                AsyncWeb3.to_checksum_address(owner),
                AsyncWeb3.to_checksum_address(spender),
            ).call()
        except Exception as exc:
            logger.warning(
                "collateral.allowance_read_failed",
                owner=owner,
                spender=spender,
                error=str(exc),
            )
            raise ChainUnavailableError(f"USDC allowance read failed: {exc}") from exc
        return Decimal(int(raw)).scaleb(-USDC_DECIMALS)
