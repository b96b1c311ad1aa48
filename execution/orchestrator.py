"""TradeOrchestrator — single entry point for a user trade.

``execute_trade`` checks preconditions in order and stops at the first
failure:

1. venue configured
2. proxy wallet deployed (Polymarket; re-checked unless deployed or busy,
   never auto-deployed here)
3. balance covers a buy
4. allowance covers a Polymarket buy, with at most one auto-approval
5. build, sign and submit

Every ``TradeError`` comes back inside the ``TradeResult``; anything else is
a bug and propagates.
"""

from __future__ import annotations

from decimal import Decimal

import structlog

from core.errors import (
    ConfigurationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    ProxyNotDeployedError,
    RelayerRejectedError,
    RelayTimeoutError,
    RelayTransactionFailedError,
    TradeError,
)
from data.kalshi_client import KalshiClient
from execution.order_builder import OrderBuilder
from models.market import Market, Outcome
from models.order import OrderLifetime, Side, TradeResult, Venue
from models.proxy_wallet import WalletState
from monitoring.metrics import MetricsRegistry
from relayer.proxy_wallet import ProxyWalletManager
from web3_infra.contracts import approval_target

logger = structlog.get_logger("execution.orchestrator")

# States that are not re-checked against the relay before a trade.
_SETTLED_OR_BUSY = frozenset({WalletState.DEPLOYED, WalletState.CHECKING, WalletState.DEPLOYING})


class TradeOrchestrator:
    """Runs precondition checks and delegates to the ``OrderBuilder``.

    Parameters
    ----------
    builder:
        Order builder wired with the configured venue clients.
    wallets:
        Proxy-wallet manager; ``None`` leaves Polymarket unconfigured.
    kalshi:
        Kalshi client for balance checks; ``None`` leaves Kalshi
        unconfigured.
    owner:
        Default EOA owning the proxy wallet.
    """

    def __init__(
        self,
        builder: OrderBuilder,
        wallets: ProxyWalletManager | None = None,
        kalshi: KalshiClient | None = None,
        owner: str | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._builder = builder
        self._wallets = wallets
        self._kalshi = kalshi
        self._owner = owner
        self._metrics = metrics

    def venue_status(self) -> dict[str, bool]:
        """Which venues this orchestrator can trade on."""
        return {
            Venue.KALSHI.value: self._kalshi is not None,
            Venue.POLYMARKET.value: self._wallets is not None and self._owner is not None,
        }

    # ── Entry point ──────────────────────────────────────────────

    async def execute_trade(
        self,
        market: Market,
        outcome: Outcome,
        amount: Decimal,
        side: Side,
        owner: str | None = None,
        lifetime: OrderLifetime = OrderLifetime.GTC,
        limit_price: Decimal | None = None,
    ) -> TradeResult:
        """Execute one trade and report the outcome.

        Returns
        -------
        TradeResult
            ``success=True`` with the venue order id, or ``success=False``
            with exactly one typed ``error``.
        """
        log = logger.bind(
            venue=market.venue.value,
            market=market.platform_id,
            outcome=outcome.name,
            side=side.value,
            amount=str(amount),
        )
        try:
            if market.venue is Venue.KALSHI:
                result = await self._execute_kalshi(market, outcome, amount, side, limit_price)
            else:
                result = await self._execute_polymarket(market, outcome, amount, side, owner, lifetime)
        except TradeError as exc:
            log.warning("orchestrator.trade_failed", code=exc.code, error=exc.message)
            if self._metrics:
                self._metrics.record_trade(market.venue.value, exc.code)
            return TradeResult.failed(market.venue, exc)

        log.info("orchestrator.trade_succeeded", order_id=result.order_id, status=result.status)
        if self._metrics:
            self._metrics.record_trade(market.venue.value, "success")
        return result

    # ── Kalshi ───────────────────────────────────────────────────

    async def _execute_kalshi(
        self,
        market: Market,
        outcome: Outcome,
        amount: Decimal,
        side: Side,
        limit_price: Decimal | None,
    ) -> TradeResult:
        if self._kalshi is None:
            raise ConfigurationError("Kalshi API credentials are not configured", venue="kalshi")
        if side is Side.BUY:
            balance = await self._kalshi.get_balance()
            if balance < amount:
                raise InsufficientBalanceError(
                    f"Kalshi balance ${balance} is below ${amount}",
                    balance=balance,
                    required=amount,
                )
        return await self._builder.build_and_submit(
            market, outcome, side, amount, limit_price=limit_price
        )

    # ── Polymarket ───────────────────────────────────────────────

    async def _execute_polymarket(
        self,
        market: Market,
        outcome: Outcome,
        amount: Decimal,
        side: Side,
        owner: str | None,
        lifetime: OrderLifetime,
    ) -> TradeResult:
        owner = owner or self._owner
        if self._wallets is None or owner is None:
            raise ConfigurationError("Polymarket trading is not configured", venue="polymarket")

        wallet = self._wallets.record(owner)
        if wallet.state not in _SETTLED_OR_BUSY:
            wallet = await self._wallets.check_status(owner)
        if not wallet.is_deployed:
            raise ProxyNotDeployedError(
                "Enable trading first: the proxy wallet is not deployed",
                owner=owner,
                state=wallet.state.value,
            )

        if side is Side.BUY:
            balance = await self._wallets.read_balance(owner)
            if balance < amount:
                raise InsufficientBalanceError(
                    f"proxy wallet balance ${balance} is below ${amount}",
                    balance=balance,
                    required=amount,
                )
            await self._ensure_allowance(self._wallets, owner, approval_target(market.risk_category), amount)

        return await self._builder.build_and_submit(
            market, outcome, side, amount, owner=owner, lifetime=lifetime
        )

    async def _ensure_allowance(
        self,
        wallets: ProxyWalletManager,
        owner: str,
        target: str,
        amount: Decimal,
    ) -> None:
        """Allowance >= amount, after at most one approval cycle."""
        allowance = await wallets.read_allowance(owner, target, required=amount)
        if allowance >= amount:
            return

        logger.info(
            "orchestrator.auto_approve",
            owner=owner,
            target=target,
            allowance=str(allowance),
            required=str(amount),
        )
        try:
            await wallets.approve(owner, target)
        except RelayTimeoutError:
            if self._metrics:
                self._metrics.record_auto_approval("timeout")
            raise
        except (RelayTransactionFailedError, RelayerRejectedError) as exc:
            if self._metrics:
                self._metrics.record_auto_approval("failed")
            raise InsufficientAllowanceError(
                f"USDC approval for {target} failed: {exc.message}",
                target=target,
                required=amount,
            ) from exc

        allowance = await wallets.read_allowance(owner, target, required=amount)
        if allowance < amount:
            if self._metrics:
                self._metrics.record_auto_approval("insufficient")
            raise InsufficientAllowanceError(
                f"allowance ${allowance} for {target} is still below ${amount} after approval",
                target=target,
                allowance=allowance,
                required=amount,
            )
        if self._metrics:
            self._metrics.record_auto_approval("approved")
