"""OrderBuilder — turn (market, outcome, side, amount) into a submitted order.

Kalshi: whole contracts, leg from the outcome name, RSA-signed POST.
Polymarket: 6-decimal maker/taker amounts, fresh salt, 24h expiration,
EIP-712 signature against the risk category's exchange, builder-attributed
POST.

Venue rejections are raised as ``VenueRejectedOrderError`` and never
retried: the same salt would be a duplicate, a new salt could double-fill.
"""

from __future__ import annotations

import time
from decimal import Decimal

import structlog

from core.aliases import ORDER_ID_KEYS, resolve_alias
from core.errors import (
    ConfigurationError,
    InvalidOrderError,
    OrderBelowMinimumError,
    ProxyNotDeployedError,
)
from data.clob_client import ClobClient
from data.kalshi_client import KalshiClient
from execution.quantizer import kalshi_contract_count, kalshi_price_cents, polymarket_amounts
from models.market import Market, Outcome
from models.order import KalshiOrderType, Order, OrderLifetime, Side, TradeResult, Venue
from models.proxy_wallet import ProxyWalletRecord
from monitoring.metrics import MetricsRegistry
from relayer.proxy_wallet import ProxyWalletManager
from web3_infra.eip712_signer import EIP712Signer

logger = structlog.get_logger("execution.order_builder")

DEFAULT_MIN_ORDER_USD = Decimal("1")
DEFAULT_MAX_ORDER_USD = Decimal("100000")
DEFAULT_EXPIRATION_SECONDS = 86400


class OrderBuilder:
    """Builds, signs and submits orders for both venues.

    Parameters
    ----------
    kalshi:
        Kalshi client, or ``None`` when Kalshi is unconfigured.
    clob:
        Polymarket CLOB client, or ``None`` when unconfigured.
    eip712_signer:
        Started order signer for Polymarket.
    wallets:
        Proxy-wallet manager providing the maker address and scheme.
    min_order_usd, max_order_usd:
        Notional bounds applied to both venues.
    expiration_seconds:
        Lifetime of Polymarket orders from signing time.
    """

    def __init__(
        self,
        kalshi: KalshiClient | None = None,
        clob: ClobClient | None = None,
        eip712_signer: EIP712Signer | None = None,
        wallets: ProxyWalletManager | None = None,
        min_order_usd: Decimal = DEFAULT_MIN_ORDER_USD,
        max_order_usd: Decimal = DEFAULT_MAX_ORDER_USD,
        expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._kalshi = kalshi
        self._clob = clob
        self._signer = eip712_signer
        self._wallets = wallets
        self._min_order_usd = min_order_usd
        self._max_order_usd = max_order_usd
        self._expiration_seconds = expiration_seconds
        self._metrics = metrics

    # ── Validation ───────────────────────────────────────────────

    def _check_notional(self, amount: Decimal) -> None:
        if not isinstance(amount, Decimal) or not amount.is_finite() or amount <= 0:
            raise InvalidOrderError(f"amount must be a positive Decimal, got {amount!r}")
        if amount < self._min_order_usd:
            raise OrderBelowMinimumError(
                f"minimum order is ${self._min_order_usd}, got ${amount}",
                minimum=self._min_order_usd,
            )
        if amount > self._max_order_usd:
            raise InvalidOrderError(f"maximum order is ${self._max_order_usd}, got ${amount}")

    # ── Kalshi ───────────────────────────────────────────────────

    def prepare_kalshi_order(
        self,
        market: Market,
        outcome: Outcome,
        side: Side,
        amount: Decimal,
        limit_price: Decimal | None = None,
    ) -> Order:
        """Unsigned Kalshi order: ``floor(amount / price)`` contracts."""
        self._check_notional(amount)
        count = kalshi_contract_count(amount, outcome.price)
        if count < 1:
            raise OrderBelowMinimumError(
                f"${amount} buys less than one contract at {outcome.price}",
                minimum_contracts=1,
            )

        order_type = KalshiOrderType.MARKET
        cents = None
        if limit_price is not None:
            try:
                cents = kalshi_price_cents(limit_price)
            except (TypeError, ValueError) as exc:
                raise InvalidOrderError(f"invalid limit price: {exc}") from exc
            order_type = KalshiOrderType.LIMIT

        return Order(
            venue=Venue.KALSHI,
            instrument_id=market.platform_id,
            side=side,
            size=Decimal(count),
            amount=amount,
            price=outcome.price,
            leg=outcome.kalshi_leg,
            kalshi_order_type=order_type,
            limit_price_cents=cents,
        )

    async def _submit_kalshi(self, order: Order) -> TradeResult:
        if self._kalshi is None:
            raise ConfigurationError("Kalshi API credentials are not configured", venue="kalshi")
        placed = await self._kalshi.place_order(order)
        return TradeResult(
            success=True,
            venue=Venue.KALSHI,
            order_id=resolve_alias(placed, ORDER_ID_KEYS),
            status=str(placed.get("status") or "SUBMITTED"),
        )

    # ── Polymarket ───────────────────────────────────────────────

    def prepare_polymarket_order(
        self,
        market: Market,
        outcome: Outcome,
        side: Side,
        amount: Decimal,
        wallet: ProxyWalletRecord,
        signer_address: str,
        lifetime: OrderLifetime = OrderLifetime.GTC,
    ) -> Order:
        """Unsigned Polymarket order with a fresh salt and expiration.

        Raises
        ------
        ProxyNotDeployedError
            If *wallet* is not deployed.
        OrderBelowMinimumError
            Notional or share quantity under the venue minimum.
        """
        if not wallet.is_deployed or not wallet.proxy_address:
            raise ProxyNotDeployedError("proxy wallet is not deployed", owner=wallet.owner)
        self._check_notional(amount)
        if not outcome.token_id:
            raise InvalidOrderError(f"outcome {outcome.name!r} has no token id")

        maker_amount, taker_amount, shares = polymarket_amounts(side is Side.BUY, amount, outcome.price)
        if maker_amount == 0 or taker_amount == 0:
            raise OrderBelowMinimumError(f"${amount} at {outcome.price} rounds to zero")
        if market.min_order_size is not None and shares < market.min_order_size:
            raise OrderBelowMinimumError(
                f"{shares} shares is below the market minimum of {market.min_order_size}",
                minimum=market.min_order_size,
            )

        return Order(
            venue=Venue.POLYMARKET,
            instrument_id=outcome.token_id,
            side=side,
            size=shares,
            amount=amount,
            price=outcome.price,
            lifetime=lifetime,
            expiration=int(time.time()) + self._expiration_seconds,
            maker_amount=maker_amount,
            taker_amount=taker_amount,
            maker=wallet.proxy_address,
            signer=signer_address,
            signature_type=wallet.signature_type,
            risk_category=market.risk_category,
        )

    async def _submit_polymarket(self, order: Order) -> TradeResult:
        if self._clob is None or self._signer is None:
            raise ConfigurationError("Polymarket trading is not configured", venue="polymarket")
        signed = await self._signer.sign_order(order)
        order = order.with_signature(signed.signature)
        reply = await self._clob.post_order(order)

        hashes = reply.get("transactionsHashes") or reply.get("transactionHashes") or []
        return TradeResult(
            success=True,
            venue=Venue.POLYMARKET,
            order_id=resolve_alias(reply, ORDER_ID_KEYS),
            tx_hash=hashes[0] if hashes else None,
            status=str(reply.get("status") or "SUBMITTED"),
        )

    # ── Entry point ──────────────────────────────────────────────

    async def build_and_submit(
        self,
        market: Market,
        outcome: Outcome,
        side: Side,
        amount: Decimal,
        owner: str | None = None,
        lifetime: OrderLifetime = OrderLifetime.GTC,
        limit_price: Decimal | None = None,
    ) -> TradeResult:
        """Build, sign and submit one order.

        Parameters
        ----------
        owner:
            Polymarket only: EOA owning the proxy wallet.  Defaults to the
            signing key's address.
        limit_price:
            Kalshi only: turns the order into a limit order.

        Raises
        ------
        TradeError
            Any precondition, signing or venue failure.
        """
        started = time.monotonic()
        if market.venue is Venue.KALSHI:
            order = self.prepare_kalshi_order(market, outcome, side, amount, limit_price)
            result = await self._submit_kalshi(order)
        else:
            if self._signer is None or self._wallets is None:
                raise ConfigurationError("Polymarket trading is not configured", venue="polymarket")
            wallet = self._wallets.record(owner or self._signer.address)
            order = self.prepare_polymarket_order(
                market, outcome, side, amount, wallet, self._signer.address, lifetime
            )
            result = await self._submit_polymarket(order)

        if self._metrics:
            self._metrics.observe_order_latency(market.venue.value, time.monotonic() - started)
        logger.info(
            "order_builder.submitted",
            venue=market.venue.value,
            instrument=order.instrument_id,
            side=side.value,
            amount=str(amount),
            order_id=result.order_id,
            status=result.status,
        )
        return result
