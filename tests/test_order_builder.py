"""Tests for execution/order_builder.py."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from config.credentials import WalletCredentials
from core.errors import (
    ConfigurationError,
    InvalidOrderError,
    OrderBelowMinimumError,
    ProxyNotDeployedError,
    VenueRejectedOrderError,
)
from data.clob_client import ClobClient
from data.kalshi_client import KalshiClient
from execution.order_builder import OrderBuilder
from models.market import Market, Outcome
from models.order import KalshiOrderType, Leg, Order, RiskCategory, Side, Venue
from models.proxy_wallet import ProxyWalletRecord, WalletState
from monitoring.metrics import MetricsRegistry
from relayer.proxy_wallet import ProxyWalletManager
from web3_infra.contracts import order_domain
from web3_infra.eip712_signer import EIP712Signer, recover_order_signer

PROXY = "0x2222222222222222222222222222222222222222"

KALSHI_MARKET = Market(
    venue=Venue.KALSHI,
    platform_id="KXBTC-25DEC31",
    outcomes=(Outcome(name="Yes", price=Decimal("0.40")), Outcome(name="No", price=Decimal("0.60"))),
)
POLY_MARKET = Market(
    venue=Venue.POLYMARKET,
    platform_id="0xcondition",
    min_order_size=Decimal("5"),
    outcomes=(
        Outcome(name="Yes", price=Decimal("0.50"), token_id="111"),
        Outcome(name="No", price=Decimal("0.50"), token_id="222"),
    ),
)


def _deployed_record(owner: str) -> ProxyWalletRecord:
    return ProxyWalletRecord(owner=owner, proxy_address=PROXY, state=WalletState.DEPLOYED)


@pytest.fixture
def kalshi() -> AsyncMock:
    client = AsyncMock(spec=KalshiClient)
    client.place_order.return_value = {"order_id": "k-1", "status": "executed"}
    return client


@pytest.fixture
def clob() -> AsyncMock:
    client = AsyncMock(spec=ClobClient)
    client.post_order.return_value = {
        "success": True,
        "orderID": "0xorder",
        "status": "matched",
        "transactionsHashes": ["0xtx"],
    }
    return client


@pytest_asyncio.fixture
async def signer(wallet_credentials: WalletCredentials):
    signer = EIP712Signer(wallet_credentials, max_workers=1)
    signer.start()
    yield signer
    signer.shutdown()


@pytest.fixture
def wallets(owner_address: str) -> MagicMock:
    wallets = MagicMock(spec=ProxyWalletManager)
    wallets.record.return_value = _deployed_record(owner_address)
    return wallets


# ════════════════════════════════════════════════════════════════
# Kalshi
# ════════════════════════════════════════════════════════════════


class TestKalshiOrders:

    def test_contract_count_floors(self) -> None:
        order = OrderBuilder().prepare_kalshi_order(
            KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("10")
        )
        assert order.size == Decimal(25)
        assert order.leg is Leg.YES
        assert order.kalshi_order_type is KalshiOrderType.MARKET

    def test_no_leg_from_outcome(self) -> None:
        order = OrderBuilder().prepare_kalshi_order(
            KALSHI_MARKET, KALSHI_MARKET.outcome("No"), Side.BUY, Decimal("10")
        )
        assert order.leg is Leg.NO
        assert order.size == Decimal(16)

    def test_limit_price_to_cents(self) -> None:
        order = OrderBuilder().prepare_kalshi_order(
            KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("10"), limit_price=Decimal("0.415")
        )
        assert order.kalshi_order_type is KalshiOrderType.LIMIT
        assert order.limit_price_cents == 42

    @pytest.mark.parametrize("limit", [Decimal("1.5"), Decimal("0.999"), Decimal("0.001")])
    def test_invalid_limit_price(self, limit: Decimal) -> None:
        with pytest.raises(InvalidOrderError):
            OrderBuilder().prepare_kalshi_order(
                KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("10"), limit_price=limit
            )

    def test_below_minimum(self) -> None:
        with pytest.raises(OrderBelowMinimumError):
            OrderBuilder().prepare_kalshi_order(
                KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("0.50")
            )

    def test_above_maximum(self) -> None:
        builder = OrderBuilder(max_order_usd=Decimal("100"))
        with pytest.raises(InvalidOrderError):
            builder.prepare_kalshi_order(KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("101"))

    def test_less_than_one_contract(self) -> None:
        market = Market(
            venue=Venue.KALSHI,
            platform_id="KXHIGH",
            outcomes=(Outcome(name="Yes", price=Decimal("0.99")),),
        )
        builder = OrderBuilder(min_order_usd=Decimal("0.5"))
        with pytest.raises(OrderBelowMinimumError):
            builder.prepare_kalshi_order(market, market.outcome("yes"), Side.BUY, Decimal("0.9"))

    @pytest.mark.asyncio
    async def test_submit(self, kalshi: AsyncMock) -> None:
        result = await OrderBuilder(kalshi=kalshi).build_and_submit(
            KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("10")
        )
        assert result.success
        assert result.order_id == "k-1"
        assert result.status == "executed"
        sent: Order = kalshi.place_order.await_args.args[0]
        assert sent.instrument_id == "KXBTC-25DEC31"

    @pytest.mark.asyncio
    async def test_submit_latency_observed(self, kalshi: AsyncMock) -> None:
        metrics = MetricsRegistry()
        await OrderBuilder(kalshi=kalshi, metrics=metrics).build_and_submit(
            KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("10")
        )
        assert metrics.registry.get_sample_value(
            "predmkt_order_submit_seconds_count", {"venue": "kalshi"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_unconfigured(self) -> None:
        with pytest.raises(ConfigurationError):
            await OrderBuilder().build_and_submit(
                KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("10")
            )

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self, kalshi: AsyncMock) -> None:
        kalshi.place_order.side_effect = VenueRejectedOrderError("market closed", venue="kalshi")
        with pytest.raises(VenueRejectedOrderError, match="market closed"):
            await OrderBuilder(kalshi=kalshi).build_and_submit(
                KALSHI_MARKET, KALSHI_MARKET.outcome("yes"), Side.BUY, Decimal("10")
            )
        assert kalshi.place_order.await_count == 1


# ════════════════════════════════════════════════════════════════
# Polymarket
# ════════════════════════════════════════════════════════════════


class TestPolymarketOrders:

    def test_prepare_amounts(self, owner_address: str) -> None:
        order = OrderBuilder().prepare_polymarket_order(
            POLY_MARKET,
            POLY_MARKET.outcome("yes"),
            Side.BUY,
            Decimal("10"),
            _deployed_record(owner_address),
            owner_address,
        )
        assert order.maker_amount == 10_000_000
        assert order.taker_amount == 20_000_000
        assert order.maker == PROXY
        assert order.signer == owner_address
        assert order.instrument_id == "111"
        assert order.expiration > 0
        assert not order.is_signed

    def test_fresh_salt_per_order(self, owner_address: str) -> None:
        builder = OrderBuilder()
        wallet = _deployed_record(owner_address)
        salts = {
            builder.prepare_polymarket_order(
                POLY_MARKET, POLY_MARKET.outcome("yes"), Side.BUY, Decimal("10"), wallet, owner_address
            ).salt
            for _ in range(50)
        }
        assert len(salts) == 50

    def test_not_deployed(self, owner_address: str) -> None:
        with pytest.raises(ProxyNotDeployedError):
            OrderBuilder().prepare_polymarket_order(
                POLY_MARKET,
                POLY_MARKET.outcome("yes"),
                Side.BUY,
                Decimal("10"),
                ProxyWalletRecord(owner=owner_address, state=WalletState.NOT_DEPLOYED),
                owner_address,
            )

    def test_missing_token_id(self, owner_address: str) -> None:
        with pytest.raises(InvalidOrderError):
            OrderBuilder().prepare_polymarket_order(
                POLY_MARKET,
                Outcome(name="Yes", price=Decimal("0.5")),
                Side.BUY,
                Decimal("10"),
                _deployed_record(owner_address),
                owner_address,
            )

    def test_below_market_min_size(self, owner_address: str) -> None:
        with pytest.raises(OrderBelowMinimumError):
            OrderBuilder().prepare_polymarket_order(
                POLY_MARKET,
                POLY_MARKET.outcome("yes"),
                Side.BUY,
                Decimal("2"),
                _deployed_record(owner_address),
                owner_address,
            )

    @pytest.mark.asyncio
    async def test_signed_and_posted(
        self,
        clob: AsyncMock,
        signer: EIP712Signer,
        wallets: MagicMock,
        owner_address: str,
    ) -> None:
        builder = OrderBuilder(clob=clob, eip712_signer=signer, wallets=wallets)
        result = await builder.build_and_submit(
            POLY_MARKET, POLY_MARKET.outcome("yes"), Side.BUY, Decimal("10")
        )

        assert result.success
        assert result.order_id == "0xorder"
        assert result.tx_hash == "0xtx"
        wallets.record.assert_called_once_with(owner_address)

        posted: Order = clob.post_order.await_args.args[0]
        assert posted.is_signed
        recovered = recover_order_signer(
            posted.typed_message(), order_domain(RiskCategory.STANDARD), posted.signature
        )
        assert recovered == owner_address

    @pytest.mark.asyncio
    async def test_neg_risk_signed_against_neg_risk_exchange(
        self,
        clob: AsyncMock,
        signer: EIP712Signer,
        wallets: MagicMock,
        owner_address: str,
    ) -> None:
        market = POLY_MARKET.model_copy(update={"risk_category": RiskCategory.NEG_RISK})
        await OrderBuilder(clob=clob, eip712_signer=signer, wallets=wallets).build_and_submit(
            market, market.outcome("no"), Side.BUY, Decimal("10")
        )
        posted: Order = clob.post_order.await_args.args[0]
        assert posted.neg_risk
        domain = order_domain(RiskCategory.NEG_RISK)
        assert recover_order_signer(posted.typed_message(), domain, posted.signature) == owner_address

    @pytest.mark.asyncio
    async def test_rejection_propagates(
        self,
        clob: AsyncMock,
        signer: EIP712Signer,
        wallets: MagicMock,
    ) -> None:
        clob.post_order.side_effect = VenueRejectedOrderError("not enough balance / allowance", venue="polymarket")
        builder = OrderBuilder(clob=clob, eip712_signer=signer, wallets=wallets)
        with pytest.raises(VenueRejectedOrderError, match="not enough balance"):
            await builder.build_and_submit(POLY_MARKET, POLY_MARKET.outcome("yes"), Side.BUY, Decimal("10"))
        assert clob.post_order.await_count == 1

    @pytest.mark.asyncio
    async def test_unconfigured(self) -> None:
        with pytest.raises(ConfigurationError):
            await OrderBuilder().build_and_submit(
                POLY_MARKET, POLY_MARKET.outcome("yes"), Side.BUY, Decimal("10")
            )
