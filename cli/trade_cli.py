"""Trade CLI — wallet lifecycle and one-shot trades from the command line.

Wires the real components from ``settings`` and runs a single operation.

Usage:
    python3 -m cli.trade_cli status
    python3 -m cli.trade_cli deploy
    python3 -m cli.trade_cli approve --risk neg_risk
    python3 -m cli.trade_cli trade --venue polymarket --market <condition_id> \\
        --outcome Yes --token-id <id> --price 0.42 --amount 10
    python3 -m cli.trade_cli serve-signer --port 8088
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from auth.builder_signer import BuilderSigner, build_builder_signer
from auth.request_signer import KalshiRequestSigner
from config.credentials import AuthConfig
from config.settings import Settings, settings
from core.errors import TradeError
from core.logger import setup_logging
from core.main import GracefulShutdown, build_sign_server, serve
from data.clob_client import ClobClient
from data.kalshi_client import KalshiClient
from execution.order_builder import OrderBuilder
from execution.orchestrator import TradeOrchestrator
from models.market import Market, Outcome
from models.order import OrderLifetime, RiskCategory, Side, Venue
from models.proxy_wallet import ProxyWalletRecord, WalletState
from monitoring.metrics import MetricsRegistry
from relayer.client import RelayClient
from relayer.proxy_wallet import ProxyWalletManager
from web3_infra.collateral import CollateralReader
from web3_infra.contracts import approval_target
from web3_infra.eip712_signer import EIP712Signer, WalletSigner

logger = structlog.get_logger("cli.trade_cli")


# ── Component wiring ────────────────────────────────────────────


class TradeStack:
    """Every configured component, built once from settings.

    Unconfigured venues leave their components as ``None``.  Use as an
    async context manager so HTTP clients and the signing pool are closed.
    """

    def __init__(self, s: Settings = settings) -> None:
        self.settings = s
        self.auth = AuthConfig.from_settings(s)
        self.metrics = MetricsRegistry()
        self.metrics.set_build_info(app=s.APP_NAME, env=s.APP_ENV)
        timeout = float(s.HTTP_TIMEOUT_SECONDS)

        self.kalshi: KalshiClient | None = None
        if self.auth.kalshi is not None:
            self.kalshi = KalshiClient(
                KalshiRequestSigner(self.auth.kalshi),
                base_url=s.KALSHI_API_URL,
                timeout=timeout,
            )

        self.builder_signer: BuilderSigner | None = None
        self.relay: RelayClient | None = None
        self.wallet_signer: WalletSigner | None = None
        self.wallets: ProxyWalletManager | None = None
        self.eip712: EIP712Signer | None = None
        self.clob: ClobClient | None = None
        if self.auth.venue_status()[Venue.POLYMARKET.value]:
            self.builder_signer = build_builder_signer(self.auth)
            self.relay = RelayClient(
                s.POLY_RELAYER_URL,
                builder_signer=self.builder_signer,
                timeout=timeout,
                poll_interval=float(s.RELAY_POLL_INTERVAL_SECONDS),
                quick_wait_attempts=s.RELAY_QUICK_WAIT_ATTEMPTS,
                metrics=self.metrics,
            )
            self.wallet_signer = WalletSigner(self.auth.wallet)
            self.wallets = ProxyWalletManager(
                self.relay,
                self.wallet_signer,
                collateral=CollateralReader.from_rpc_url(s.POLYGON_RPC_URL, timeout=timeout),
                deploy_max_attempts=s.RELAY_DEPLOY_MAX_ATTEMPTS,
                approve_max_attempts=s.RELAY_APPROVE_MAX_ATTEMPTS,
                poll_interval=float(s.RELAY_POLL_INTERVAL_SECONDS),
                chain_id=s.POLYGON_CHAIN_ID,
                metrics=self.metrics,
            )
            self.eip712 = EIP712Signer(self.auth.wallet, chain_id=s.POLYGON_CHAIN_ID)
            self.clob = ClobClient(
                self.builder_signer,
                api_credentials=self.auth.clob_api,
                base_url=s.POLY_CLOB_URL,
                timeout=timeout,
            )

        self.builder = OrderBuilder(
            kalshi=self.kalshi,
            clob=self.clob,
            eip712_signer=self.eip712,
            wallets=self.wallets,
            min_order_usd=s.MIN_ORDER_AMOUNT_USD,
            max_order_usd=s.MAX_ORDER_AMOUNT_USD,
            expiration_seconds=s.ORDER_EXPIRATION_SECONDS,
            metrics=self.metrics,
        )
        self.orchestrator = TradeOrchestrator(
            self.builder,
            wallets=self.wallets,
            kalshi=self.kalshi,
            owner=self.owner,
            metrics=self.metrics,
        )

    @property
    def owner(self) -> str | None:
        return self.wallet_signer.address if self.wallet_signer else None

    def require_polymarket(self) -> tuple[ProxyWalletManager, str]:
        if self.wallets is None or self.owner is None:
            print("ERROR: Polymarket is not configured. Set POLYMARKET_PRIVATE_KEY and")
            print("  POLY_BUILDER_API_KEY / POLY_BUILDER_SECRET / POLY_BUILDER_PASSPHRASE")
            print("  (or BUILDER_SIGNING_SERVER_URL).")
            sys.exit(1)
        return self.wallets, self.owner

    async def __aenter__(self) -> TradeStack:
        if self.kalshi:
            await self.kalshi.start()
        if self.relay:
            await self.relay.start()
        if self.clob:
            await self.clob.start()
        if self.eip712:
            self.eip712.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self.kalshi:
            await self.kalshi.stop()
        if self.relay:
            await self.relay.stop()
        if self.clob:
            await self.clob.stop()
        if self.eip712:
            self.eip712.shutdown()
        if self.builder_signer:
            await self.builder_signer.close()


def _print_record(rec: ProxyWalletRecord) -> None:
    print(f"  Owner:        {rec.owner}")
    print(f"  Proxy wallet: {rec.proxy_address or '-'}")
    print(f"  State:        {rec.state.value}")
    for target, allowance in rec.allowances.items():
        print(f"  Allowance:    {target} = {allowance} ({rec.approval_state(target).value})")
    if rec.last_error is not None:
        print(f"  Last error:   [{rec.last_error.code}] {rec.last_error.message}")


# ── Commands ────────────────────────────────────────────────────


async def cmd_status(args: argparse.Namespace) -> None:
    """Show venue configuration, proxy wallet state and balances."""
    async with TradeStack() as stack:
        print(f"\n{'='*60}")
        print("  Trading Status")
        print(f"{'='*60}")
        for venue, ready in stack.orchestrator.venue_status().items():
            print(f"  {venue:<12}  {'configured' if ready else 'not configured'}")

        if stack.kalshi:
            balance = await stack.kalshi.get_balance()
            print(f"  Kalshi balance: ${balance:.2f}")

        if stack.wallets and stack.owner:
            rec = await stack.wallets.check_status(stack.owner)
            _print_record(rec)
            if rec.is_deployed:
                balance = await stack.wallets.read_balance(stack.owner)
                print(f"  USDC balance: ${balance:.4f}")
        print(f"{'='*60}\n")


async def cmd_deploy(args: argparse.Namespace) -> None:
    """Deploy the proxy wallet ("enable trading")."""
    async with TradeStack() as stack:
        wallets, owner = stack.require_polymarket()
        rec = await wallets.check_status(owner)
        if rec.state is WalletState.NOT_DEPLOYED:
            print("Deploying proxy wallet through the relayer...")
            rec = await wallets.deploy(owner)
        _print_record(rec)
        if rec.state is WalletState.FAILED:
            sys.exit(1)


async def cmd_approve(args: argparse.Namespace) -> None:
    """Grant the exchange an unlimited USDC allowance."""
    async with TradeStack() as stack:
        wallets, owner = stack.require_polymarket()
        target = approval_target(RiskCategory(args.risk))
        await wallets.check_status(owner)
        print(f"Approving USDC for {target}...")
        rec = await wallets.approve(owner, target)
        _print_record(rec)


async def cmd_trade(args: argparse.Namespace) -> None:
    """Execute one trade and print the result as JSON."""
    venue = Venue(args.venue)
    market = Market(
        venue=venue,
        platform_id=args.market,
        risk_category=RiskCategory(args.risk),
        min_order_size=args.min_size,
        outcomes=(Outcome(name=args.outcome, price=args.price, token_id=args.token_id),),
    )
    async with TradeStack() as stack:
        result = await stack.orchestrator.execute_trade(
            market,
            market.outcomes[0],
            args.amount,
            Side(args.side),
            lifetime=OrderLifetime(args.lifetime),
            limit_price=args.limit_price,
        )
    print(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.success:
        sys.exit(1)


async def cmd_serve_signer(args: argparse.Namespace) -> None:
    """Run the builder signing server until SIGINT / SIGTERM."""
    overrides: dict[str, Any] = {}
    if args.host is not None:
        overrides["SIGNER_HOST"] = args.host
    if args.port is not None:
        overrides["SIGNER_PORT"] = args.port
    server = build_sign_server(settings.model_copy(update=overrides))

    shutdown = GracefulShutdown()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.trigger)
    await serve(server, shutdown)


# ── Parser ──────────────────────────────────────────────────────


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a decimal number: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Prediction-market trading CLI — wallet lifecycle and trades",
        prog="trade_cli",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # status
    subparsers.add_parser("status", help="Show venues, proxy wallet and balances")

    # deploy
    subparsers.add_parser("deploy", help="Deploy the Polymarket proxy wallet")

    # approve
    sub_approve = subparsers.add_parser("approve", help="Approve USDC for the exchange")
    sub_approve.add_argument(
        "--risk",
        choices=[c.value for c in RiskCategory],
        default=RiskCategory.STANDARD.value,
        help="Risk category selecting the approval target (default: standard)",
    )

    # trade
    sub_trade = subparsers.add_parser("trade", help="Execute one trade")
    sub_trade.add_argument("--venue", choices=[v.value for v in Venue], required=True)
    sub_trade.add_argument("--market", required=True, help="Kalshi ticker or Polymarket condition id")
    sub_trade.add_argument("--outcome", required=True, help="Outcome name (Yes / No / ...)")
    sub_trade.add_argument("--price", type=_decimal, required=True, help="Outcome price in (0, 1)")
    sub_trade.add_argument("--amount", type=_decimal, required=True, help="Notional in USD")
    sub_trade.add_argument("--side", choices=[s.value for s in Side], default=Side.BUY.value)
    sub_trade.add_argument("--token-id", default=None, help="Polymarket outcome token id")
    sub_trade.add_argument(
        "--risk",
        choices=[c.value for c in RiskCategory],
        default=RiskCategory.STANDARD.value,
    )
    sub_trade.add_argument("--min-size", type=_decimal, default=None, help="Minimum shares per order")
    sub_trade.add_argument(
        "--lifetime",
        choices=[t.value for t in OrderLifetime],
        default=OrderLifetime.GTC.value,
    )
    sub_trade.add_argument(
        "--limit-price",
        type=_decimal,
        default=None,
        help="Kalshi limit price in (0, 1); market order when omitted",
    )

    # serve-signer
    sub_serve = subparsers.add_parser("serve-signer", help="Run the builder signing server")
    sub_serve.add_argument("--host", default=None, help="Bind address (default: SIGNER_HOST)")
    sub_serve.add_argument("--port", type=int, default=None, help="TCP port (default: SIGNER_PORT)")

    return parser


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    cmd_map = {
        "status": cmd_status,
        "deploy": cmd_deploy,
        "approve": cmd_approve,
        "trade": cmd_trade,
        "serve-signer": cmd_serve_signer,
    }

    handler = cmd_map.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    setup_logging()
    try:
        asyncio.run(handler(args))
    except TradeError as exc:
        logger.error("trade_cli.failed", command=args.command, code=exc.code, error=exc.message)
        print(f"ERROR [{exc.code}]: {exc.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
