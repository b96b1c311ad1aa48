"""ProxyWalletManager — Safe proxy-wallet lifecycle driven through the relay.

Per owner EOA::

    UNKNOWN -> CHECKING -> {NOT_DEPLOYED, DEPLOYED}
    NOT_DEPLOYED -> DEPLOYING -> {DEPLOYED, FAILED}
    DEPLOYING -> UNKNOWN            (cancelled)
    FAILED -> CHECKING

and, once deployed, per approval target::

    UNAPPROVED -> APPROVING -> {APPROVED, UNAPPROVED}

A cancelled status check restores the state it started from.

Mutating operations on one owner are serialised by rejection: a second
operation started while one is in flight raises ``ProxyWalletBusyError``.
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator

import structlog

from core.errors import (
    ConfigurationError,
    InvalidWalletStateError,
    ProxyNotDeployedError,
    ProxyWalletBusyError,
    RelayTransactionFailedError,
    SignatureError,
    TradeError,
)
from models.proxy_wallet import (
    UNLIMITED_ALLOWANCE,
    ApprovalState,
    ProxyWalletRecord,
    WalletState,
)
from models.relayer import RelayAction, RelayerState, RelayerTransaction
from monitoring.metrics import MetricsRegistry
from relayer.client import RelayClient
from web3_infra.collateral import CollateralSource
from web3_infra.contracts import POLYGON_CHAIN_ID, USDC_ADDRESS, encode_approve
from web3_infra.eip712_signer import WalletSigner

logger = structlog.get_logger("relayer.proxy_wallet")

DEPLOY_MESSAGE = "Enable Trading on Polymarket"


def deploy_message(owner: str, timestamp: int) -> str:
    return f"{DEPLOY_MESSAGE}\n\nTimestamp: {timestamp}\nAddress: {owner}"


def approve_message(target: str, timestamp: int, nonce: str) -> str:
    return f"Approve USDC for trading on {target}\n\nTimestamp: {timestamp}\nNonce: {nonce}"


class ProxyWalletManager:
    """Tracks and drives one ``ProxyWalletRecord`` per owner address.

    Parameters
    ----------
    relay:
        Started ``RelayClient``.
    wallet_signer:
        Signs relay authorisations with the owner's EOA key.
    collateral:
        On-chain USDC reader for balance / allowance refreshes.
    deploy_max_attempts, approve_max_attempts:
        Poll budgets for deployment and approval transactions.
    poll_interval:
        Seconds between relay status fetches.
    """

    def __init__(
        self,
        relay: RelayClient,
        wallet_signer: WalletSigner,
        collateral: CollateralSource | None = None,
        deploy_max_attempts: int = 30,
        approve_max_attempts: int = 20,
        poll_interval: float = 2.0,
        chain_id: int = POLYGON_CHAIN_ID,
        usdc_address: str = USDC_ADDRESS,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._relay = relay
        self._wallet = wallet_signer
        self._collateral = collateral
        self._deploy_max_attempts = deploy_max_attempts
        self._approve_max_attempts = approve_max_attempts
        self._poll_interval = poll_interval
        self._chain_id = chain_id
        self._usdc_address = usdc_address
        self._metrics = metrics
        self._records: dict[str, ProxyWalletRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ── Records ──────────────────────────────────────────────────

    def record(self, owner: str) -> ProxyWalletRecord:
        """Record for *owner*, created in ``UNKNOWN`` on first access."""
        key = owner.lower()
        rec = self._records.get(key)
        if rec is None:
            rec = ProxyWalletRecord(owner=owner)
            self._records[key] = rec
        return rec

    def is_busy(self, owner: str) -> bool:
        lock = self._locks.get(owner.lower())
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def _exclusive(self, owner: str, operation: str) -> AsyncIterator[ProxyWalletRecord]:
        lock = self._locks.setdefault(owner.lower(), asyncio.Lock())
        if lock.locked():
            logger.warning("proxy_wallet.busy", owner=owner, operation=operation)
            raise ProxyWalletBusyError(
                f"another wallet operation is in progress for {owner}",
                owner=owner,
                operation=operation,
            )
        async with lock:
            yield self.record(owner)

    def _set_state(self, rec: ProxyWalletRecord, state: WalletState) -> None:
        logger.debug("proxy_wallet.transition", owner=rec.owner, old=rec.state.value, new=state.value)
        rec.state = state
        rec.touch()

    def _require_owner_key(self, owner: str) -> None:
        if self._wallet.address.lower() != owner.lower():
            raise SignatureError(
                f"wallet key {self._wallet.address} cannot authorise actions for {owner}"
            )

    # ── Status ───────────────────────────────────────────────────

    async def check_status(self, owner: str) -> ProxyWalletRecord:
        """Refresh deployment status from the relay.

        On relay failure the previous state is restored, the error is kept
        in ``last_error`` and re-raised (``RelayUnavailableError`` means the
        whole check may be retried).  Cancellation also restores the
        previous state, so a record is never left in ``CHECKING``.
        """
        async with self._exclusive(owner, "check_status") as rec:
            previous = rec.state
            self._set_state(rec, WalletState.CHECKING)
            try:
                deployed, proxy = await self._relay.get_deployed(owner)
                if deployed:
                    try:
                        _, nonce_proxy = await self._relay.get_nonce(owner)
                    except TradeError as exc:
                        logger.info(
                            "proxy_wallet.proxy_lookup_failed",
                            owner=owner,
                            fallback=proxy,
                            error=exc.message,
                        )
                    else:
                        proxy = nonce_proxy or proxy
            except TradeError as exc:
                rec.last_error = exc
                self._set_state(rec, previous)
                logger.warning("proxy_wallet.check_failed", owner=owner, error=exc.message)
                raise
            except BaseException:
                self._set_state(rec, previous)
                logger.warning("proxy_wallet.check_interrupted", owner=owner, restored=previous.value)
                raise

            if deployed:
                rec.proxy_address = proxy
                self._set_state(rec, WalletState.DEPLOYED)
            else:
                self._set_state(rec, WalletState.NOT_DEPLOYED)

            rec.last_error = None
            logger.info(
                "proxy_wallet.status",
                owner=owner,
                state=rec.state.value,
                proxy=rec.proxy_address,
            )
            return rec

    # ── Deployment ───────────────────────────────────────────────

    async def deploy(self, owner: str) -> ProxyWalletRecord:
        """Deploy the owner's Safe through the relay.

        Only valid from ``NOT_DEPLOYED``.  Timeout or failure leaves the
        record in ``FAILED`` with the cause in ``last_error``; nothing is
        retried.  If the call is cancelled mid-flight the record drops back
        to ``UNKNOWN`` so the next caller re-checks the relay.

        Raises
        ------
        InvalidWalletStateError
            If the record is not ``NOT_DEPLOYED``.
        SignatureError
            If the configured key does not belong to *owner*.
        """
        async with self._exclusive(owner, "deploy") as rec:
            if rec.state is not WalletState.NOT_DEPLOYED:
                raise InvalidWalletStateError(
                    f"deploy requires a not_deployed wallet, current state is {rec.state.value}",
                    owner=owner,
                )
            self._require_owner_key(owner)
            self._set_state(rec, WalletState.DEPLOYING)

            try:
                ts = int(time.time())
                signature = self._wallet.sign_text(deploy_message(owner, ts))
                transaction_id = await self._relay.submit(
                    RelayAction.DEPLOY,
                    {
                        "from": owner,
                        "chainId": self._chain_id,
                        "signature": signature,
                        "signatureParams": {"timestamp": str(ts)},
                        "metadata": "Safe deployment",
                    },
                )
                tx = await self._await_terminal(transaction_id, self._deploy_max_attempts)
            except TradeError as exc:
                return self._fail(rec, exc, RelayAction.DEPLOY)
            except BaseException:
                # A submitted deployment may still land; only a fresh check can tell.
                self._set_state(rec, WalletState.UNKNOWN)
                logger.warning("proxy_wallet.deploy_interrupted", owner=owner)
                raise

            if tx.state is RelayerState.FAILED:
                return self._fail(
                    rec,
                    RelayTransactionFailedError(
                        tx.error_message or "Safe deployment failed on-chain",
                        transaction_id=tx.transaction_id,
                        tx_hash=tx.tx_hash,
                    ),
                    RelayAction.DEPLOY,
                )

            proxy = tx.proxy_address
            if not proxy:
                try:
                    _, proxy = await self._relay.get_deployed(owner)
                except TradeError as exc:
                    logger.info("proxy_wallet.proxy_lookup_failed", owner=owner, error=exc.message)

            rec.proxy_address = proxy
            rec.last_error = None
            self._set_state(rec, WalletState.DEPLOYED)
            if self._metrics:
                self._metrics.record_relay_transaction(RelayAction.DEPLOY.value, tx.state.value)
            logger.info(
                "proxy_wallet.deployed",
                owner=owner,
                proxy=proxy,
                transaction_id=tx.transaction_id,
                tx_hash=tx.tx_hash,
            )
            return rec

    def _fail(self, rec: ProxyWalletRecord, error: TradeError, action: RelayAction) -> ProxyWalletRecord:
        rec.last_error = error
        self._set_state(rec, WalletState.FAILED)
        if self._metrics:
            self._metrics.record_relay_transaction(action.value, error.code.lower())
        logger.warning(
            "proxy_wallet.deploy_failed",
            owner=rec.owner,
            code=error.code,
            error=error.message,
        )
        return rec

    # ── Approval ─────────────────────────────────────────────────

    async def approve(self, owner: str, approval_target: str) -> ProxyWalletRecord:
        """Approve *approval_target* for unlimited USDC from the owner's proxy.

        Executes a single-call Safe batch through the relay and polls it to
        a terminal state.

        Raises
        ------
        ProxyNotDeployedError
            If the wallet is not ``DEPLOYED``.
        RelayTimeoutError
            Approval outcome unknown after the poll budget.
        RelayTransactionFailedError
            The relay reported the approval as failed.
        """
        async with self._exclusive(owner, "approve") as rec:
            if rec.state is not WalletState.DEPLOYED or not rec.proxy_address:
                raise ProxyNotDeployedError("proxy wallet must be deployed before approving", owner=owner)
            self._require_owner_key(owner)

            key = approval_target.lower()
            proxy = rec.proxy_address
            rec.approvals[key] = ApprovalState.APPROVING
            rec.touch()

            try:
                nonce, _ = await self._relay.get_nonce(owner)
                batch = [
                    {
                        "to": self._usdc_address,
                        "operation": 0,
                        "data": encode_approve(approval_target),
                        "value": "0",
                    }
                ]
                ts = int(time.time())
                signature = self._wallet.sign_text(approve_message(approval_target, ts, nonce))
                transaction_id = await self._relay.submit(
                    RelayAction.EXECUTE,
                    {
                        "from": owner,
                        "to": proxy,
                        "proxyWallet": proxy,
                        "data": json.dumps(batch, separators=(",", ":")),
                        "nonce": nonce,
                        "signature": signature,
                        "signatureParams": {"timestamp": str(ts)},
                        "metadata": f"USDC approval to {approval_target}",
                    },
                )
                tx = await self._await_terminal(transaction_id, self._approve_max_attempts)
                if tx.state is RelayerState.FAILED:
                    raise RelayTransactionFailedError(
                        tx.error_message or "USDC approval failed on-chain",
                        transaction_id=tx.transaction_id,
                        tx_hash=tx.tx_hash,
                    )
            except TradeError as exc:
                rec.approvals[key] = ApprovalState.UNAPPROVED
                rec.last_error = exc
                rec.touch()
                logger.warning(
                    "proxy_wallet.approve_failed",
                    owner=owner,
                    target=approval_target,
                    code=exc.code,
                    error=exc.message,
                )
                raise
            except BaseException:
                rec.approvals[key] = ApprovalState.UNAPPROVED
                rec.touch()
                logger.warning("proxy_wallet.approve_interrupted", owner=owner, target=approval_target)
                raise

            rec.set_allowance(approval_target, UNLIMITED_ALLOWANCE)
            rec.last_error = None
            if self._metrics:
                self._metrics.record_relay_transaction(RelayAction.EXECUTE.value, tx.state.value)
            logger.info(
                "proxy_wallet.approved",
                owner=owner,
                target=approval_target,
                transaction_id=tx.transaction_id,
                tx_hash=tx.tx_hash,
            )
            return rec

    async def _await_terminal(self, transaction_id: str, max_attempts: int) -> RelayerTransaction:
        tx = await self._relay.wait(transaction_id)
        if tx is not None:
            return tx
        return await self._relay.poll_until_terminal(
            transaction_id,
            max_attempts=max_attempts,
            interval_s=self._poll_interval,
        )

    # ── Collateral reads ─────────────────────────────────────────

    def _reader(self) -> CollateralSource:
        if self._collateral is None:
            raise ConfigurationError("no Polygon RPC configured for collateral reads")
        return self._collateral

    async def read_balance(self, owner: str) -> Decimal:
        """USDC balance held by the owner's proxy wallet."""
        rec = self.record(owner)
        if not rec.proxy_address:
            raise ProxyNotDeployedError("proxy wallet address unknown", owner=owner)
        return await self._reader().balance_of(rec.proxy_address)

    async def read_allowance(
        self,
        owner: str,
        approval_target: str,
        required: Decimal | None = None,
    ) -> Decimal:
        """Refresh the on-chain allowance of *approval_target* into the record."""
        async with self._exclusive(owner, "read_allowance") as rec:
            if not rec.proxy_address:
                raise ProxyNotDeployedError("proxy wallet address unknown", owner=owner)
            allowance = await self._reader().allowance(rec.proxy_address, approval_target)
            rec.set_allowance(approval_target, allowance, required)
            logger.debug(
                "proxy_wallet.allowance",
                owner=owner,
                target=approval_target,
                allowance=str(allowance),
            )
            return allowance
