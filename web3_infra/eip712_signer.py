"""EIP712Signer — off-main-thread EIP-712 signing for Polymarket CLOB orders.

Signing is CPU-bound (elliptic-curve math), so we offload it to a
``ProcessPoolExecutor`` to avoid blocking the asyncio event loop.

The signer key is the user's EOA; the order's ``maker`` is the proxy
wallet.  ``signatureType`` in the signed record tells the exchange how to
relate the two, so it must match the proxy wallet's scheme.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Any

import structlog
from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct, encode_typed_data
from eth_utils import keccak, to_checksum_address

from config.credentials import WalletCredentials
from core.errors import ConfigurationError, SignatureError
from models.order import Order, SignatureType
from web3_infra.contracts import ORDER_TYPES, POLYGON_CHAIN_ID, order_domain

logger = structlog.get_logger("web3_infra.eip712_signer")


@dataclass(frozen=True)
class SignedOrder:
    """Result of signing an order with EIP-712."""

    order_hash: str
    signature: str
    order_data: dict[str, Any]
    domain: dict[str, Any]


def _hex(raw: bytes) -> str:
    return "0x" + bytes(raw).hex()


def _signable_hash(signable: SignableMessage) -> bytes:
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def _typed_signable(order_data: dict[str, Any], domain: dict[str, Any]) -> SignableMessage:
    message = dict(order_data)
    for field_name in ("maker", "signer", "taker"):
        message[field_name] = to_checksum_address(message[field_name])
    return encode_typed_data(
        domain_data=domain,
        message_types=ORDER_TYPES,
        message_data=message,
    )


# ── Module-level signing function (must be picklable for multiprocessing) ──


def _sign_order_sync(
    order_data: dict[str, Any],
    domain: dict[str, Any],
    private_key: str,
) -> SignedOrder:
    """Synchronous typed-data signing executed in a worker process."""
    signable = _typed_signable(order_data, domain)
    signed = Account.sign_message(signable, private_key=private_key)
    return SignedOrder(
        order_hash=_hex(_signable_hash(signable)),
        signature=_hex(signed.signature),
        order_data=dict(order_data),
        domain=dict(domain),
    )


def recover_order_signer(order_data: dict[str, Any], domain: dict[str, Any], signature: str) -> str:
    """Address that produced *signature* over the typed order."""
    return Account.recover_message(_typed_signable(order_data, domain), signature=signature)


def _load_account(credentials: WalletCredentials | None) -> Any:
    if credentials is None or not credentials.private_key:
        raise ConfigurationError("Wallet private key is not configured", venue="polymarket")
    try:
        return Account.from_key(credentials.private_key)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError("Wallet private key is malformed", venue="polymarket") from exc


# ── Async signer class ──────────────────────────────────────────────


class EIP712Signer:
    """Async-safe EIP-712 order signer backed by a process pool.

    Parameters
    ----------
    credentials:
        EOA private key controlling the proxy wallet.
    chain_id:
        Chain id of the exchange domain.  Defaults to Polygon (137).
    max_workers:
        Number of processes in the signing pool.  Defaults to 2.

    Raises
    ------
    ConfigurationError
        If the key is missing or malformed.
    """

    def __init__(
        self,
        credentials: WalletCredentials | None,
        chain_id: int = POLYGON_CHAIN_ID,
        max_workers: int = 2,
    ) -> None:
        account = _load_account(credentials)
        self._private_key = credentials.private_key  # type: ignore[union-attr]
        self._address: str = account.address
        self._chain_id = chain_id
        self._max_workers = max_workers
        self._pool: ProcessPoolExecutor | None = None

    @property
    def address(self) -> str:
        return self._address

    # ── Lifecycle ────────────────────────────────────────────────

    def start(self) -> None:
        """Start the process pool.  Idempotent."""
        if self._pool is None:
            self._pool = ProcessPoolExecutor(max_workers=self._max_workers)
            logger.info(
                "eip712_signer.started",
                max_workers=self._max_workers,
                signer=self._address,
            )

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the process pool."""
        if self._pool is not None:
            self._pool.shutdown(wait=wait)
            self._pool = None
            logger.info("eip712_signer.shutdown")

    # ── Signing ──────────────────────────────────────────────────

    def _check_identity(self, order: Order) -> None:
        if not order.signer or order.signer.lower() != self._address.lower():
            raise SignatureError(
                f"order signer {order.signer or '<empty>'} does not match signing key {self._address}"
            )
        if not order.maker:
            raise SignatureError("order maker (proxy wallet) is not set")
        if order.signature_type is SignatureType.EOA and order.maker.lower() != order.signer.lower():
            raise SignatureError("EOA signature type requires maker == signer")
        if order.signature_type is not SignatureType.EOA and order.maker.lower() == order.signer.lower():
            raise SignatureError("proxy signature type requires maker to be the proxy wallet")

    async def sign_order(self, order: Order) -> SignedOrder:
        """Sign *order* asynchronously (offloaded to process pool).

        The verifying contract is picked from ``order.risk_category``.

        Returns
        -------
        SignedOrder
            Contains ``order_hash``, ``signature``, the typed message and
            the domain that was signed against.

        Raises
        ------
        RuntimeError
            If the signer has not been started.
        SignatureError
            If the order's identities are inconsistent with this key.
        """
        if self._pool is None:
            raise RuntimeError(
                "EIP712Signer not started — call start() first"
            )
        if order.is_signed:
            raise SignatureError("order is already signed; amend it to re-sign")
        self._check_identity(order)

        domain = order_domain(order.risk_category, self._chain_id)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            self._pool,
            _sign_order_sync,
            order.typed_message(),
            domain,
            self._private_key,
        )

        logger.debug(
            "eip712_signer.signed",
            order_hash=result.order_hash,
            verifying_contract=domain["verifyingContract"],
        )
        return result

    # ── Context manager ──────────────────────────────────────────

    async def __aenter__(self) -> EIP712Signer:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.shutdown(wait=True)


class WalletSigner:
    """Plain-message (EIP-191) signer for relay authorisations."""

    def __init__(self, credentials: WalletCredentials | None) -> None:
        self._account = _load_account(credentials)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_text(self, text: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=text))
        return _hex(signed.signature)

    @staticmethod
    def recover_text(text: str, signature: str) -> str:
        return Account.recover_message(encode_defunct(text=text), signature=signature)
