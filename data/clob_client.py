"""ClobClient — signed order submission to the Polymarket CLOB.

``POST /order`` carries builder-attribution headers and, when user API
credentials are configured, the L2 ``POLY_*`` user headers.  Both HMACs are
computed over the exact body string that is sent.
"""

from __future__ import annotations

import json
import time
from typing import Any

import httpx
import structlog
from py_clob_client.order_builder.constants import BUY, SELL
from py_clob_client.signing.hmac import build_hmac_signature

from auth.builder_signer import BuilderSigner
from config.credentials import ClobApiCredentials
from core.aliases import ORDER_ID_KEYS, error_message, resolve_alias
from core.errors import VenueRejectedOrderError, VenueUnavailableError
from models.order import Order, Side

logger = structlog.get_logger("data.clob_client")

DEFAULT_CLOB_URL = "https://clob.polymarket.com"

_VENUE = "polymarket"
ORDER_PATH = "/order"


def order_payload(order: Order, owner: str) -> dict[str, Any]:
    """Wire body for a signed *order*."""
    if order.signature is None:
        raise ValueError("order must be signed before submission")
    message = order.typed_message()
    return {
        "order": {
            "salt": message["salt"],
            "maker": message["maker"],
            "signer": message["signer"],
            "taker": message["taker"],
            "tokenId": str(message["tokenId"]),
            "makerAmount": str(message["makerAmount"]),
            "takerAmount": str(message["takerAmount"]),
            "expiration": str(message["expiration"]),
            "nonce": str(message["nonce"]),
            "feeRateBps": str(message["feeRateBps"]),
            "side": BUY if order.side is Side.BUY else SELL,
            "signatureType": message["signatureType"],
            "signature": order.signature,
        },
        "owner": owner,
        "orderType": order.lifetime.value,
        "negRisk": order.neg_risk,
    }


class ClobClient:
    """Async Polymarket CLOB order client.

    Parameters
    ----------
    builder_signer:
        Builder-attribution header source.
    api_credentials:
        Optional L2 user credentials; also decides the ``owner`` field.
    base_url:
        CLOB root URL.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport (tests inject a ``MockTransport``).
    """

    def __init__(
        self,
        builder_signer: BuilderSigner,
        api_credentials: ClobApiCredentials | None = None,
        base_url: str = DEFAULT_CLOB_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._builder = builder_signer
        self._api_creds = api_credentials
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
            logger.info(
                "clob_client.started",
                base_url=self._base_url,
                l2_auth=self._api_creds is not None,
            )

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("clob_client.stopped")

    async def __aenter__(self) -> ClobClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ── Headers ──────────────────────────────────────────────────

    def _l2_headers(self, address: str, method: str, path: str, body: str) -> dict[str, str]:
        if self._api_creds is None:
            return {}
        ts = str(int(time.time()))
        return {
            "POLY_ADDRESS": address,
            "POLY_SIGNATURE": build_hmac_signature(self._api_creds.api_secret, ts, method, path, body),
            "POLY_TIMESTAMP": ts,
            "POLY_API_KEY": self._api_creds.api_key,
            "POLY_PASSPHRASE": self._api_creds.api_passphrase,
        }

    # ── Public API ───────────────────────────────────────────────

    async def post_order(self, order: Order) -> dict[str, Any]:
        """Submit a signed *order*; return the venue's reply.

        Raises
        ------
        VenueRejectedOrderError
            Non-2xx reply, or ``success: false`` / ``errorMsg`` in the body.
        VenueUnavailableError
            Transport failure; the order may or may not exist.
        """
        if self._client is None:
            raise RuntimeError("ClobClient not started — call start() first")

        owner = self._api_creds.api_key if self._api_creds else order.maker
        body = json.dumps(order_payload(order, owner), separators=(",", ":"))
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(await self._builder.headers("POST", ORDER_PATH, body))
        headers.update(self._l2_headers(order.signer, "POST", ORDER_PATH, body))

        try:
            resp = await self._client.post(ORDER_PATH, content=body.encode(), headers=headers)
        except httpx.HTTPError as exc:
            logger.error("clob_client.transport_error", error=str(exc), salt=order.salt)
            raise VenueUnavailableError(f"Polymarket CLOB unreachable: {exc}", venue=_VENUE) from exc

        try:
            data = resp.json()
        except ValueError:
            data = {"errorMsg": resp.text[:200] or f"HTTP {resp.status_code}"}
        if not isinstance(data, dict):
            data = {"result": data}

        rejected = resp.status_code >= 400 or data.get("success") is False or bool(data.get("errorMsg"))
        if rejected:
            message = error_message(data, f"Polymarket CLOB error: HTTP {resp.status_code}")
            logger.warning(
                "clob_client.order_rejected",
                status=resp.status_code,
                error=message,
                token_id=order.instrument_id,
            )
            raise VenueRejectedOrderError(message, venue=_VENUE, status_code=resp.status_code)

        logger.info(
            "clob_client.order_posted",
            order_id=resolve_alias(data, ORDER_ID_KEYS),
            status=data.get("status"),
            token_id=order.instrument_id,
            neg_risk=order.neg_risk,
        )
        return data
