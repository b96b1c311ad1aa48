"""KalshiClient — authenticated Kalshi trade API access.

Every request is signed by ``KalshiRequestSigner`` over the full URL path
(``/trade-api/v2/...``), query string excluded.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog

from auth.request_signer import KalshiRequestSigner
from core.aliases import ORDER_ID_KEYS, error_message, resolve_alias
from core.errors import VenueRejectedOrderError, VenueUnavailableError
from models.order import KalshiOrderType, Leg, Order

logger = structlog.get_logger("data.kalshi_client")

DEFAULT_KALSHI_URL = "https://trading-api.kalshi.com/trade-api/v2"

_VENUE = "kalshi"


def order_body(order: Order) -> dict[str, Any]:
    """``POST /portfolio/orders`` body for a Kalshi *order*."""
    body: dict[str, Any] = {
        "ticker": order.instrument_id,
        "side": order.leg.value if order.leg else Leg.YES.value,
        "action": order.side.value,
        "count": int(order.size),
        "type": order.kalshi_order_type.value,
    }
    if order.kalshi_order_type is KalshiOrderType.LIMIT and order.limit_price_cents is not None:
        price_field = "no_price" if order.leg is Leg.NO else "yes_price"
        body[price_field] = order.limit_price_cents
    return body


class KalshiClient:
    """Async Kalshi REST client.

    Parameters
    ----------
    signer:
        Request signer holding the API key id and RSA key.
    base_url:
        API root including the version prefix.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport (tests inject a ``MockTransport``).
    """

    def __init__(
        self,
        signer: KalshiRequestSigner,
        base_url: str = DEFAULT_KALSHI_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._signer = signer
        self._base_url = base_url.rstrip("/")
        self._path_prefix = urlparse(self._base_url).path.rstrip("/")
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
            logger.info("kalshi_client.started", base_url=self._base_url, key_id=self._signer.key_id)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("kalshi_client.stopped")

    async def __aenter__(self) -> KalshiClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ── Transport ────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> tuple[int, Any]:
        if self._client is None:
            raise RuntimeError("KalshiClient not started — call start() first")

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self._signer.auth_headers(method, self._path_prefix + path))
        content = json.dumps(payload).encode() if payload is not None else None

        try:
            resp = await self._client.request(method, path.lstrip("/"), content=content, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("kalshi_client.transport_error", method=method, path=path, error=str(exc))
            raise VenueUnavailableError(f"Kalshi unreachable: {exc}", venue=_VENUE) from exc

        try:
            data = resp.json()
        except ValueError:
            data = {"message": resp.text[:200]}
        return resp.status_code, data

    # ── Public API ───────────────────────────────────────────────

    async def place_order(self, order: Order) -> dict[str, Any]:
        """Submit *order*; return the venue's order object.

        Raises
        ------
        VenueRejectedOrderError
            Non-2xx response; message is the venue's.
        VenueUnavailableError
            Transport failure; the order may or may not exist.
        """
        body = order_body(order)
        status, data = await self._request("POST", "/portfolio/orders", body)
        if status >= 400:
            message = error_message(data, f"Kalshi API error: HTTP {status}")
            logger.warning("kalshi_client.order_rejected", status=status, error=message, ticker=order.instrument_id)
            raise VenueRejectedOrderError(message, venue=_VENUE, status_code=status)

        placed = data.get("order") if isinstance(data, dict) and isinstance(data.get("order"), dict) else data
        order_id = resolve_alias(placed, ORDER_ID_KEYS)
        logger.info(
            "kalshi_client.order_placed",
            order_id=order_id,
            ticker=order.instrument_id,
            side=body["side"],
            action=body["action"],
            count=body["count"],
        )
        return placed if isinstance(placed, dict) else {}

    async def get_balance(self) -> Decimal:
        """Available portfolio balance in USD (the API reports cents)."""
        status, data = await self._request("GET", "/portfolio/balance")
        if status >= 400:
            message = error_message(data, f"Kalshi API error: HTTP {status}")
            raise VenueUnavailableError(f"balance lookup failed: {message}", venue=_VENUE)
        cents = data.get("balance", 0) if isinstance(data, dict) else 0
        return Decimal(str(cents)) / Decimal("100")
