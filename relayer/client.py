"""RelayClient — gasless transaction submission through the Polymarket relayer.

Wraps the relayer's HTTP API:

- ``GET  /deployed?address=``               — Safe deployment status
- ``GET  /nonce?address=&signerType=``      — Safe nonce (+ proxy address)
- ``POST /submit``                          — ``SAFE-CREATE`` / ``SAFE``
- ``GET  /transaction/{id}``                — transaction state

Every request carries builder-attribution headers signed over the exact
path (query included) and body string that goes on the wire.

Polling is an explicit bounded loop over ``poll_once``.  Running out of
attempts raises ``RelayTimeoutError``; an explicit ``FAILED`` state is a
returned transaction, never an exception, so the two stay distinguishable.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Iterable
from urllib.parse import urlencode

import httpx
import structlog

from auth.builder_signer import BuilderSigner
from core.aliases import (
    ERROR_MESSAGE_KEYS,
    PROXY_ADDRESS_KEYS,
    STATE_KEYS,
    TRANSACTION_ID_KEYS,
    TX_HASH_KEYS,
    error_message,
    resolve_alias,
)
from core.errors import RelayerRejectedError, RelayTimeoutError, RelayUnavailableError
from models.relayer import (
    Pending,
    PollOutcome,
    RelayAction,
    RelayerState,
    RelayerTransaction,
    Terminal,
    TimedOut,
)
from monitoring.metrics import MetricsRegistry

logger = structlog.get_logger("relayer.client")

DEFAULT_RELAYER_URL = "https://relayer-v2.polymarket.com"

SUCCESS_STATES: frozenset[RelayerState] = frozenset({RelayerState.CONFIRMED, RelayerState.MINED})


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


def _error_message(data: Any, status_code: int) -> str:
    return error_message(data, f"relayer returned HTTP {status_code}")


class RelayClient:
    """Async client for the relay service.

    Parameters
    ----------
    base_url:
        Relayer root URL.
    builder_signer:
        Source of builder-attribution headers.  ``None`` sends unsigned
        requests (the relayer will usually reject them).
    timeout:
        Per-request timeout in seconds.
    poll_interval:
        Default seconds between status fetches.
    quick_wait_attempts:
        Attempts made by ``wait()`` before giving up.
    metrics:
        Optional registry for relay counters.
    transport:
        Optional ``httpx`` transport (tests inject a ``MockTransport``).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_RELAYER_URL,
        builder_signer: BuilderSigner | None = None,
        timeout: float = 10.0,
        poll_interval: float = 2.0,
        quick_wait_attempts: int = 3,
        metrics: MetricsRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._signer = builder_signer
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._quick_wait_attempts = quick_wait_attempts
        self._metrics = metrics
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Create the underlying HTTP client.  Idempotent."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
            logger.info(
                "relay_client.started",
                base_url=self._base_url,
                builder_signing=self._signer is not None,
            )

    async def stop(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("relay_client.stopped")

    async def __aenter__(self) -> RelayClient:
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
        """Send one signed request; return ``(status_code, parsed_json)``.

        Raises
        ------
        RuntimeError
            If the client has not been started.
        RelayUnavailableError
            Transport failure, or a non-JSON body (edge-proxy block page).
        """
        if self._client is None:
            raise RuntimeError("RelayClient not started — call start() first")

        body = _dumps(payload) if payload is not None else ""
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._signer is not None:
            headers.update(await self._signer.headers(method, path, body))

        try:
            resp = await self._client.request(
                method,
                path,
                content=body.encode() if body else None,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("relay_client.transport_error", method=method, path=path, error=str(exc))
            raise RelayUnavailableError(f"Relayer unreachable: {exc}") from exc

        content_type = resp.headers.get("content-type", "")
        text = resp.text
        if "json" not in content_type.lower() or text.lstrip().startswith("<"):
            logger.warning(
                "relay_client.non_json_response",
                method=method,
                path=path,
                status=resp.status_code,
                content_type=content_type,
            )
            raise RelayUnavailableError(
                f"Relayer blocked the request (HTTP {resp.status_code}, {content_type or 'no content-type'})"
            )

        try:
            data = json.loads(text) if text else {}
        except ValueError as exc:
            raise RelayUnavailableError("Relayer returned malformed JSON") from exc
        return resp.status_code, data

    # ── Queries ──────────────────────────────────────────────────

    async def get_deployed(self, address: str) -> tuple[bool, str | None]:
        """Deployment status of *address*'s Safe and its proxy address, if known."""
        path = f"/deployed?{urlencode({'address': address})}"
        status, data = await self._request("GET", path)
        if status >= 400:
            raise RelayerRejectedError(_error_message(data, status), status_code=status)
        data = data if isinstance(data, dict) else {}
        return bool(data.get("deployed")), resolve_alias(data, PROXY_ADDRESS_KEYS)

    async def get_nonce(self, address: str, signer_type: str = "EOA") -> tuple[str, str | None]:
        """Current Safe nonce for *address* and the proxy address the relay reports."""
        path = f"/nonce?{urlencode({'address': address, 'signerType': signer_type})}"
        status, data = await self._request("GET", path)
        if status >= 400:
            raise RelayerRejectedError(_error_message(data, status), status_code=status)
        data = data if isinstance(data, dict) else {}
        nonce = data.get("nonce")
        if nonce is None:
            raise RelayerRejectedError("Relayer nonce response has no nonce", status_code=status)
        return str(nonce), resolve_alias(data, PROXY_ADDRESS_KEYS)

    # ── Submission ───────────────────────────────────────────────

    async def submit(self, action: RelayAction, payload: dict[str, Any]) -> str:
        """Post *action* to ``/submit`` and return the relay transaction id.

        Raises
        ------
        RelayUnavailableError
            Relay unreachable or blocked; the caller may retry.
        RelayerRejectedError
            Non-2xx application error, or no transaction id in the reply.
        """
        body = {"type": action.value, **payload}
        status, data = await self._request("POST", "/submit", body)
        if status >= 400:
            message = _error_message(data, status)
            logger.warning("relay_client.submit_rejected", action=action.value, status=status, error=message)
            if self._metrics:
                self._metrics.record_relay_transaction(action.value, "rejected")
            raise RelayerRejectedError(message, status_code=status)

        transaction_id = resolve_alias(data if isinstance(data, dict) else {}, TRANSACTION_ID_KEYS)
        if not transaction_id:
            raise RelayerRejectedError("Relayer response has no transaction id", status_code=status)

        logger.info("relay_client.submitted", action=action.value, transaction_id=transaction_id)
        if self._metrics:
            self._metrics.record_relay_transaction(action.value, "submitted")
        return str(transaction_id)

    async def get_transaction(self, transaction_id: str) -> RelayerTransaction:
        """Fetch the relay-side state of *transaction_id*."""
        status, data = await self._request("GET", f"/transaction/{transaction_id}")
        if status >= 400:
            raise RelayerRejectedError(_error_message(data, status), status_code=status)
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            data = {}

        raw_state = str(resolve_alias(data, STATE_KEYS, default=""))
        state = RelayerState.from_wire(raw_state)
        error_message = None
        if state is RelayerState.FAILED:
            error_message = _error_message(data, status) if resolve_alias(data, ERROR_MESSAGE_KEYS) else raw_state

        return RelayerTransaction(
            transaction_id=transaction_id,
            state=state,
            raw_state=raw_state,
            proxy_address=resolve_alias(data, PROXY_ADDRESS_KEYS),
            tx_hash=resolve_alias(data, TX_HASH_KEYS),
            error_message=error_message,
            payload=data,
        )

    # ── Polling ──────────────────────────────────────────────────

    async def poll_once(self, transaction_id: str) -> PollOutcome:
        """Single status fetch, classified as ``Pending`` or ``Terminal``."""
        tx = await self.get_transaction(transaction_id)
        if tx.state.is_terminal:
            return Terminal(tx)
        return Pending(tx)

    async def poll(
        self,
        transaction_id: str,
        success_states: Iterable[RelayerState] = SUCCESS_STATES,
        failure_state: RelayerState = RelayerState.FAILED,
        max_attempts: int = 30,
        interval_s: float | None = None,
    ) -> Terminal | TimedOut:
        """Fetch status every *interval_s* until success, failure or budget exhaustion.

        Exactly *max_attempts* fetches are made when the state never leaves
        pending.  A fetch that fails (transport error, blocked response,
        non-2xx) consumes one attempt.  Cancelling the awaiting task stops
        the loop at its next suspension point.

        Returns
        -------
        Terminal | TimedOut
            ``Terminal`` holding a transaction in a success state or in
            *failure_state*; ``TimedOut`` when the budget ran out first.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        success = frozenset(success_states)
        interval = self._poll_interval if interval_s is None else interval_s
        last_state = RelayerState.PENDING

        for attempt in range(1, max_attempts + 1):
            try:
                outcome = await self.poll_once(transaction_id)
            except (RelayUnavailableError, RelayerRejectedError) as exc:
                logger.warning(
                    "relay_client.poll_fetch_failed",
                    transaction_id=transaction_id,
                    attempt=attempt,
                    error=exc.message,
                )
                outcome = None

            if self._metrics:
                self._metrics.relay_poll_attempts.inc()

            if outcome is not None:
                tx = outcome.transaction
                last_state = tx.state
                if tx.state in success or tx.state is failure_state:
                    logger.info(
                        "relay_client.poll_terminal",
                        transaction_id=transaction_id,
                        state=tx.state.value,
                        attempts=attempt,
                    )
                    return Terminal(tx)

            if attempt < max_attempts:
                await asyncio.sleep(interval)

        logger.warning(
            "relay_client.poll_timeout",
            transaction_id=transaction_id,
            attempts=max_attempts,
            last_state=last_state.value,
        )
        return TimedOut(transaction_id, max_attempts, last_state)

    async def poll_until_terminal(
        self,
        transaction_id: str,
        success_states: Iterable[RelayerState] = SUCCESS_STATES,
        failure_state: RelayerState = RelayerState.FAILED,
        max_attempts: int = 30,
        interval_s: float | None = None,
    ) -> RelayerTransaction:
        """Like :meth:`poll` but returns the transaction and raises on timeout.

        Callers inspect ``state`` to tell success from *failure_state*.

        Raises
        ------
        RelayTimeoutError
            No terminal state within *max_attempts*.
        """
        outcome = await self.poll(
            transaction_id,
            success_states=success_states,
            failure_state=failure_state,
            max_attempts=max_attempts,
            interval_s=interval_s,
        )
        if isinstance(outcome, TimedOut):
            raise RelayTimeoutError(
                f"Relay transaction {transaction_id} still {outcome.last_state.value} "
                f"after {outcome.attempts} attempts",
                transaction_id=transaction_id,
                attempts=outcome.attempts,
            )
        return outcome.transaction

    async def wait(self, transaction_id: str) -> RelayerTransaction | None:
        """Best-effort short wait for a terminal state.

        Returns ``None`` when the short budget runs out; callers fall back to
        ``poll_until_terminal``.
        """
        outcome = await self.poll(
            transaction_id,
            max_attempts=self._quick_wait_attempts,
            interval_s=min(self._poll_interval, 1.0),
        )
        if isinstance(outcome, TimedOut):
            return None
        return outcome.transaction
