"""Tests for relayer/client.py — submit, poll and wait against a fake relayer."""

from __future__ import annotations

import asyncio
import json
from typing import Callable

import httpx
import pytest
import pytest_asyncio

from auth.builder_signer import HEADER_SIGNATURE, HEADER_TIMESTAMP, LocalBuilderSigner
from config.credentials import BuilderCredentials
from core.errors import RelayerRejectedError, RelayTimeoutError, RelayUnavailableError
from models.relayer import Pending, RelayAction, RelayerState, Terminal, TimedOut
from monitoring.metrics import MetricsRegistry
from relayer.client import RelayClient

BASE_URL = "https://relayer.test"


# ── Helpers ─────────────────────────────────────────────────────────


class FakeRelayer:
    """Records requests; each route answers from a scripted handler."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for prefix, handler in self.routes.items():
            if request.url.path.startswith(prefix):
                return handler(request)
        return httpx.Response(404, json={"error": "not found"})

    def count(self, prefix: str) -> int:
        return sum(1 for r in self.requests if r.url.path.startswith(prefix))


def _states(*states: str) -> Callable[[httpx.Request], httpx.Response]:
    """Answer successive ``/transaction`` fetches with *states*, repeating the last."""
    remaining = list(states)

    def handler(request: httpx.Request) -> httpx.Response:
        state = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(
            200,
            json={"transactionID": "tx-1", "state": state, "transactionHash": "0xhash"},
        )

    return handler


@pytest.fixture
def relayer() -> FakeRelayer:
    return FakeRelayer()


@pytest_asyncio.fixture
async def client(relayer: FakeRelayer):
    c = RelayClient(BASE_URL, poll_interval=0, transport=httpx.MockTransport(relayer))
    await c.start()
    yield c
    await c.stop()


# ── Transport ───────────────────────────────────────────────────────


class TestTransport:

    @pytest.mark.asyncio
    async def test_not_started(self) -> None:
        with pytest.raises(RuntimeError, match="not started"):
            await RelayClient(BASE_URL).get_deployed("0xabc")

    @pytest.mark.asyncio
    async def test_html_block_page_is_unavailable(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/deployed"] = lambda r: httpx.Response(
            403, text="<html>Access denied</html>", headers={"content-type": "text/html"}
        )
        with pytest.raises(RelayUnavailableError) as exc_info:
            await client.get_deployed("0xabc")
        assert exc_info.value.code == "RELAYER_BLOCKED"

    @pytest.mark.asyncio
    async def test_html_with_json_content_type(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/deployed"] = lambda r: httpx.Response(
            200, text="<!DOCTYPE html>", headers={"content-type": "application/json"}
        )
        with pytest.raises(RelayUnavailableError):
            await client.get_deployed("0xabc")

    @pytest.mark.asyncio
    async def test_transport_error(self, relayer: FakeRelayer) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with RelayClient(BASE_URL, transport=httpx.MockTransport(boom)) as c:
            with pytest.raises(RelayUnavailableError):
                await c.get_deployed("0xabc")

    @pytest.mark.asyncio
    async def test_builder_headers_sign_wire_body(self, relayer: FakeRelayer, builder_credentials: BuilderCredentials) -> None:
        signer = LocalBuilderSigner(builder_credentials)
        relayer.routes["/submit"] = lambda r: httpx.Response(200, json={"transactionID": "tx-9"})
        async with RelayClient(BASE_URL, builder_signer=signer, transport=httpx.MockTransport(relayer)) as c:
            await c.submit(RelayAction.DEPLOY, {"from": "0xabc"})

        request = relayer.requests[-1]
        expected = signer.sign(
            "POST", "/submit", request.content.decode(), int(request.headers[HEADER_TIMESTAMP])
        )
        assert request.headers[HEADER_SIGNATURE] == expected[HEADER_SIGNATURE]

    @pytest.mark.asyncio
    async def test_query_string_is_signed(self, relayer: FakeRelayer, builder_credentials: BuilderCredentials) -> None:
        signer = LocalBuilderSigner(builder_credentials)
        relayer.routes["/nonce"] = lambda r: httpx.Response(200, json={"nonce": "3"})
        async with RelayClient(BASE_URL, builder_signer=signer, transport=httpx.MockTransport(relayer)) as c:
            await c.get_nonce("0xabc")

        request = relayer.requests[-1]
        path = request.url.raw_path.decode()
        assert path == "/nonce?address=0xabc&signerType=EOA"
        expected = signer.sign("GET", path, "", int(request.headers[HEADER_TIMESTAMP]))
        assert request.headers[HEADER_SIGNATURE] == expected[HEADER_SIGNATURE]


# ── Queries ─────────────────────────────────────────────────────────


class TestQueries:

    @pytest.mark.asyncio
    async def test_get_deployed(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/deployed"] = lambda r: httpx.Response(200, json={"deployed": True, "address": "0xproxy"})
        assert await client.get_deployed("0xabc") == (True, "0xproxy")

    @pytest.mark.asyncio
    async def test_get_deployed_false(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/deployed"] = lambda r: httpx.Response(200, json={"deployed": False})
        assert await client.get_deployed("0xabc") == (False, None)

    @pytest.mark.asyncio
    async def test_get_nonce(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/nonce"] = lambda r: httpx.Response(200, json={"nonce": 7, "proxyAddress": "0xp"})
        assert await client.get_nonce("0xabc") == ("7", "0xp")

    @pytest.mark.asyncio
    async def test_get_nonce_missing(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/nonce"] = lambda r: httpx.Response(200, json={})
        with pytest.raises(RelayerRejectedError):
            await client.get_nonce("0xabc")


# ── Submission ──────────────────────────────────────────────────────


class TestSubmit:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["transactionID", "transactionId", "id"])
    async def test_transaction_id_aliases(self, client: RelayClient, relayer: FakeRelayer, key: str) -> None:
        relayer.routes["/submit"] = lambda r: httpx.Response(200, json={key: "tx-42"})
        assert await client.submit(RelayAction.EXECUTE, {"from": "0xabc"}) == "tx-42"

    @pytest.mark.asyncio
    async def test_body_carries_type(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/submit"] = lambda r: httpx.Response(200, json={"transactionID": "tx"})
        await client.submit(RelayAction.DEPLOY, {"from": "0xabc"})
        assert json.loads(relayer.requests[-1].content) == {"type": "SAFE-CREATE", "from": "0xabc"}

    @pytest.mark.asyncio
    async def test_rejected(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/submit"] = lambda r: httpx.Response(400, json={"error": "invalid signature"})
        with pytest.raises(RelayerRejectedError, match="invalid signature") as exc_info:
            await client.submit(RelayAction.EXECUTE, {})
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_transaction_id(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/submit"] = lambda r: httpx.Response(200, json={"ok": True})
        with pytest.raises(RelayerRejectedError, match="no transaction id"):
            await client.submit(RelayAction.EXECUTE, {})


# ── Polling ─────────────────────────────────────────────────────────


class TestPolling:

    @pytest.mark.asyncio
    async def test_poll_once_pending(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_NEW")
        outcome = await client.poll_once("tx-1")
        assert isinstance(outcome, Pending)

    @pytest.mark.asyncio
    async def test_poll_once_terminal(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_MINED")
        outcome = await client.poll_once("tx-1")
        assert isinstance(outcome, Terminal)
        assert outcome.transaction.tx_hash == "0xhash"

    @pytest.mark.asyncio
    async def test_list_payload(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = lambda r: httpx.Response(
            200, json=[{"transactionID": "tx-1", "state": "STATE_CONFIRMED", "proxyAddress": "0xp"}]
        )
        tx = await client.get_transaction("tx-1")
        assert tx.state is RelayerState.CONFIRMED
        assert tx.proxy_address == "0xp"

    @pytest.mark.asyncio
    async def test_pending_forever_makes_exactly_max_attempts(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_NEW")
        with pytest.raises(RelayTimeoutError) as exc_info:
            await client.poll_until_terminal("tx-1", max_attempts=5, interval_s=0)
        assert relayer.count("/transaction") == 5
        assert exc_info.value.attempts == 5
        assert exc_info.value.outcome_unknown

    @pytest.mark.asyncio
    async def test_poll_reports_timed_out(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_NEW")
        outcome = await client.poll("tx-1", max_attempts=4, interval_s=0)
        assert outcome == TimedOut("tx-1", 4, RelayerState.PENDING)
        assert relayer.count("/transaction") == 4

    @pytest.mark.asyncio
    async def test_poll_reports_terminal(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_NEW", "STATE_MINED")
        outcome = await client.poll("tx-1", max_attempts=4, interval_s=0)
        assert isinstance(outcome, Terminal)
        assert outcome.transaction.state is RelayerState.MINED

    @pytest.mark.asyncio
    async def test_confirms_after_pending(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_NEW", "STATE_EXECUTED", "STATE_CONFIRMED")
        tx = await client.poll_until_terminal("tx-1", max_attempts=10, interval_s=0)
        assert tx.state is RelayerState.CONFIRMED
        assert relayer.count("/transaction") == 3

    @pytest.mark.asyncio
    async def test_failed_is_returned_not_raised(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = lambda r: httpx.Response(
            200, json={"transactionID": "tx-1", "state": "STATE_FAILED", "errorMsg": "execution reverted"}
        )
        tx = await client.poll_until_terminal("tx-1", max_attempts=10, interval_s=0)
        assert tx.state is RelayerState.FAILED
        assert tx.error_message == "execution reverted"
        assert relayer.count("/transaction") == 1

    @pytest.mark.asyncio
    async def test_fetch_error_consumes_attempt(self, client: RelayClient, relayer: FakeRelayer) -> None:
        calls = {"n": 0}

        def flaky(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(502, text="<html>gateway</html>", headers={"content-type": "text/html"})
            return httpx.Response(200, json={"state": "STATE_MINED"})

        relayer.routes["/transaction"] = flaky
        tx = await client.poll_until_terminal("tx-1", max_attempts=2, interval_s=0)
        assert tx.state is RelayerState.MINED

        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_only_fetch_errors_time_out(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = lambda r: httpx.Response(500, json={"error": "internal"})
        with pytest.raises(RelayTimeoutError):
            await client.poll_until_terminal("tx-1", max_attempts=3, interval_s=0)
        assert relayer.count("/transaction") == 3

    @pytest.mark.asyncio
    async def test_custom_success_states(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_MINED", "STATE_CONFIRMED")
        tx = await client.poll_until_terminal(
            "tx-1", success_states={RelayerState.CONFIRMED}, max_attempts=5, interval_s=0
        )
        assert tx.state is RelayerState.CONFIRMED
        assert relayer.count("/transaction") == 2

    @pytest.mark.asyncio
    async def test_max_attempts_validated(self, client: RelayClient) -> None:
        with pytest.raises(ValueError):
            await client.poll_until_terminal("tx-1", max_attempts=0)

    @pytest.mark.asyncio
    async def test_cancellation_stops_polling(self, client: RelayClient, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_NEW")
        task = asyncio.create_task(client.poll_until_terminal("tx-1", max_attempts=100, interval_s=30))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert relayer.count("/transaction") == 1

    @pytest.mark.asyncio
    async def test_wait_returns_none_on_short_timeout(self, relayer: FakeRelayer) -> None:
        relayer.routes["/transaction"] = _states("STATE_NEW")
        async with RelayClient(
            BASE_URL, poll_interval=0, quick_wait_attempts=3, transport=httpx.MockTransport(relayer)
        ) as c:
            assert await c.wait("tx-1") is None
        assert relayer.count("/transaction") == 3

    @pytest.mark.asyncio
    async def test_poll_attempts_counted(self, relayer: FakeRelayer) -> None:
        metrics = MetricsRegistry()
        relayer.routes["/transaction"] = _states("STATE_NEW")
        async with RelayClient(BASE_URL, metrics=metrics, transport=httpx.MockTransport(relayer)) as c:
            with pytest.raises(RelayTimeoutError):
                await c.poll_until_terminal("tx-1", max_attempts=4, interval_s=0)
        assert "predmkt_relay_poll_attempts_total 4.0" in metrics.exposition().decode()
