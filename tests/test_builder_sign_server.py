"""Tests for server/builder_sign_server.py — the builder signing endpoint."""

from __future__ import annotations

import asyncio
import json

import pytest

from auth.builder_signer import HEADER_SIGNATURE, HEADER_TIMESTAMP, LocalBuilderSigner
from config.credentials import BuilderCredentials
from config.settings import Settings
from core.main import build_sign_server
from monitoring.metrics import MetricsRegistry
from server.builder_sign_server import BuilderSignServer


@pytest.fixture
def server(builder_credentials: BuilderCredentials) -> BuilderSignServer:
    return BuilderSignServer(LocalBuilderSigner(builder_credentials), metrics=MetricsRegistry(), port=0)


async def _http(server: BuilderSignServer, raw_request: bytes) -> tuple[str, str]:
    """Send *raw_request* through the real connection handler."""
    srv = await asyncio.start_server(server._handle_connection, "127.0.0.1", 0)
    port = srv.sockets[0].getsockname()[1]
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(raw_request)
        await writer.drain()
        response = await reader.read()
        writer.close()
        await writer.wait_closed()
    finally:
        srv.close()
        await srv.wait_closed()
    head, _, body = response.decode().partition("\r\n\r\n")
    return head, body


def _post(path: str, body: bytes) -> bytes:
    return (
        f"POST {path} HTTP/1.0\r\nHost: localhost\r\n"
        f"Content-Type: application/json\r\nContent-Length: {len(body)}\r\n\r\n"
    ).encode() + body


# ── Handler ─────────────────────────────────────────────────────────


class TestHandleSign:

    def test_signs_request(self, server: BuilderSignServer) -> None:
        status, payload = server.handle_sign(
            json.dumps({"method": "POST", "path": "/submit", "body": "{}", "timestamp": 1700000000}).encode()
        )
        assert status == 200
        assert payload["success"] is True
        assert payload["timestamp"] == 1700000000
        assert payload["headers"][HEADER_TIMESTAMP] == "1700000000"
        assert payload["headers"][HEADER_SIGNATURE]

    def test_response_never_contains_secret(
        self, server: BuilderSignServer, builder_credentials: BuilderCredentials
    ) -> None:
        _, payload = server.handle_sign(json.dumps({"method": "GET", "path": "/x"}).encode())
        assert builder_credentials.secret not in json.dumps(payload)

    @pytest.mark.parametrize(
        "request_body",
        [
            {"path": "/submit"},
            {"method": "POST"},
            {"method": "", "path": "/submit"},
            {},
        ],
    )
    def test_missing_method_or_path(self, server: BuilderSignServer, request_body: dict) -> None:
        status, payload = server.handle_sign(json.dumps(request_body).encode())
        assert status == 400
        assert payload == {"success": False, "error": "Missing method or path"}

    def test_invalid_json(self, server: BuilderSignServer) -> None:
        status, payload = server.handle_sign(b"{not json")
        assert status == 400
        assert payload["error"] == "Invalid JSON body"

    def test_bad_timestamp(self, server: BuilderSignServer) -> None:
        status, _ = server.handle_sign(
            json.dumps({"method": "GET", "path": "/x", "timestamp": "soon"}).encode()
        )
        assert status == 400

    def test_unconfigured_is_503(self) -> None:
        status, payload = BuilderSignServer(None).handle_sign(
            json.dumps({"method": "GET", "path": "/x"}).encode()
        )
        assert status == 503
        assert payload["success"] is False

    def test_object_body_is_compact_json(self, server: BuilderSignServer, builder_credentials) -> None:
        _, from_object = server.handle_sign(
            json.dumps({"method": "POST", "path": "/s", "body": {"a": 1}, "timestamp": 1}).encode()
        )
        _, from_string = server.handle_sign(
            json.dumps({"method": "POST", "path": "/s", "body": '{"a":1}', "timestamp": 1}).encode()
        )
        assert from_object["headers"] == from_string["headers"]

    def test_status(self, server: BuilderSignServer) -> None:
        assert server.handle_status()[1]["configured"] is True
        assert BuilderSignServer(None).handle_status()[1]["configured"] is False

    def test_requests_counted(self, server: BuilderSignServer) -> None:
        server.handle_sign(b"{}")
        exposition = server._metrics.exposition().decode()
        assert 'predmkt_sign_requests_total{status="400"} 1.0' in exposition


# ── HTTP ────────────────────────────────────────────────────────────


class TestHttp:

    @pytest.mark.asyncio
    async def test_post_sign(self, server: BuilderSignServer) -> None:
        head, body = await _http(server, _post("/sign", json.dumps({"method": "GET", "path": "/x"}).encode()))
        assert "200 OK" in head
        assert json.loads(body)["success"] is True

    @pytest.mark.asyncio
    async def test_post_sign_missing_path(self, server: BuilderSignServer) -> None:
        head, body = await _http(server, _post("/sign", json.dumps({"method": "GET"}).encode()))
        assert "400 Bad Request" in head
        assert json.loads(body)["success"] is False

    @pytest.mark.asyncio
    async def test_post_sign_unconfigured(self) -> None:
        head, _ = await _http(BuilderSignServer(None), _post("/sign", b'{"method":"GET","path":"/x"}'))
        assert "503 Service Unavailable" in head

    @pytest.mark.asyncio
    async def test_get_sign_reports_configuration(self, server: BuilderSignServer) -> None:
        head, body = await _http(server, b"GET /sign HTTP/1.0\r\nHost: localhost\r\n\r\n")
        assert "200 OK" in head
        assert json.loads(body)["configured"] is True

    @pytest.mark.asyncio
    async def test_health(self, server: BuilderSignServer) -> None:
        head, body = await _http(server, b"GET /health HTTP/1.0\r\n\r\n")
        assert "200 OK" in head
        assert json.loads(body)["status"] == "alive"

    @pytest.mark.asyncio
    async def test_metrics(self, server: BuilderSignServer) -> None:
        head, body = await _http(server, b"GET /metrics HTTP/1.0\r\n\r\n")
        assert "200 OK" in head
        assert "predmkt_sign_requests_total" in body

    @pytest.mark.asyncio
    async def test_unknown_path(self, server: BuilderSignServer) -> None:
        head, _ = await _http(server, b"GET /nope HTTP/1.0\r\n\r\n")
        assert "404 Not Found" in head

    @pytest.mark.asyncio
    async def test_wrong_method(self, server: BuilderSignServer) -> None:
        head, _ = await _http(server, b"DELETE /sign HTTP/1.0\r\n\r\n")
        assert "405" in head


class TestBuildFromSettings:

    def test_unconfigured_publishes_build_info(self) -> None:
        metrics = MetricsRegistry()
        server = build_sign_server(Settings(_env_file=None, APP_ENV="paper"), metrics=metrics)
        assert not server.configured
        assert metrics.registry.get_sample_value(
            "predmkt_info", {"app": "predmkt-core", "env": "paper"}
        ) == 1.0
