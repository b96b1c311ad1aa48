"""Builder signing endpoint for remote-signing clients.

Provides a lightweight HTTP server (built on ``asyncio.start_server``)
exposing:

- ``POST /sign``   — ``{method, path, body?, timestamp?}`` -> builder headers
- ``GET  /sign``   — whether local builder secrets are configured
- ``GET  /health`` — liveness
- ``GET  /metrics`` — Prometheus text exposition

The secret never leaves this process: responses carry only the computed
headers.  Without secrets ``POST /sign`` answers 503 instead of
fabricating headers.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import structlog

from auth.builder_signer import HEADER_TIMESTAMP, LocalBuilderSigner
from core.errors import SignatureError
from monitoring.metrics import MetricsRegistry

logger = structlog.get_logger("server.builder_sign_server")

__all__ = ["BuilderSignServer"]

_MAX_BODY_BYTES = 64 * 1024

_REASONS = {
    200: "OK",
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Payload Too Large",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


class BuilderSignServer:
    """Signing endpoint and its HTTP server.

    Parameters
    ----------
    signer:
        Local builder signer, or ``None`` when secrets are absent.
    metrics:
        Shared ``MetricsRegistry`` for ``/metrics``.
    port:
        TCP port for the server.
    host:
        Bind address.
    """

    def __init__(
        self,
        signer: LocalBuilderSigner | None,
        metrics: MetricsRegistry | None = None,
        port: int = 8088,
        host: str = "127.0.0.1",
    ) -> None:
        self._signer = signer
        self._metrics = metrics
        self._port = port
        self._host = host
        self._start_time = time.monotonic()
        self._server: asyncio.Server | None = None

    @property
    def configured(self) -> bool:
        return self._signer is not None

    # ── Request handlers (transport independent) ────────────────

    def handle_sign(self, raw_body: bytes) -> tuple[int, dict[str, Any]]:
        """Compute builder headers for one ``POST /sign`` body."""
        status, payload = self._sign(raw_body)
        if self._metrics:
            self._metrics.record_sign_request(status)
        return status, payload

    def _sign(self, raw_body: bytes) -> tuple[int, dict[str, Any]]:
        if self._signer is None:
            return 503, {"success": False, "error": "Builder credentials not configured"}

        try:
            request = json.loads(raw_body or b"{}")
        except ValueError:
            return 400, {"success": False, "error": "Invalid JSON body"}
        if not isinstance(request, dict):
            return 400, {"success": False, "error": "Invalid JSON body"}

        method = request.get("method")
        path = request.get("path")
        if not method or not path or not isinstance(method, str) or not isinstance(path, str):
            return 400, {"success": False, "error": "Missing method or path"}

        body = request.get("body") or ""
        if not isinstance(body, str):
            body = json.dumps(body, separators=(",", ":"))

        timestamp = request.get("timestamp")
        if timestamp is not None:
            try:
                timestamp = int(timestamp)
            except (TypeError, ValueError):
                return 400, {"success": False, "error": "timestamp must be an integer"}

        try:
            headers = self._signer.sign(method, path, body, timestamp)
        except SignatureError as exc:
            return 400, {"success": False, "error": exc.message}

        logger.info("builder_sign.signed", method=method.upper(), path=path)
        return 200, {
            "success": True,
            "headers": headers,
            "timestamp": int(headers[HEADER_TIMESTAMP]),
        }

    def handle_status(self) -> tuple[int, dict[str, Any]]:
        configured = self.configured
        return 200, {
            "success": True,
            "configured": configured,
            "message": (
                "Builder signing is available"
                if configured
                else "Builder credentials not configured"
            ),
        }

    # ── HTTP server lifecycle ───────────────────────────────────

    async def start_server(self) -> None:
        """Start the HTTP server."""
        self._server = await asyncio.start_server(
            self._handle_connection,
            self._host,
            self._port,
        )
        logger.info(
            "builder_sign.server_started",
            host=self._host,
            port=self._port,
            configured=self.configured,
        )

    async def stop_server(self) -> None:
        """Stop the HTTP server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("builder_sign.server_stopped")

    # ── HTTP handler ────────────────────────────────────────────

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a single HTTP connection."""
        try:
            request_line = await asyncio.wait_for(reader.readline(), timeout=5.0)
            if not request_line:
                return

            line = request_line.decode("utf-8", errors="replace").strip()
            parts = line.split()
            if len(parts) < 2:
                await self._send_response(writer, 400, b"Bad Request")
                return

            method, path = parts[0].upper(), parts[1].split("?", 1)[0]

            content_length = 0
            while True:
                header_line = await asyncio.wait_for(reader.readline(), timeout=5.0)
                if header_line in (b"\r\n", b"\n", b""):
                    break
                name, _, value = header_line.decode("latin-1").partition(":")
                if name.strip().lower() == "content-length":
                    content_length = int(value.strip() or 0)

            if content_length > _MAX_BODY_BYTES:
                await self._send_json(writer, 413, {"success": False, "error": "Body too large"})
                return
            body = b""
            if content_length:
                body = await asyncio.wait_for(reader.readexactly(content_length), timeout=5.0)

            if path == "/sign" and method == "POST":
                await self._send_json(writer, *self.handle_sign(body))
            elif path == "/sign" and method == "GET":
                await self._send_json(writer, *self.handle_status())
            elif path == "/health" and method == "GET":
                await self._send_json(writer, 200, {
                    "status": "alive",
                    "uptime_seconds": round(time.monotonic() - self._start_time, 1),
                })
            elif path == "/metrics" and method == "GET":
                await self._handle_metrics(writer)
            elif path in ("/sign", "/health", "/metrics"):
                await self._send_response(writer, 405, b"Method Not Allowed")
            else:
                await self._send_response(writer, 404, b"Not Found")

        except (asyncio.TimeoutError, asyncio.IncompleteReadError, ValueError) as exc:
            logger.warning("builder_sign.bad_request", error=str(exc))
            await self._safe_send(writer, 400, b"Bad Request")
        except Exception:
            logger.exception("builder_sign.handler_error")
            await self._safe_send(writer, 500, b"Internal Server Error")
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _handle_metrics(self, writer: asyncio.StreamWriter) -> None:
        """Prometheus /metrics endpoint."""
        if self._metrics:
            await self._send_response(
                writer, 200, self._metrics.exposition(),
                content_type="text/plain; version=0.0.4; charset=utf-8",
            )
        else:
            await self._send_response(writer, 503, b"Metrics not configured")

    async def _safe_send(self, writer: asyncio.StreamWriter, status_code: int, body: bytes) -> None:
        try:
            await self._send_response(writer, status_code, body)
        except (ConnectionError, OSError):
            pass

    async def _send_json(
        self,
        writer: asyncio.StreamWriter,
        status_code: int,
        payload: dict[str, Any],
    ) -> None:
        await self._send_response(
            writer, status_code, json.dumps(payload).encode(),
            content_type="application/json",
        )

    @staticmethod
    async def _send_response(
        writer: asyncio.StreamWriter,
        status_code: int,
        body: bytes,
        content_type: str = "text/plain",
    ) -> None:
        """Write a minimal HTTP/1.0 response."""
        reason = _REASONS.get(status_code, "Unknown")
        header = (
            f"HTTP/1.0 {status_code} {reason}\r\n"
            f"Content-Type: {content_type}\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(header.encode() + body)
        await writer.drain()
