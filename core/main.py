"""Entrypoint — uvloop event-loop, builder signing server, graceful shutdown."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import NoReturn

import uvloop

from auth.builder_signer import LocalBuilderSigner
from config.credentials import AuthConfig
from config.settings import Settings, settings
from core.logger import get_logger, setup_logging
from monitoring.metrics import MetricsRegistry
from server.builder_sign_server import BuilderSignServer

log = get_logger(__name__)


class GracefulShutdown:
    """Tracks shutdown signal and provides a flag for the main loop."""

    def __init__(self) -> None:
        self._should_stop = asyncio.Event()

    @property
    def should_stop(self) -> bool:
        return self._should_stop.is_set()

    def trigger(self) -> None:
        self._should_stop.set()

    async def wait(self) -> None:
        await self._should_stop.wait()


def build_sign_server(
    s: Settings = settings,
    metrics: MetricsRegistry | None = None,
) -> BuilderSignServer:
    """Signing server from settings; unconfigured secrets give a 503 server."""
    auth = AuthConfig.from_settings(s)
    signer = LocalBuilderSigner(auth.builder) if auth.builder is not None else None
    metrics = metrics or MetricsRegistry()
    metrics.set_build_info(app=s.APP_NAME, env=s.APP_ENV)
    return BuilderSignServer(
        signer,
        metrics=metrics,
        port=s.SIGNER_PORT,
        host=s.SIGNER_HOST,
    )


async def serve(server: BuilderSignServer, shutdown: GracefulShutdown) -> None:
    """Run *server* until shutdown is triggered."""
    await server.start_server()
    try:
        await shutdown.wait()
    finally:
        await server.stop_server()


async def main() -> None:
    """Top-level orchestrator."""
    setup_logging()
    log.info(
        "starting",
        app=settings.APP_NAME,
        env=settings.APP_ENV,
        signer_host=settings.SIGNER_HOST,
        signer_port=settings.SIGNER_PORT,
    )

    shutdown = GracefulShutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: _handle_signal(s, shutdown))

    try:
        await serve(build_sign_server(), shutdown)
    except Exception:
        log.exception("fatal_error")
        sys.exit(1)

    log.info("shutdown_complete")


def _handle_signal(sig: signal.Signals, shutdown: GracefulShutdown) -> None:
    """Signal handler — sets the shutdown flag."""
    log.info("signal_received", signal=sig.name)
    shutdown.trigger()


def run() -> NoReturn:
    """CLI entry: install uvloop policy and run."""
    uvloop.install()
    asyncio.run(main())
    sys.exit(0)


if __name__ == "__main__":
    run()
