"""Prometheus metrics registry for trading and relay activity.

Counts trades by venue and outcome, order submission latency, relay
transactions and poll attempts, auto-approvals and signing-endpoint
requests.

Uses a dedicated ``CollectorRegistry`` so tests can instantiate
isolated registries without polluting the global default.
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

__all__ = ["MetricsRegistry"]


class MetricsRegistry:
    """Central Prometheus metrics registry.

    Parameters
    ----------
    registry:
        A ``CollectorRegistry`` to register metrics in.  When *None*,
        a fresh registry is created (useful for tests).

    Usage::

        metrics = MetricsRegistry()
        metrics.record_trade("polymarket", "success")
        print(metrics.exposition())
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

        # ── App info ────────────────────────────────────────────
        self.app_info = Info(
            "predmkt",
            "predmkt-core build info",
            registry=self._registry,
        )

        # ── Trades ──────────────────────────────────────────────
        self.trades_total = Counter(
            "predmkt_trades_total",
            "execute_trade calls by venue and result code",
            labelnames=["venue", "result"],
            registry=self._registry,
        )

        self.order_latency = Histogram(
            "predmkt_order_submit_seconds",
            "Order sign + submit latency",
            labelnames=["venue"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self._registry,
        )

        self.auto_approvals = Counter(
            "predmkt_auto_approvals_total",
            "Automatic allowance approvals triggered by a trade",
            labelnames=["result"],
            registry=self._registry,
        )

        # ── Relay ───────────────────────────────────────────────
        self.relay_transactions = Counter(
            "predmkt_relay_transactions_total",
            "Relay transactions by action and state",
            labelnames=["action", "state"],
            registry=self._registry,
        )

        self.relay_poll_attempts = Counter(
            "predmkt_relay_poll_attempts_total",
            "Relay transaction status fetches",
            registry=self._registry,
        )

        # ── Signing endpoint ────────────────────────────────────
        self.sign_requests = Counter(
            "predmkt_sign_requests_total",
            "Builder signing endpoint requests by HTTP status",
            labelnames=["status"],
            registry=self._registry,
        )

    # ── Convenience recording methods ───────────────────────────

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying ``CollectorRegistry``."""
        return self._registry

    def set_build_info(self, app: str, env: str) -> None:
        """Publish ``predmkt_info{app=..., env=...}``; call once at startup."""
        self.app_info.info({"app": app, "env": env})

    def record_trade(self, venue: str, result: str) -> None:
        """Record one trade attempt.

        Parameters
        ----------
        venue:
            ``"kalshi"`` or ``"polymarket"``.
        result:
            ``"success"`` or the error code.
        """
        self.trades_total.labels(venue=venue, result=result).inc()

    def observe_order_latency(self, venue: str, seconds: float) -> None:
        """Sign + submit latency of an order that reached the venue."""
        self.order_latency.labels(venue=venue).observe(seconds)

    def record_relay_transaction(self, action: str, state: str) -> None:
        self.relay_transactions.labels(action=action, state=state).inc()

    def record_auto_approval(self, result: str) -> None:
        self.auto_approvals.labels(result=result).inc()

    def record_sign_request(self, status: int) -> None:
        self.sign_requests.labels(status=str(status)).inc()

    def exposition(self) -> bytes:
        """Return Prometheus text exposition format."""
        return generate_latest(self._registry)
