"""
Prometheus metrics for the arbitrage bot.

Exposes poll-cycle outcomes, bundle resolutions and search statistics,
optionally over a small aiohttp server.
"""

import logging
import time
from typing import Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class BotMetrics:
    """
    Metrics collection for the poll loop and submission client.

    Each instance owns its registry so tests and multiple bots never collide.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

    def _initialize_metrics(self):
        self.cycles_total = Counter(
            "tokenbuyer_arb_cycles_total",
            "Poll cycles by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.bundle_resolutions_total = Counter(
            "tokenbuyer_arb_bundle_resolutions_total",
            "Relay bundle attempts by resolution",
            ["resolution"],
            registry=self.registry,
        )
        self.search_evaluations = Histogram(
            "tokenbuyer_arb_search_evaluations",
            "Objective evaluations per profit search",
            buckets=[2, 5, 10, 20, 40, 80, 160],
            registry=self.registry,
        )
        self.expected_profit_wei = Gauge(
            "tokenbuyer_arb_expected_profit_wei",
            "Expected profit net of execution cost for the last submitted candidate",
            registry=self.registry,
        )
        self.last_cycle_timestamp = Gauge(
            "tokenbuyer_arb_last_cycle_timestamp_seconds",
            "Unix time of the last completed poll cycle",
            registry=self.registry,
        )

    def record_cycle(self, outcome: str):
        """Record a completed poll cycle."""
        self.cycles_total.labels(outcome=outcome).inc()
        self.last_cycle_timestamp.set(time.time())

    def record_resolution(self, resolution: str):
        """Record one bundle submission attempt."""
        self.bundle_resolutions_total.labels(resolution=resolution).inc()

    def record_search(self, evaluations: int):
        self.search_evaluations.observe(evaluations)

    def record_expected_profit(self, profit_wei: int):
        self.expected_profit_wei.set(profit_wei)

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ) -> bool:
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        metrics_output = generate_latest(self.registry)
        # aiohttp rejects a charset inside content_type
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        return web.json_response({"status": "healthy", "service": "tokenbuyer_arb"})
