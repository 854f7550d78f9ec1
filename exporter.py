#!/usr/bin/env python3
"""
Ryzen power exporter - pushes AMD CPU package/core power to InfluxDB.

Supports:
- MSR, powercap and simulated counter backends
- Buffered delivery with retry/backoff across InfluxDB outages
- Health endpoint and Prometheus self-metrics for the exporter itself
"""
import json
import logging
import os
import signal
import sys
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler

from prometheus_client import REGISTRY, start_http_server
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from config_loader import ConfigLoader
from collectors import get_collector
from pipeline import Scheduler
from pipeline.errors import ConfigurationInvalid


# Global state
scheduler = None


class PipelineCollector:
    """
    Custom Prometheus collector exposing the pipeline's own state.
    Values are read from the health monitor when Prometheus scrapes /metrics.
    """

    def __init__(self, scheduler: Scheduler):
        self.scheduler = scheduler

    def collect(self):
        """Called by Prometheus when scraping /metrics"""
        state = self.scheduler.health.snapshot(self.scheduler.buffer)

        depth = GaugeMetricFamily(
            "ryzenmon_buffer_depth",
            "Metric points waiting for delivery to InfluxDB"
        )
        depth.add_metric([], state["buffer_depth"])
        yield depth

        yield CounterMetricFamily(
            "ryzenmon_points_dropped",
            "Metric points evicted from the full buffer",
            value=state["buffer_dropped"]
        )
        yield CounterMetricFamily(
            "ryzenmon_points_published",
            "Metric points written to InfluxDB",
            value=state["points_published"]
        )
        yield CounterMetricFamily(
            "ryzenmon_publish_failures",
            "Failed InfluxDB write attempts",
            value=state["publish_failures"]
        )

        last_publish = state["last_successful_publish_timestamp"]
        if last_publish is not None:
            gauge = GaugeMetricFamily(
                "ryzenmon_last_successful_publish_timestamp_seconds",
                "Unix time of the last successful InfluxDB write"
            )
            gauge.add_metric([], last_publish)
            yield gauge

        power = GaugeMetricFamily(
            "ryzenmon_domain_power_watts",
            "Latest average power per domain",
            labels=["domain"]
        )
        for domain_id, watts in sorted(state["latest_power_watts"].items()):
            power.add_metric([domain_id], watts)
        yield power


# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class HealthHandler(BaseHTTPRequestHandler):
    """
    HTTP handler for the management API.
    GET /health - pipeline status, last error, buffer depth
    """

    def do_GET(self):
        if self.path == '/health':
            self._handle_health()
        else:
            self.send_response(404)
            self.send_header('Content-Type', 'text/plain')
            self.end_headers()
            self.wfile.write(b'Not Found\n')

    def _handle_health(self):
        """Handle GET /health endpoint"""
        try:
            response = scheduler.health.snapshot(scheduler.buffer)
            response["domains"] = [d.id for d in scheduler.enabled_domains]

            self.send_response(200)
            self.send_header('Content-Type', 'application/json')
            self.end_headers()
            self.wfile.write(json.dumps(response, indent=2).encode())

        except Exception as e:
            logger.error(f"Error handling /health: {e}")
            self.send_error(500, f"Internal server error: {e}")

    def log_message(self, format, *args):
        """Suppress default HTTP request logs"""
        pass


def start_health_server(port: int) -> HTTPServer:
    """
    Start HTTP server for the health endpoint in a separate thread.

    Args:
        port: Port to listen on (e.g., 9101)
    """
    server = HTTPServer(('0.0.0.0', port), HealthHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info(f"🔄 Management API started on :{port}")
    logger.info(f"   - GET  :{port}/health - Health check status")
    return server


def handle_signal(signum, frame):
    logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
    # main() runs the flush once run_forever() returns
    scheduler.request_stop()


def main():
    """Main exporter entry point"""
    global scheduler

    logger.info("🚀 Ryzen power exporter starting...")

    try:
        config = ConfigLoader().load()
    except ConfigurationInvalid as e:
        logger.error(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    collector = get_collector(config.backend, config)
    logger.info(f"✅ Collector initialized: {collector.__class__.__name__}")

    scheduler = Scheduler(config, collector)
    scheduler.discover()

    REGISTRY.register(PipelineCollector(scheduler))
    if config.metrics_port:
        start_http_server(config.metrics_port)
        logger.info(f"📊 Prometheus metrics endpoint started on :{config.metrics_port}/metrics")

    health_server = None
    if config.health_port:
        health_server = start_health_server(config.health_port)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    try:
        logger.info("✅ Exporter fully initialized")
        scheduler.run_forever()
    finally:
        scheduler.stop()
        if health_server:
            health_server.shutdown()
        logger.info("Exporter stopped")


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
