"""
Prometheus metrics for the RTSP control server.
"""

"""
Copyright 2025 Chris Bunting
File: metrics.py | Purpose: Prometheus counters and gauges
@author Chris Bunting | @version 1.0.0

CHANGELOG:
2025-09-04 - Chris Bunting: Initial implementation
"""

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

REQ_TOTAL = Counter(
    "rtsp_requests_total", "Total RTSP requests", ["method", "status"]
)
REQ_LATENCY = Histogram(
    "rtsp_request_duration_seconds", "Request dispatch duration seconds"
)
ACTIVE_SESSIONS = Gauge("rtsp_active_sessions", "Sessions currently registered")
OPEN_CONNECTIONS = Gauge("rtsp_open_connections", "Open TCP control connections")


def record_request(method: str, status: str, duration: float) -> None:
    code = status.split(" ", 1)[0]
    REQ_TOTAL.labels(method=method, status=code).inc()
    REQ_LATENCY.observe(duration)


def start_metrics_server(port: int, addr: str = "0.0.0.0") -> None:
    """Expose /metrics over HTTP on a background thread."""
    start_http_server(port, addr=addr)
    logger.info(f"Metrics available on http://{addr}:{port}/metrics")
